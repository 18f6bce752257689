"""Voice message transcription through ffmpeg and a Whisper-compatible CLI."""

from __future__ import annotations

import asyncio
from pathlib import Path

from loguru import logger

from ccpa.errors import TranscriptionError

DEFAULT_TIMEOUT_SECONDS = 300


async def _run(*args: str, timeout_seconds: float) -> str:
    try:
        proc = await asyncio.create_subprocess_exec(
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as exc:
        raise TranscriptionError(f"failed to start {args[0]}: {exc}") from exc
    try:
        async with asyncio.timeout(timeout_seconds):
            stdout_bytes, stderr_bytes = await proc.communicate()
    except TimeoutError as exc:
        proc.kill()
        await proc.wait()
        raise TranscriptionError(f"{args[0]} timed out after {timeout_seconds}s") from exc
    if proc.returncode != 0:
        stderr_text = (stderr_bytes or b"").decode("utf-8", errors="replace").strip()
        raise TranscriptionError(f"{args[0]} exit={proc.returncode}: {stderr_text or '(no output)'}")
    return (stdout_bytes or b"").decode("utf-8", errors="replace")


class Transcriber:
    """Turn an OGG/Opus voice note into text."""

    def __init__(
        self,
        command: str = "whisper",
        *,
        model: str = "base",
        ffmpeg: str = "ffmpeg",
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self.command = command
        self.model = model
        self.ffmpeg = ffmpeg
        self.timeout_seconds = timeout_seconds

    async def convert_to_wav(self, source: Path, target: Path) -> Path:
        await _run(
            self.ffmpeg, "-i", str(source), "-ar", "16000", "-ac", "1", "-y", str(target),
            timeout_seconds=self.timeout_seconds,
        )
        logger.debug("transcription.converted source={} target={}", source, target)
        return target

    async def transcribe(self, audio: Path) -> str:
        wav = audio.with_suffix(".wav")
        try:
            await self.convert_to_wav(audio, wav)
            await _run(
                self.command,
                str(wav),
                "--model",
                self.model,
                "--output_format",
                "txt",
                "--output_dir",
                str(wav.parent),
                timeout_seconds=self.timeout_seconds,
            )
            transcript = wav.with_suffix(".txt")
            if not transcript.exists():
                raise TranscriptionError(f"{self.command} produced no transcript for {wav.name}")
            text = transcript.read_text(encoding="utf-8").strip()
            transcript.unlink(missing_ok=True)
            return text
        finally:
            wav.unlink(missing_ok=True)
