from __future__ import annotations

import stat
from pathlib import Path

import pytest

from ccpa.errors import TranscriptionError
from ccpa.transcription import Transcriber

# Copies the input to the output path (last argument).
FAKE_FFMPEG = """#!/bin/sh
for last; do :; done
cp "$2" "$last"
"""

# Writes <stem>.txt next to the wav, like whisper --output_format txt --output_dir <dir>.
FAKE_WHISPER = """#!/bin/sh
wav="$1"
dir=""
while [ $# -gt 0 ]; do
  if [ "$1" = "--output_dir" ]; then dir="$2"; fi
  shift
done
name=$(basename "$wav" .wav)
printf '  hello from voice  \\n' > "$dir/$name.txt"
"""

FAILING = """#!/bin/sh
echo "model not found" >&2
exit 3
"""


def _script(tmp_path: Path, name: str, body: str) -> str:
    path = tmp_path / name
    path.write_text(body, encoding="utf-8")
    path.chmod(path.stat().st_mode | stat.S_IXUSR)
    return str(path)


@pytest.mark.asyncio
async def test_transcribe_returns_text_and_cleans_up(tmp_path: Path) -> None:
    audio = tmp_path / "voice_1.oga"
    audio.write_bytes(b"ogg")
    transcriber = Transcriber(
        _script(tmp_path, "whisper", FAKE_WHISPER),
        ffmpeg=_script(tmp_path, "ffmpeg", FAKE_FFMPEG),
    )

    text = await transcriber.transcribe(audio)

    assert text == "hello from voice"
    assert not (tmp_path / "voice_1.wav").exists()
    assert not (tmp_path / "voice_1.txt").exists()


@pytest.mark.asyncio
async def test_transcribe_reports_command_failure(tmp_path: Path) -> None:
    audio = tmp_path / "voice_2.oga"
    audio.write_bytes(b"ogg")
    transcriber = Transcriber(
        _script(tmp_path, "whisper", FAILING),
        ffmpeg=_script(tmp_path, "ffmpeg", FAKE_FFMPEG),
    )

    with pytest.raises(TranscriptionError, match="model not found"):
        await transcriber.transcribe(audio)
    assert not (tmp_path / "voice_2.wav").exists()


@pytest.mark.asyncio
async def test_transcribe_reports_missing_binary(tmp_path: Path) -> None:
    audio = tmp_path / "voice_3.oga"
    audio.write_bytes(b"ogg")
    transcriber = Transcriber("whisper", ffmpeg=str(tmp_path / "no-such-ffmpeg"))

    with pytest.raises(TranscriptionError, match="failed to start"):
        await transcriber.transcribe(audio)
