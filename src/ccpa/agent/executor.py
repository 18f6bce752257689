"""Run the agent CLI as a subprocess and stream its progress."""

from __future__ import annotations

import asyncio
import subprocess
from collections.abc import Awaitable, Callable
from pathlib import Path

from loguru import logger

from ccpa.agent.reader import AgentResult, ProgressUpdate, ReaderUpdate, StreamReader, TextUpdate
from ccpa.errors import AgentNotFoundError

Callback = Callable[[str], Awaitable[None]]

READ_BLOCK_SIZE = 64 * 1024

DOWNLOADS_HINT = (
    "When you create a file the user should receive, save it into {path}. "
    "Every file left in that directory is sent to the user after your reply."
)


def check_agent_command(command: str) -> str:
    """Return the version banner of the agent CLI, raising when it cannot run."""
    try:
        completed = subprocess.run(  # noqa: S603
            [command, "--version"],
            capture_output=True,
            text=True,
            timeout=30,
        )
    except (OSError, subprocess.SubprocessError) as exc:
        raise AgentNotFoundError(
            f'Agent command "{command}" not found or not executable: {exc}. '
            "Install the agent CLI or set agent_command in ccpa.config.json."
        ) from exc
    if completed.returncode != 0:
        detail = (completed.stderr or completed.stdout or "").strip() or f"exit={completed.returncode}"
        raise AgentNotFoundError(f'Agent command "{command}" failed its version check: {detail}')
    return completed.stdout.strip()


class AgentExecutor:
    """Spawn one agent process per turn; no retries."""

    def __init__(self, command: str, *, workspace: Path | None = None) -> None:
        self.command = command
        self.workspace = workspace

    def build_args(self, prompt: str, session_id: str | None = None, downloads_dir: Path | None = None) -> list[str]:
        args = [self.command, "-p", prompt, "--output-format", "stream-json", "--verbose"]
        if session_id:
            args.extend(["--resume", session_id])
        if downloads_dir is not None:
            args.extend(["--append-system-prompt", DOWNLOADS_HINT.format(path=downloads_dir)])
        return args

    async def run(
        self,
        prompt: str,
        session_id: str | None = None,
        *,
        on_progress: Callback | None = None,
        on_text: Callback | None = None,
        downloads_dir: Path | None = None,
    ) -> AgentResult:
        args = self.build_args(prompt, session_id, downloads_dir)
        logger.debug("agent.spawn command={} resume={} cwd={}", self.command, session_id or "-", self.workspace)
        try:
            proc = await asyncio.create_subprocess_exec(
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(self.workspace) if self.workspace else None,
            )
        except OSError as exc:
            logger.error("agent.spawn.error command={} error={}", self.command, exc)
            return AgentResult(success=False, output="", error=f"Failed to start {self.command}: {exc}")

        assert proc.stdout is not None  # noqa: S101
        assert proc.stderr is not None  # noqa: S101
        stderr_task = asyncio.create_task(proc.stderr.read())
        reader = StreamReader()
        try:
            while True:
                data = await proc.stdout.read(READ_BLOCK_SIZE)
                if not data:
                    break
                await self._dispatch(reader.feed(data), on_progress, on_text)
            await self._dispatch(reader.close(), on_progress, on_text)
            returncode = await proc.wait()
        except BaseException:
            stderr_task.cancel()
            raise
        finally:
            if proc.returncode is None:
                proc.kill()
                await proc.wait()
        stderr = (await stderr_task).decode("utf-8", errors="replace")
        if stderr.strip():
            logger.debug("agent.stderr text={}", stderr.strip()[:2000])

        result = reader.result(returncode, stderr)
        logger.debug(
            "agent.done returncode={} success={} session_id={} cost_usd={}",
            returncode,
            result.success,
            result.session_id or "-",
            result.cost_usd,
        )
        return result

    @staticmethod
    async def _dispatch(updates: list[ReaderUpdate], on_progress: Callback | None, on_text: Callback | None) -> None:
        for update in updates:
            if isinstance(update, ProgressUpdate) and on_progress is not None:
                await on_progress(update.message)
            elif isinstance(update, TextUpdate) and on_text is not None:
                await on_text(update.text)
