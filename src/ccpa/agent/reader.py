"""Incremental reconstruction of one agent turn from its ``stream-json`` output.

The reader is a plain state machine. Bytes go in through :meth:`StreamReader.feed`,
and the updates that should reach the user come back out as a list, in arrival
order. The executor owns the process and forwards those updates to callbacks.

Assistant text is treated as cumulative: every ``text`` block is expected to carry
the whole answer so far, so a strictly longer block replaces the accumulated text.
An upstream that emitted true per-token deltas would lose text under this rule.
"""

from __future__ import annotations

import codecs
from dataclasses import dataclass
from typing import Any

from loguru import logger

from ccpa.agent.events import (
    AssistantEvent,
    InitEvent,
    ResultEvent,
    StreamEvent,
    TextBlock,
    ToolResultEvent,
    ToolUseBlock,
    decode_event,
)
from ccpa.agent.progress import describe_tool


@dataclass(frozen=True)
class ProgressUpdate:
    message: str


@dataclass(frozen=True)
class TextUpdate:
    text: str


ReaderUpdate = ProgressUpdate | TextUpdate


@dataclass(frozen=True)
class AgentResult:
    """Outcome of one agent turn."""

    success: bool
    output: str
    session_id: str | None = None
    error: str | None = None
    cost_usd: float | None = None
    usage: dict[str, Any] | None = None
    num_turns: int | None = None


class StreamReader:
    """Line-buffered parser and running state for one turn."""

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._text = ""
        self._pending_text = ""
        self._tool_active = False
        self._init_session_id: str | None = None
        self._final: ResultEvent | None = None

    @property
    def text(self) -> str:
        return self._text

    @property
    def session_id(self) -> str | None:
        if self._final is not None and self._final.session_id:
            return self._final.session_id
        return self._init_session_id

    @property
    def tool_active(self) -> bool:
        return self._tool_active

    @property
    def finished(self) -> bool:
        return self._final is not None

    def feed(self, data: bytes) -> list[ReaderUpdate]:
        self._buffer += self._decoder.decode(data)
        if "\n" not in self._buffer:
            return []
        *lines, self._buffer = self._buffer.split("\n")
        updates: list[ReaderUpdate] = []
        for line in lines:
            updates.extend(self._handle_line(line))
        return updates

    def close(self) -> list[ReaderUpdate]:
        """Flush a trailing line that was never newline-terminated."""
        rest = self._buffer + self._decoder.decode(b"", final=True)
        self._buffer = ""
        return self._handle_line(rest)

    def _handle_line(self, line: str) -> list[ReaderUpdate]:
        event = decode_event(line)
        if event is None:
            if line.strip():
                logger.debug("agent.stream.skip line={}", line[:200])
            return []
        return self.apply(event)

    def apply(self, event: StreamEvent) -> list[ReaderUpdate]:
        if self._final is not None:
            return []
        if isinstance(event, InitEvent):
            self._init_session_id = event.session_id
            return []
        if isinstance(event, AssistantEvent):
            return self._apply_assistant(event)
        if isinstance(event, ToolResultEvent):
            self._tool_active = False
            return self._surface(self._pending_text)
        if isinstance(event, ResultEvent):
            self._final = event
        return []

    def _apply_assistant(self, event: AssistantEvent) -> list[ReaderUpdate]:
        updates: list[ReaderUpdate] = []
        for block in event.blocks:
            if isinstance(block, TextBlock):
                if self._tool_active:
                    if len(block.text) > len(self._pending_text):
                        self._pending_text = block.text
                    continue
                updates.extend(self._surface(block.text))
            elif isinstance(block, ToolUseBlock):
                self._tool_active = True
                self._pending_text = ""
                updates.append(ProgressUpdate(describe_tool(block.name, block.input)))
        return updates

    def _surface(self, text: str) -> list[ReaderUpdate]:
        self._pending_text = ""
        if len(text) <= len(self._text):
            return []
        self._text = text
        return [TextUpdate(text)]

    def result(self, returncode: int | None, stderr: str = "") -> AgentResult:
        """Build the turn outcome once the process has exited."""
        final = self._final
        if final is not None:
            if final.is_error:
                return AgentResult(
                    success=False,
                    output="",
                    session_id=self.session_id,
                    error=final.error_message(),
                    cost_usd=final.cost_usd,
                    usage=final.usage,
                    num_turns=final.num_turns,
                )
            return AgentResult(
                success=True,
                output=final.result if final.result else self._text,
                session_id=self.session_id,
                cost_usd=final.cost_usd,
                usage=final.usage,
                num_turns=final.num_turns,
            )
        if returncode == 0:
            return AgentResult(success=True, output=self._text, session_id=self.session_id)
        detail = stderr.strip() or f"Agent exited with code {returncode}"
        return AgentResult(success=False, output=self._text, session_id=self.session_id, error=detail)
