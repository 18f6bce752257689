"""Decoding of the agent CLI ``stream-json`` event grammar."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class TextBlock:
    """Cumulative assistant text for the current turn."""

    text: str


@dataclass(frozen=True)
class ToolUseBlock:
    name: str
    input: dict[str, Any] = field(default_factory=dict)


ContentBlock = TextBlock | ToolUseBlock


@dataclass(frozen=True)
class InitEvent:
    session_id: str


@dataclass(frozen=True)
class AssistantEvent:
    blocks: tuple[ContentBlock, ...]


@dataclass(frozen=True)
class ToolResultEvent:
    """A tool finished; assistant text may surface again."""


@dataclass(frozen=True)
class ResultEvent:
    """Terminal event of a turn."""

    is_error: bool
    result: str | None = None
    session_id: str | None = None
    errors: tuple[str, ...] = ()
    cost_usd: float | None = None
    usage: dict[str, Any] | None = None
    duration_ms: int | None = None
    num_turns: int | None = None

    def error_message(self) -> str:
        if self.result:
            return self.result
        if self.errors:
            return "; ".join(self.errors)
        return "Unknown error"


StreamEvent = InitEvent | AssistantEvent | ToolResultEvent | ResultEvent


def _str_or_none(value: Any) -> str | None:
    return value if isinstance(value, str) and value else None


def _content_blocks(payload: dict[str, Any]) -> list[dict[str, Any]]:
    message = payload.get("message")
    if not isinstance(message, dict):
        return []
    content = message.get("content")
    if not isinstance(content, list):
        return []
    return [block for block in content if isinstance(block, dict)]


def _decode_assistant(payload: dict[str, Any]) -> AssistantEvent | None:
    blocks: list[ContentBlock] = []
    for block in _content_blocks(payload):
        kind = block.get("type")
        if kind == "text" and isinstance(block.get("text"), str):
            blocks.append(TextBlock(text=block["text"]))
        elif kind == "tool_use":
            tool_input = block.get("input")
            blocks.append(
                ToolUseBlock(
                    name=str(block.get("name") or "unknown"),
                    input=tool_input if isinstance(tool_input, dict) else {},
                )
            )
    if not blocks:
        return None
    return AssistantEvent(blocks=tuple(blocks))


def _decode_result(payload: dict[str, Any]) -> ResultEvent:
    raw_errors = payload.get("errors")
    errors: tuple[str, ...] = ()
    if isinstance(raw_errors, list):
        errors = tuple(str(item) for item in raw_errors if item)
    cost = payload.get("total_cost_usd", payload.get("cost_usd"))
    usage = payload.get("usage")
    duration = payload.get("duration_ms")
    num_turns = payload.get("num_turns")
    result = payload.get("result")
    return ResultEvent(
        is_error=bool(payload.get("is_error")),
        result=result if isinstance(result, str) else None,
        session_id=_str_or_none(payload.get("session_id")),
        errors=errors,
        cost_usd=float(cost) if isinstance(cost, int | float) else None,
        usage=usage if isinstance(usage, dict) else None,
        duration_ms=int(duration) if isinstance(duration, int | float) else None,
        num_turns=int(num_turns) if isinstance(num_turns, int) else None,
    )


def decode_event(line: str) -> StreamEvent | None:
    """Decode one output line, returning ``None`` for anything outside the known grammar."""
    line = line.strip()
    if not line:
        return None
    try:
        payload = json.loads(line)
    except ValueError:
        return None
    if not isinstance(payload, dict):
        return None

    kind = payload.get("type")
    if kind == "system":
        session_id = _str_or_none(payload.get("session_id"))
        if payload.get("subtype") == "init" and session_id:
            return InitEvent(session_id=session_id)
        return None
    if kind == "assistant":
        return _decode_assistant(payload)
    if kind == "user":
        if any(block.get("type") == "tool_result" for block in _content_blocks(payload)):
            return ToolResultEvent()
        return None
    if kind == "result":
        return _decode_result(payload)
    return None
