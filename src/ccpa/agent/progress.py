"""Human-readable progress lines for agent tool invocations."""

from __future__ import annotations

from typing import Any

MAX_COMMAND_PREVIEW = 50

_TEMPLATES: dict[str, tuple[str, str]] = {
    "Read": ("file_path", "Reading: {}"),
    "Grep": ("pattern", "Searching for: {}"),
    "Glob": ("pattern", "Finding files: {}"),
    "Edit": ("file_path", "Editing: {}"),
    "Write": ("file_path", "Writing: {}"),
    "WebSearch": ("query", "Searching web: {}"),
    "WebFetch": ("url", "Fetching: {}"),
}


def describe_tool(name: str, tool_input: dict[str, Any] | None = None) -> str:
    tool_input = tool_input or {}
    if name == "Bash":
        command = tool_input.get("command")
        if isinstance(command, str) and command:
            suffix = "..." if len(command) > MAX_COMMAND_PREVIEW else ""
            return f"Running: {command[:MAX_COMMAND_PREVIEW]}{suffix}"
    elif name in _TEMPLATES:
        key, template = _TEMPLATES[name]
        value = tool_input.get(key)
        if value:
            return template.format(value)
    return f"Using {name}..."
