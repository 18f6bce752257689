from __future__ import annotations

import json

from ccpa.agent.reader import ProgressUpdate, StreamReader, TextUpdate


def _encode(*events: dict[str, object]) -> bytes:
    return b"".join(json.dumps(event, ensure_ascii=False).encode("utf-8") + b"\n" for event in events)


def _text(text: str) -> dict[str, object]:
    return {"type": "assistant", "message": {"content": [{"type": "text", "text": text}]}}


def _tool(name: str, **tool_input: object) -> dict[str, object]:
    return {"type": "assistant", "message": {"content": [{"type": "tool_use", "name": name, "input": tool_input}]}}


TOOL_RESULT = {"type": "user", "message": {"content": [{"type": "tool_result", "content": "ok"}]}}


def test_longest_cumulative_text_wins() -> None:
    reader = StreamReader()
    updates = reader.feed(_encode(_text("Hel"), _text("Hello"), _text("Hello"), _text("Hello world")))
    assert updates == [TextUpdate("Hel"), TextUpdate("Hello"), TextUpdate("Hello world")]
    assert reader.text == "Hello world"


def test_shorter_text_does_not_replace_accumulated() -> None:
    reader = StreamReader()
    reader.feed(_encode(_text("Hello world"), _text("Hi")))
    assert reader.text == "Hello world"


def test_partial_lines_are_carried_over() -> None:
    reader = StreamReader()
    data = _encode(_text("Hello"), _text("Hello there"))
    updates = []
    for index in range(0, len(data), 7):
        updates.extend(reader.feed(data[index : index + 7]))
    assert updates == [TextUpdate("Hello"), TextUpdate("Hello there")]


def test_multibyte_characters_split_across_reads() -> None:
    reader = StreamReader()
    data = _encode(_text("héllo ✓"))
    cut = data.index("✓".encode()) + 1
    assert reader.feed(data[:cut]) == []
    assert reader.feed(data[cut:]) == [TextUpdate("héllo ✓")]


def test_trailing_line_without_newline_is_flushed_on_close() -> None:
    reader = StreamReader()
    assert reader.feed(json.dumps(_text("tail")).encode()) == []
    assert reader.close() == [TextUpdate("tail")]


def test_non_json_lines_are_ignored() -> None:
    reader = StreamReader()
    updates = reader.feed(b"debug: starting\n" + _encode(_text("ok")) + b"{broken\n")
    assert updates == [TextUpdate("ok")]


def test_tool_use_emits_progress_and_holds_text_until_result() -> None:
    reader = StreamReader()
    updates = reader.feed(_encode(_text("Let me check"), _tool("Read", file_path="a.py")))
    assert updates == [TextUpdate("Let me check"), ProgressUpdate("Reading: a.py")]
    assert reader.tool_active is True

    assert reader.feed(_encode(_text("The file contains a parser"))) == []
    assert reader.text == "Let me check"

    assert reader.feed(_encode(TOOL_RESULT)) == [TextUpdate("The file contains a parser")]
    assert reader.tool_active is False
    assert reader.text == "The file contains a parser"


def test_shorter_text_during_tool_window_stays_hidden() -> None:
    reader = StreamReader()
    reader.feed(_encode(_text("A long first answer"), _tool("Bash", command="ls"), _text("short")))
    assert reader.feed(_encode(TOOL_RESULT)) == []
    assert reader.text == "A long first answer"


def test_unknown_tool_progress_falls_back() -> None:
    reader = StreamReader()
    assert reader.feed(_encode(_tool("NotebookEdit"))) == [ProgressUpdate("Using NotebookEdit...")]


def test_events_after_result_are_ignored() -> None:
    reader = StreamReader()
    reader.feed(_encode({"type": "result", "is_error": False, "result": "final"}, _text("late text")))
    assert reader.finished is True
    assert reader.text == ""
    assert reader.result(0).output == "final"


def test_result_success_prefers_terminal_text() -> None:
    reader = StreamReader()
    reader.feed(
        _encode(
            {"type": "system", "subtype": "init", "session_id": "init-id"},
            _text("streamed"),
            {"type": "result", "is_error": False, "result": "authoritative", "session_id": "final-id"},
        )
    )
    result = reader.result(0)
    assert result.success is True
    assert result.output == "authoritative"
    assert result.session_id == "final-id"


def test_result_without_text_uses_accumulated() -> None:
    reader = StreamReader()
    reader.feed(_encode(_text("streamed"), {"type": "result", "is_error": False}))
    assert reader.result(0).output == "streamed"


def test_result_error_joins_sub_errors() -> None:
    reader = StreamReader()
    reader.feed(_encode({"type": "result", "is_error": True, "errors": ["a", "b"]}))
    result = reader.result(1)
    assert result.success is False
    assert result.error == "a; b"


def test_clean_exit_without_result_uses_accumulated_text() -> None:
    reader = StreamReader()
    reader.feed(_encode({"type": "system", "subtype": "init", "session_id": "s-9"}, _text("partial answer")))
    result = reader.result(0)
    assert result.success is True
    assert result.output == "partial answer"
    assert result.session_id == "s-9"


def test_failed_exit_without_result_surfaces_stderr() -> None:
    reader = StreamReader()
    result = reader.result(2, "fatal: not logged in\n")
    assert result.success is False
    assert result.error == "fatal: not logged in"
    assert StreamReader().result(3).error == "Agent exited with code 3"
