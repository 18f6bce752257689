from __future__ import annotations

import pytest

from ccpa.telegram.chunker import annotate_chunks, find_split_point, split_message


def test_short_text_is_one_chunk() -> None:
    assert split_message("hello", 10) == ["hello"]
    assert split_message("x" * 4096) == ["x" * 4096]
    assert split_message("", 10) == [""]


@pytest.mark.parametrize(
    "text",
    [
        "word " * 500,
        "line\n" * 700,
        ("paragraph text here.\n\n" * 300),
        "x" * 10_000,
        "mixed ünïcödé ✓ text\nwith lines  and  spaces\n\n" * 200,
    ],
)
def test_long_text_rejoins_exactly(text: str) -> None:
    chunks = split_message(text, 1000)
    assert len(chunks) > 1
    assert "".join(chunks) == text
    assert all(0 < len(chunk) <= 1000 for chunk in chunks)


def test_prefers_paragraph_break_past_midpoint() -> None:
    text = "a" * 70 + "\n\n" + "b" * 10 + "\n" + "c" * 5 + " " + "d" * 30
    chunks = split_message(text, 100)
    assert chunks[0] == "a" * 70 + "\n\n"
    assert "".join(chunks) == text


def test_falls_back_to_newline_then_space() -> None:
    newline_text = "a" * 60 + "\n" + "b" * 20 + " " + "c" * 40
    assert find_split_point(newline_text, 100) == 61

    space_text = "a" * 60 + " " + "b" * 60
    assert find_split_point(space_text, 100) == 61


def test_breaks_before_midpoint_are_ignored() -> None:
    text = "a" * 20 + "\n\n" + "b" * 150
    assert find_split_point(text, 100) == 100
    assert split_message(text, 100)[0] == text[:100]


def test_rejects_non_positive_length() -> None:
    with pytest.raises(ValueError):
        split_message("abc", 0)


def test_annotate_single_chunk_is_unchanged() -> None:
    assert annotate_chunks(["only"]) == ["only"]


def test_annotate_first_middle_last() -> None:
    parts = annotate_chunks(["one", "two", "three"])
    assert parts == [
        "one\n\n_(continued...)_",
        "_(part 2)_\n\ntwo\n\n_(continued...)_",
        "_(part 3)_\n\nthree",
    ]
