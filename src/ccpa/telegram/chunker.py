"""Splitting long replies into Telegram-sized messages."""

from __future__ import annotations

TELEGRAM_MAX_LENGTH = 4096

CONTINUED_MARKER = "_(continued...)_"
PART_MARKER = "_(part {})_"
# Room taken by the widest annotation: part header, continuation footer and separators.
ANNOTATION_RESERVE = 64


def find_split_point(text: str, max_length: int) -> int:
    if len(text) <= max_length:
        return len(text)

    window = text[:max_length]
    midpoint = max_length * 0.5
    for separator in ("\n\n", "\n", " "):
        index = window.rfind(separator)
        if index > midpoint:
            return index + len(separator)
    return max_length


def split_message(text: str, max_length: int = TELEGRAM_MAX_LENGTH) -> list[str]:
    """Split text into chunks of at most ``max_length`` characters.

    Paragraph breaks are preferred over line breaks, and line breaks over spaces,
    as long as the break falls in the second half of the window. Joining the
    chunks gives back the original text.
    """
    if max_length <= 0:
        raise ValueError("max_length must be positive")
    if len(text) <= max_length:
        return [text]

    chunks: list[str] = []
    remaining = text
    while remaining:
        if len(remaining) <= max_length:
            chunks.append(remaining)
            break
        split_at = find_split_point(remaining, max_length)
        chunks.append(remaining[:split_at])
        remaining = remaining[split_at:]
    return chunks


def annotate_chunks(chunks: list[str]) -> list[str]:
    if len(chunks) <= 1:
        return list(chunks)
    annotated: list[str] = []
    last = len(chunks) - 1
    for index, chunk in enumerate(chunks):
        if index == 0:
            annotated.append(f"{chunk}\n\n{CONTINUED_MARKER}")
        elif index < last:
            annotated.append(f"{PART_MARKER.format(index + 1)}\n\n{chunk}\n\n{CONTINUED_MARKER}")
        else:
            annotated.append(f"{PART_MARKER.format(index + 1)}\n\n{chunk}")
    return annotated
