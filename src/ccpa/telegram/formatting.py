"""Rendering helpers for Telegram message text."""

from __future__ import annotations

import re

from telegramify_markdown import markdownify as md

RICH_PARSE_MODE = "MarkdownV2"

_MARKUP_CHARS = re.compile(r"[_*`]")


def render_rich(text: str) -> str:
    return md(text)


def strip_markup(text: str) -> str:
    return _MARKUP_CHARS.sub("", text)
