"""Live draft message that follows a growing agent reply.

A :class:`StreamingResponder` owns one chat. ``create`` posts a placeholder
draft, ``update`` edits it with at most one edit per interval, and ``finalize``
replaces it with the complete answer, splitting into several messages when the
answer no longer fits into one.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import timedelta
from typing import Any

from loguru import logger
from telegram.error import RetryAfter, TelegramError

from ccpa.telegram.chunker import ANNOTATION_RESERVE, TELEGRAM_MAX_LENGTH, annotate_chunks, split_message
from ccpa.telegram.formatting import RICH_PARSE_MODE, render_rich, strip_markup

PLACEHOLDER = "_..._"
STREAMING_INDICATOR = "_(streaming...)_"
CURSOR = " ▌"
EMPTY_REPLY = "No response received"

# Overflow threshold and tail length below the hard limit while streaming.
DISPLAY_MARGIN = 50
TAIL_MARGIN = 100


@dataclass
class DeliveryState:
    """Mutable state of one draft message, owned by a single turn."""

    chat_id: int
    message_id: int
    current_text: str = ""
    last_update: float | None = None
    complete: bool = False


def _not_modified(exc: TelegramError) -> bool:
    return "message is not modified" in str(exc).lower()


class StreamingResponder:
    """Throttled editing and final delivery for one chat."""

    def __init__(
        self,
        bot: Any,
        chat_id: int,
        *,
        message_limit: int = TELEGRAM_MAX_LENGTH,
        interval_ms: int = 500,
        chunk_delay_ms: int = 100,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.bot = bot
        self.chat_id = chat_id
        self.message_limit = message_limit
        self.interval = interval_ms / 1000
        self.chunk_delay = chunk_delay_ms / 1000
        self._clock = clock

    async def create(self) -> DeliveryState:
        message = await self.bot.send_message(
            chat_id=self.chat_id, text=render_rich(PLACEHOLDER), parse_mode=RICH_PARSE_MODE
        )
        return DeliveryState(chat_id=self.chat_id, message_id=message.message_id)

    def render_draft(self, state: DeliveryState, text: str) -> str:
        display = text
        if len(text) > self.message_limit - DISPLAY_MARGIN:
            display = f"{STREAMING_INDICATOR}\n\n{text[-(self.message_limit - TAIL_MARGIN) :]}"
        if not state.complete and not display.endswith("_"):
            display = f"{display}{CURSOR}"
        return display

    async def update(self, state: DeliveryState, text: str, force: bool = False) -> bool:
        """Edit the draft to show ``text``; returns whether an edit was made."""
        now = self._clock()
        if not force and state.last_update is not None and now - state.last_update < self.interval:
            return False
        if text == state.current_text:
            return False

        if not await self._edit(state, self.render_draft(state, text)):
            return False
        state.current_text = text
        state.last_update = now
        return True

    async def show_progress(self, state: DeliveryState, message: str) -> bool:
        return await self._edit(state, f"_{message}_")

    async def finalize(self, state: DeliveryState, final_text: str) -> None:
        state.complete = True
        final_text = final_text or EMPTY_REPLY
        state.current_text = final_text

        chunks = split_message(final_text, self.message_limit)
        if len(chunks) == 1:
            if await self._edit(state, final_text):
                return
            logger.warning("telegram.stream.finalize.edit_failed chat_id={} message_id={}", state.chat_id, state.message_id)
            await self.send_chunked(final_text)
            return

        try:
            await self.bot.delete_message(chat_id=state.chat_id, message_id=state.message_id)
        except TelegramError as exc:
            logger.debug("telegram.stream.delete_failed message_id={} error={}", state.message_id, exc)
        await self.send_chunked(final_text)

    async def send_chunked(self, text: str) -> int:
        """Send text as one or more new messages in order; returns the number of parts."""
        text = text or EMPTY_REPLY
        if len(text) <= self.message_limit:
            chunks = [text]
        else:
            chunks = split_message(text, self.message_limit - ANNOTATION_RESERVE)
        parts = annotate_chunks(chunks)
        for index, part in enumerate(parts):
            await self._send_part(index, part)
            if index < len(parts) - 1:
                await asyncio.sleep(self.chunk_delay)
        return len(parts)

    async def _send_message(self, **kwargs: Any) -> None:
        """Send once, waiting out a single flood-control delay."""
        try:
            await self.bot.send_message(chat_id=self.chat_id, **kwargs)
        except RetryAfter as exc:
            delay = exc.retry_after
            if isinstance(delay, timedelta):
                delay = delay.total_seconds()
            logger.info("telegram.send.retry_after chat_id={} seconds={}", self.chat_id, delay)
            await asyncio.sleep(delay)
            await self.bot.send_message(chat_id=self.chat_id, **kwargs)

    async def _send_part(self, index: int, part: str) -> None:
        try:
            await self._send_message(text=render_rich(part), parse_mode=RICH_PARSE_MODE)
            return
        except TelegramError as exc:
            logger.debug("telegram.send.rich_rejected part={} error={}", index + 1, exc)
        try:
            await self._send_message(text=strip_markup(part))
            return
        except TelegramError as exc:
            logger.warning("telegram.send.failed part={} error={}", index + 1, exc)
        try:
            await self._send_message(text=f"Error sending message part {index + 1}")
        except TelegramError:
            logger.exception("telegram.send.notice_failed chat_id={}", self.chat_id)

    async def _edit(self, state: DeliveryState, text: str) -> bool:
        try:
            await self.bot.edit_message_text(
                chat_id=state.chat_id,
                message_id=state.message_id,
                text=render_rich(text),
                parse_mode=RICH_PARSE_MODE,
            )
            return True
        except TelegramError as exc:
            if _not_modified(exc):
                return True
            logger.debug("telegram.edit.rich_rejected message_id={} error={}", state.message_id, exc)
        try:
            await self.bot.edit_message_text(
                chat_id=state.chat_id,
                message_id=state.message_id,
                text=strip_markup(text),
            )
            return True
        except TelegramError as exc:
            if _not_modified(exc):
                return True
            logger.debug("telegram.edit.failed message_id={} error={}", state.message_id, exc)
            return False
