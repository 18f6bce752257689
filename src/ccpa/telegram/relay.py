"""One user turn: agent process in, live Telegram draft out."""

from __future__ import annotations

import asyncio
import contextlib
import time
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field
from typing import Any

from loguru import logger
from telegram.error import TelegramError

from ccpa.agent.executor import AgentExecutor
from ccpa.agent.reader import AgentResult
from ccpa.telegram.streaming import StreamingResponder
from ccpa.users import UserStore

DEFAULT_ERROR = "An error occurred"


@dataclass
class _UserSlot:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    holders: int = 0


class ProgressGate:
    """Let a progress line through at most once per interval, never twice in a row."""

    def __init__(self, interval_ms: int, clock: Callable[[], float] = time.monotonic) -> None:
        self.interval = interval_ms / 1000
        self._clock = clock
        self._last_at: float | None = None
        self._last_message = ""

    def allow(self, message: str) -> bool:
        now = self._clock()
        if message == self._last_message:
            return False
        if self._last_at is not None and now - self._last_at <= self.interval:
            return False
        self._last_at = now
        self._last_message = message
        return True


class TurnRunner:
    """Runs agent turns for Telegram users, one at a time per user."""

    def __init__(
        self,
        executor: AgentExecutor,
        users: UserStore,
        *,
        message_limit: int = 4096,
        stream_interval_ms: int = 500,
        progress_interval_ms: int = 1000,
        chunk_delay_ms: int = 100,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.executor = executor
        self.users = users
        self.message_limit = message_limit
        self.stream_interval_ms = stream_interval_ms
        self.progress_interval_ms = progress_interval_ms
        self.chunk_delay_ms = chunk_delay_ms
        self._clock = clock
        self._slots: dict[int, _UserSlot] = {}

    def responder(self, bot: Any, chat_id: int) -> StreamingResponder:
        return StreamingResponder(
            bot,
            chat_id,
            message_limit=self.message_limit,
            interval_ms=self.stream_interval_ms,
            chunk_delay_ms=self.chunk_delay_ms,
            clock=self._clock,
        )

    @property
    def tracked_users(self) -> int:
        return len(self._slots)

    @contextlib.asynccontextmanager
    async def exclusive(self, user_id: int) -> AsyncIterator[None]:
        """Hold the user's lock; the slot is dropped once nobody holds or awaits it."""
        slot = self._slots.get(user_id)
        if slot is None:
            slot = self._slots[user_id] = _UserSlot()
        slot.holders += 1
        try:
            async with slot.lock:
                yield
        finally:
            slot.holders -= 1
            if slot.holders == 0:
                del self._slots[user_id]

    async def run(self, bot: Any, chat_id: int, user_id: int, prompt: str, *, intro: str | None = None) -> AgentResult:
        async with self.exclusive(user_id):
            return await self._run(bot, chat_id, user_id, prompt, intro=intro)

    async def _run(self, bot: Any, chat_id: int, user_id: int, prompt: str, *, intro: str | None) -> AgentResult:
        self.users.ensure(user_id)
        session_id = self.users.get_session_id(user_id)
        logger.debug("telegram.turn.start user_id={} session_id={}", user_id, session_id or "new")

        responder = self.responder(bot, chat_id)
        state = await responder.create()
        if intro:
            await responder.show_progress(state, intro)

        gate = ProgressGate(self.progress_interval_ms, self._clock)
        received_text = False

        async def on_progress(message: str) -> None:
            if received_text or not gate.allow(message):
                return
            await responder.show_progress(state, message)

        async def on_text(text: str) -> None:
            nonlocal received_text
            received_text = True
            await responder.update(state, text)

        result = await self.executor.run(
            prompt,
            session_id,
            on_progress=on_progress,
            on_text=on_text,
            downloads_dir=self.users.downloads_path(user_id),
        )
        if result.session_id:
            self.users.save_session_id(user_id, result.session_id)

        reply = result.output if result.success else (result.error or DEFAULT_ERROR)
        await responder.finalize(state, reply)
        sent = await self.send_downloads(bot, chat_id, user_id)
        logger.info(
            "telegram.turn.done user_id={} success={} chars={} files={}",
            user_id,
            result.success,
            len(reply),
            sent,
        )
        return result

    async def send_downloads(self, bot: Any, chat_id: int, user_id: int) -> int:
        """Send every file the agent left for the user, then remove it."""
        sent = 0
        for path in self.users.pending_downloads(user_id):
            try:
                await bot.send_document(chat_id=chat_id, document=path, filename=path.name)
                sent += 1
            except TelegramError as exc:
                logger.warning("telegram.download.send_failed file={} error={}", path.name, exc)
            finally:
                path.unlink(missing_ok=True)
        return sent
