"""Telegram bot adapter."""

from __future__ import annotations

import asyncio
import contextlib
import re
import signal
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from loguru import logger
from telegram import Message, Update
from telegram.error import TelegramError
from telegram.ext import (
    Application,
    ApplicationHandlerStop,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    TypeHandler,
    filters,
)

from ccpa.agent.executor import AgentExecutor
from ccpa.config import Settings
from ccpa.errors import TranscriptionError
from ccpa.ratelimit import RateLimiter
from ccpa.telegram.formatting import RICH_PARSE_MODE, render_rich
from ccpa.telegram.relay import TurnRunner
from ccpa.transcription import Transcriber
from ccpa.users import UserStore

SWEEP_INTERVAL_SECONDS = 60
TYPING_INTERVAL_SECONDS = 4

SUPPORTED_MIME_TYPES = frozenset({
    "application/pdf",
    "text/plain",
    "text/markdown",
    "text/csv",
    "application/json",
    "application/xml",
    "text/html",
    "image/jpeg",
    "image/png",
    "image/gif",
    "image/webp",
})

SUPPORTED_EXTENSIONS = frozenset({
    ".pdf", ".txt", ".md", ".csv", ".json", ".xml", ".html",
    ".js", ".ts", ".py", ".go", ".rs", ".java",
    ".jpg", ".jpeg", ".png", ".gif", ".webp",
})

_UNSAFE_FILENAME = re.compile(r"[^a-zA-Z0-9._-]")

HELP_TEXT = (
    "*Agent Telegram Bot*\n\n"
    "*Commands:*\n"
    "/start - Welcome message\n"
    "/help - Show this help\n"
    "/clear - Clear conversation history\n\n"
    "*Usage:*\n"
    "Just send any message to chat with the agent.\n"
    "You can also send images, documents and voice messages.\n\n"
    "Your conversation history is preserved between messages. "
    "Use /clear to start a fresh conversation."
)


def safe_filename(name: str) -> str:
    return _UNSAFE_FILENAME.sub("_", name) or "document"


def is_supported_document(file_name: str, mime_type: str | None) -> bool:
    return (mime_type or "") in SUPPORTED_MIME_TYPES or Path(file_name).suffix.lower() in SUPPORTED_EXTENSIONS


@dataclass(frozen=True)
class TelegramConfig:
    """Telegram adapter config."""

    token: str
    allowed_user_ids: frozenset[int]
    show_transcription: bool = True


class TelegramBot:
    """Long-polling bot that relays every chat message to the agent."""

    name = "telegram"

    def __init__(
        self,
        config: TelegramConfig,
        runner: TurnRunner,
        *,
        limiter: RateLimiter,
        transcriber: Transcriber,
    ) -> None:
        self._config = config
        self.runner = runner
        self.users = runner.users
        self.limiter = limiter
        self.transcriber = transcriber
        self._app: Application | None = None
        self._running = False
        self._sweep_task: asyncio.Task[None] | None = None
        self._typing_tasks: dict[int, asyncio.Task[None]] = {}

    @classmethod
    def from_settings(cls, settings: Settings) -> TelegramBot:
        runner = TurnRunner(
            AgentExecutor(settings.agent_command, workspace=settings.workspace),
            UserStore(settings.resolved_data_dir),
            message_limit=settings.message_limit,
            stream_interval_ms=settings.stream_interval_ms,
            progress_interval_ms=settings.progress_interval_ms,
            chunk_delay_ms=settings.chunk_delay_ms,
        )
        return cls(
            TelegramConfig(
                token=settings.telegram_token,
                allowed_user_ids=frozenset(settings.allowed_user_ids),
                show_transcription=settings.show_transcription,
            ),
            runner,
            limiter=RateLimiter(settings.rate_limit_max, settings.rate_limit_window_seconds),
            transcriber=Transcriber(settings.transcription_command, model=settings.transcription_model),
        )

    def build_application(self) -> Application:
        app = Application.builder().token(self._config.token).concurrent_updates(True).build()
        app.add_handler(TypeHandler(Update, self._gate), group=-1)
        app.add_handler(CommandHandler("start", self._on_start))
        app.add_handler(CommandHandler("help", self._on_help))
        app.add_handler(CommandHandler("clear", self._on_clear))
        app.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, self._on_text))
        app.add_handler(MessageHandler(filters.PHOTO, self._on_photo))
        app.add_handler(MessageHandler(filters.Document.ALL, self._on_document))
        app.add_handler(MessageHandler(filters.VOICE, self._on_voice))
        app.add_error_handler(self._on_error)
        return app

    async def start(self) -> None:
        if not self._config.token:
            raise RuntimeError("telegram token is empty")
        logger.info("telegram.bot.start allowed_users={}", len(self._config.allowed_user_ids))
        self._running = True
        self._app = self.build_application()
        await self._app.initialize()
        await self._app.start()
        self._sweep_task = asyncio.create_task(self._sweep_loop())
        updater = self._app.updater
        if updater is None:
            return
        await updater.start_polling(drop_pending_updates=True, allowed_updates=["message"])
        bot_user = self._app.bot.username
        logger.info("telegram.bot.polling username={}", bot_user)

    async def stop(self) -> None:
        self._running = False
        for task in self._typing_tasks.values():
            task.cancel()
        self._typing_tasks.clear()
        if self._sweep_task is not None:
            self._sweep_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._sweep_task
            self._sweep_task = None
        if self._app is None:
            return
        updater = self._app.updater
        if updater is not None:
            await updater.stop()
        await self._app.stop()
        await self._app.shutdown()
        self._app = None
        logger.info("telegram.bot.stopped")

    async def run_forever(self) -> None:
        """Poll until SIGINT or SIGTERM."""
        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            with contextlib.suppress(NotImplementedError):
                loop.add_signal_handler(sig, stop_event.set)
        await self.start()
        try:
            await stop_event.wait()
            logger.info("telegram.bot.shutdown_requested")
        finally:
            await self.stop()

    # Access control

    def is_allowed(self, user_id: int) -> bool:
        return not self._config.allowed_user_ids or user_id in self._config.allowed_user_ids

    async def _gate(self, update: Update, _context: ContextTypes.DEFAULT_TYPE) -> None:
        user = update.effective_user
        message = update.effective_message
        if user is None:
            return
        if not self.is_allowed(user.id):
            logger.info("telegram.access.denied user_id={} username={}", user.id, user.username or "")
            if message is not None:
                await message.reply_text(
                    "Sorry, you are not authorized to use this bot.\nContact the administrator to request access."
                )
            raise ApplicationHandlerStop
        decision = self.limiter.check(user.id)
        if not decision.allowed:
            logger.info("telegram.rate_limited user_id={} retry_after={}", user.id, decision.retry_after)
            if message is not None:
                await message.reply_text(
                    f"Rate limit exceeded. Please wait {decision.retry_after} seconds before sending another message."
                )
            raise ApplicationHandlerStop

    async def _sweep_loop(self) -> None:
        while self._running:
            await asyncio.sleep(SWEEP_INTERVAL_SECONDS)
            removed = self.limiter.sweep()
            if removed:
                logger.debug("telegram.rate_limit.sweep removed={}", removed)

    # Commands

    async def _on_start(self, update: Update, _context: ContextTypes.DEFAULT_TYPE) -> None:
        if update.message is None:
            return
        name = update.effective_user.first_name if update.effective_user else ""
        await update.message.reply_text(
            f"Hello {name or 'there'}! I relay your messages to a coding agent.\n\n"
            "You can:\n"
            "- Send any message to chat with me\n"
            "- Send images, documents or voice messages\n"
            "- Use /clear to start a new conversation\n\n"
            "Type /help for more information."
        )

    async def _on_help(self, update: Update, _context: ContextTypes.DEFAULT_TYPE) -> None:
        if update.message is None:
            return
        await update.message.reply_text(render_rich(HELP_TEXT), parse_mode=RICH_PARSE_MODE)

    async def _on_clear(self, update: Update, _context: ContextTypes.DEFAULT_TYPE) -> None:
        if update.message is None:
            return
        if update.effective_user is None:
            await update.message.reply_text("Could not identify user.")
            return
        try:
            async with self.runner.exclusive(update.effective_user.id):
                self.users.clear(update.effective_user.id)
        except OSError:
            logger.exception("telegram.clear.error user_id={}", update.effective_user.id)
            await update.message.reply_text("Failed to clear conversation history. Please try again.")
            return
        await update.message.reply_text(
            "Conversation history cleared. Your next message will start a fresh conversation."
        )

    # Messages

    async def _on_text(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        message = update.message
        if message is None or update.effective_user is None:
            return
        text = message.text or ""
        if not text.strip():
            await message.reply_text("Please provide a message.")
            return
        logger.info(
            "telegram.inbound user_id={} username={} content={}",
            update.effective_user.id,
            update.effective_user.username or "",
            text[:100],
        )
        await self._relay(context.bot, message, update.effective_user.id, text, failure="An error occurred")

    async def _on_photo(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        message = update.message
        if message is None or update.effective_user is None or not message.photo:
            return
        user_id = update.effective_user.id
        caption = message.caption or "Please analyze this image."
        try:
            self.users.ensure(user_id)
            telegram_file = await context.bot.get_file(message.photo[-1].file_id)
            suffix = Path(telegram_file.file_path or "").suffix or ".jpg"
            image_name = f"image_{int(time.time() * 1000)}{suffix}"
            await telegram_file.download_to_drive(custom_path=self.users.uploads_path(user_id) / image_name)
        except (TelegramError, OSError) as exc:
            logger.exception("telegram.photo.download_error user_id={}", user_id)
            await message.reply_text(f"Could not download the image: {exc}")
            return
        logger.debug("telegram.photo.saved user_id={} name={}", user_id, image_name)
        prompt = f'Please look at the image file "./uploads/{image_name}" and {caption}'
        await self._relay(context.bot, message, user_id, prompt, failure="An error occurred processing the image")

    async def _on_document(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        message = update.message
        if message is None or update.effective_user is None or message.document is None:
            return
        document = message.document
        user_id = update.effective_user.id
        file_name = document.file_name or "document"
        if not is_supported_document(file_name, document.mime_type):
            await message.reply_text("Unsupported file type. Supported: PDF, images, text, and code files.")
            return
        caption = message.caption or "Please analyze this document."
        name = safe_filename(file_name)
        try:
            self.users.ensure(user_id)
            telegram_file = await context.bot.get_file(document.file_id)
            await telegram_file.download_to_drive(custom_path=self.users.uploads_path(user_id) / name)
        except (TelegramError, OSError) as exc:
            logger.exception("telegram.document.download_error user_id={}", user_id)
            await message.reply_text(f"Could not download the document: {exc}")
            return
        logger.debug("telegram.document.saved user_id={} name={} mime={}", user_id, name, document.mime_type)
        prompt = f'Please read the file "./uploads/{name}" and {caption}'
        await self._relay(context.bot, message, user_id, prompt, failure="An error occurred processing the document")

    async def _on_voice(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        message = update.message
        if message is None or update.effective_user is None or message.voice is None:
            return
        user_id = update.effective_user.id
        audio_path = self.users.uploads_path(user_id) / f"voice_{int(time.time() * 1000)}.oga"
        status: Message | None = None
        try:
            self.users.ensure(user_id)
            telegram_file = await context.bot.get_file(message.voice.file_id)
            await telegram_file.download_to_drive(custom_path=audio_path)
            status = await message.reply_text(
                render_rich("_Transcribing voice message..._"), parse_mode=RICH_PARSE_MODE
            )
            transcript = await self.transcriber.transcribe(audio_path)
        except TranscriptionError as exc:
            logger.error("telegram.voice.transcription_error user_id={} error={}", user_id, exc)
            await message.reply_text(f"An error occurred processing the voice message: {exc}")
            return
        except (TelegramError, OSError) as exc:
            logger.exception("telegram.voice.error user_id={}", user_id)
            await message.reply_text(f"An error occurred processing the voice message: {exc}")
            return
        finally:
            audio_path.unlink(missing_ok=True)
            if status is not None:
                await self._delete_quietly(context.bot, status)

        if not transcript:
            await message.reply_text("Could not transcribe the voice message. Please try again.")
            return
        intro = f'"{transcript}"\n\nProcessing...' if self._config.show_transcription else None
        await self._relay(
            context.bot,
            message,
            user_id,
            transcript,
            intro=intro,
            failure="An error occurred processing the voice message",
        )

    async def _relay(
        self,
        bot: Any,
        message: Message,
        user_id: int,
        prompt: str,
        *,
        failure: str,
        intro: str | None = None,
    ) -> None:
        chat_id = message.chat_id
        self._start_typing(bot, chat_id)
        try:
            await self.runner.run(bot, chat_id, user_id, prompt, intro=intro)
        except Exception as exc:
            logger.exception("telegram.turn.error user_id={}", user_id)
            await message.reply_text(f"{failure}: {exc}")
        finally:
            self._stop_typing(chat_id)

    @staticmethod
    async def _delete_quietly(bot: Any, message: Message) -> None:
        try:
            await bot.delete_message(chat_id=message.chat_id, message_id=message.message_id)
        except TelegramError as exc:
            logger.debug("telegram.delete_failed message_id={} error={}", message.message_id, exc)

    async def _on_error(self, update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
        logger.opt(exception=context.error).error("telegram.bot.error update={}", update)

    def _start_typing(self, bot: Any, chat_id: int) -> None:
        self._stop_typing(chat_id)
        self._typing_tasks[chat_id] = asyncio.create_task(self._typing_loop(bot, chat_id))

    def _stop_typing(self, chat_id: int) -> None:
        task = self._typing_tasks.pop(chat_id, None)
        if task is not None:
            task.cancel()

    async def _typing_loop(self, bot: Any, chat_id: int) -> None:
        try:
            while True:
                await bot.send_chat_action(chat_id=chat_id, action="typing")
                await asyncio.sleep(TYPING_INTERVAL_SECONDS)
        except asyncio.CancelledError:
            return
        except Exception:
            logger.exception("telegram.typing_loop.error chat_id={}", chat_id)
            return
