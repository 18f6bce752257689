"""ccpa - relay Telegram chats to a coding agent CLI."""

__version__ = "0.1.0"
