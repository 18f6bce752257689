"""Telegram delivery: chunking, live drafts and the bot adapter."""

from ccpa.telegram.chunker import annotate_chunks, split_message
from ccpa.telegram.streaming import DeliveryState, StreamingResponder

__all__ = [
    "DeliveryState",
    "StreamingResponder",
    "annotate_chunks",
    "split_message",
]
