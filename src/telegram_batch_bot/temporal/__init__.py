"""Temporal processing modules (batching, de-duplication)."""

from telegram_batch_bot.temporal.dedup_gate import DedupGate
from telegram_batch_bot.temporal.message_batcher import MessageBatcher

__all__ = [
    "DedupGate",
    "MessageBatcher",
]
