"""Vector conversation memory."""

from telegram_batch_bot.memory.vector_store import ConversationMemory, MemoryStoreError

__all__ = [
    "ConversationMemory",
    "MemoryStoreError",
]
