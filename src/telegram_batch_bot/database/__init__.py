"""Database initialization and message persistence."""

from telegram_batch_bot.database.db import (
    close_pool,
    init_database,
    save_ai_response,
    save_messages,
)

__all__ = [
    "close_pool",
    "init_database",
    "save_ai_response",
    "save_messages",
]
