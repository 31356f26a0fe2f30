"""
Message persistence - PostgreSQL storage for chats, messages and replies.

Uses an asyncpg connection pool configured from DATABASE_URL.

Usage:
    from telegram_batch_bot.database.db import init_database, save_messages, save_ai_response

    await init_database()
    ids = await save_messages(batch)
    await save_ai_response(ids[-1], "Hello!")
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

import asyncpg
from dotenv import load_dotenv

from telegram_batch_bot.core.models import InboundMessage

load_dotenv()

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS users (
    id BIGINT PRIMARY KEY,
    username TEXT,
    first_name TEXT,
    last_name TEXT,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS chat_groups (
    id TEXT PRIMARY KEY,
    type TEXT,
    title TEXT,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS messages (
    id BIGSERIAL PRIMARY KEY,
    chat_group_id TEXT NOT NULL REFERENCES chat_groups(id),
    user_id BIGINT NOT NULL REFERENCES users(id),
    telegram_message_id BIGINT NOT NULL,
    text TEXT NOT NULL,
    sent_at TIMESTAMPTZ NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_messages_chat ON messages (chat_group_id, sent_at);

CREATE TABLE IF NOT EXISTS ai_responses (
    id BIGSERIAL PRIMARY KEY,
    message_id BIGINT NOT NULL REFERENCES messages(id),
    response_text TEXT NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
"""

# =============================================================================
# CONNECTION POOL
# =============================================================================

_pool: Optional[asyncpg.Pool] = None

async def get_pool() -> asyncpg.Pool:
    """
    Get or create the database connection pool.

    Raises:
        RuntimeError: If DATABASE_URL environment variable is not set.
    """
    global _pool
    if _pool is None:
        database_url = os.getenv("DATABASE_URL")
        if not database_url:
            raise RuntimeError("DATABASE_URL environment variable is not set")
        _pool = await asyncpg.create_pool(database_url, min_size=1, max_size=5)
    return _pool

async def close_pool() -> None:
    """Close the database connection pool."""
    global _pool
    if _pool is not None:
        await _pool.close()
        _pool = None

@asynccontextmanager
async def get_connection():
    """Get a database connection from the pool."""
    pool = await get_pool()
    async with pool.acquire() as conn:
        yield conn

async def init_database() -> None:
    """Create tables and indexes if they do not exist."""
    async with get_connection() as conn:
        await conn.execute(SCHEMA_SQL)
    logger.info("Database schema initialized")

# =============================================================================
# WRITES
# =============================================================================

async def _upsert_user(conn: asyncpg.Connection, message: InboundMessage) -> None:
    sender = message.sender
    await conn.execute(
        """
        INSERT INTO users (id, username, first_name, last_name)
        VALUES ($1, $2, $3, $4)
        ON CONFLICT (id) DO UPDATE SET
            username = COALESCE($2, users.username),
            first_name = COALESCE($3, users.first_name),
            last_name = COALESCE($4, users.last_name)
        """,
        sender.id, sender.username, sender.first_name, sender.last_name,
    )

async def _upsert_chat(conn: asyncpg.Connection, message: InboundMessage) -> None:
    await conn.execute(
        """
        INSERT INTO chat_groups (id, type, title)
        VALUES ($1, $2, $3)
        ON CONFLICT (id) DO UPDATE SET
            type = COALESCE($2, chat_groups.type),
            title = COALESCE($3, chat_groups.title)
        """,
        str(message.chat_id), message.chat_type.value, message.chat_title,
    )

async def save_messages(messages: list[InboundMessage]) -> list[int]:
    """
    Store a batch of messages in one transaction.

    Senders and the chat are upserted first so foreign keys hold.

    Args:
        messages: Batch in arrival order

    Returns:
        Database row ids, in the same order as *messages*.
    """
    if not messages:
        return []

    row_ids: list[int] = []
    async with get_connection() as conn:
        async with conn.transaction():
            await _upsert_chat(conn, messages[0])
            seen_senders: set[int] = set()
            for msg in messages:
                if msg.sender.id not in seen_senders:
                    await _upsert_user(conn, msg)
                    seen_senders.add(msg.sender.id)
                row_id = await conn.fetchval(
                    """
                    INSERT INTO messages (chat_group_id, user_id, telegram_message_id, text, sent_at)
                    VALUES ($1, $2, $3, $4, $5)
                    RETURNING id
                    """,
                    str(msg.chat_id), msg.sender.id, msg.id, msg.text, msg.timestamp,
                )
                row_ids.append(row_id)

    logger.debug(f"Saved {len(row_ids)} message(s) for chat {messages[0].chat_id}")
    return row_ids

async def save_ai_response(message_id: int, response_text: str) -> int:
    """
    Store a reply linked to the message row it answers.

    Returns:
        The ai_responses row id.
    """
    async with get_connection() as conn:
        response_id = await conn.fetchval(
            """
            INSERT INTO ai_responses (message_id, response_text)
            VALUES ($1, $2)
            RETURNING id
            """,
            message_id, response_text,
        )
    logger.debug(f"AI response saved with ID {response_id}")
    return response_id
