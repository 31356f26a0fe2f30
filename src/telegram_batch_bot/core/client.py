"""
Telegram client factory.

Builds a Telethon client logged in as a bot from environment credentials.
"""
import os
from pathlib import Path

from dotenv import load_dotenv
from telethon import TelegramClient

from telegram_batch_bot.core.config import CONFIG_DIR

load_dotenv()

SESSION_NAME = "bot"

def _require_env(name: str) -> str:
    value = os.getenv(name)
    if not value:
        raise RuntimeError(f"{name} environment variable is not set")
    return value

async def get_client(session_dir: Path = CONFIG_DIR) -> TelegramClient:
    """
    Create, connect and authorize the bot client.

    Requires TELEGRAM_API_ID, TELEGRAM_API_HASH and TELEGRAM_BOT_TOKEN.

    Raises:
        RuntimeError: If a credential is missing.
        ValueError: If TELEGRAM_API_ID is not an integer.
    """
    api_id = int(_require_env("TELEGRAM_API_ID"))
    api_hash = _require_env("TELEGRAM_API_HASH")
    bot_token = _require_env("TELEGRAM_BOT_TOKEN")

    session_dir.mkdir(parents=True, exist_ok=True)
    client = TelegramClient(str(session_dir / SESSION_NAME), api_id, api_hash)
    await client.start(bot_token=bot_token)
    return client
