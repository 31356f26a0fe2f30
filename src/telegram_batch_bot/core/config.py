"""
Configuration loading for the bot.

Reads ``bot_config.json`` from CONFIG_DIR (``/app/config`` in Docker,
``<project>/config`` locally), writing a default file on first run, then
applies environment overrides from ``.env``.
"""
import json
import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from telegram_batch_bot.core.models import BotConfig

logger = logging.getLogger(__name__)

PACKAGE_DIR = Path(__file__).parent.parent  # src/telegram_batch_bot/
PROJECT_ROOT = PACKAGE_DIR.parent.parent  # project root

if Path("/app/config").exists():
    # Docker: config is mounted at /app/config
    CONFIG_DIR = Path("/app/config")
else:
    CONFIG_DIR = PROJECT_ROOT / "config"

BOT_CONFIG_FILE = CONFIG_DIR / "bot_config.json"

load_dotenv(PROJECT_ROOT / '.env')
load_dotenv()

def _env_float(name: str) -> Optional[float]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return None
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}")

def apply_env_overrides(config: BotConfig) -> BotConfig:
    """
    Apply environment variable overrides to a loaded config.

    Supported variables:
        BATCH_TIMEOUT_SECONDS: batching.batch_timeout_seconds
        DEDUP_WINDOW_SECONDS: batching.dedup_window_seconds
        LLM_MODEL: llm_model

    Returns:
        A new, re-validated BotConfig.
    """
    data = config.model_dump()

    timeout = _env_float("BATCH_TIMEOUT_SECONDS")
    if timeout is not None:
        data["batching"]["batch_timeout_seconds"] = timeout

    window = _env_float("DEDUP_WINDOW_SECONDS")
    if window is not None:
        data["batching"]["dedup_window_seconds"] = window

    model = os.getenv("LLM_MODEL")
    if model:
        data["llm_model"] = model

    return BotConfig(**data)

def load_config(config_file: Optional[Path] = None) -> BotConfig:
    """
    Load bot configuration, creating a default file if none exists.

    Args:
        config_file: Path to the JSON config. Defaults to BOT_CONFIG_FILE.

    Raises:
        pydantic.ValidationError: If the file contains invalid values.
    """
    config_file = Path(config_file) if config_file else BOT_CONFIG_FILE

    if config_file.exists():
        with open(config_file, 'r', encoding='utf-8') as f:
            data = json.load(f)
        config = BotConfig(**data)
        logger.debug("Loaded config from %s", config_file)
    else:
        config = BotConfig()
        config_file.parent.mkdir(parents=True, exist_ok=True)
        with open(config_file, 'w', encoding='utf-8') as f:
            json.dump(config.model_dump(mode="json"), f, indent=2, ensure_ascii=False)
        logger.info("Wrote default config to %s", config_file)

    return apply_env_overrides(config)
