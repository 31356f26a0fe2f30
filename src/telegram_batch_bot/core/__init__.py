"""Core bot modules: models, configuration, Telegram client and daemon."""

from telegram_batch_bot.core.models import (
    AIResponse,
    BatchState,
    BatcherConfig,
    BotConfig,
    ChannelPolicy,
    ChatType,
    InboundMessage,
    SenderInfo,
)

__all__ = [
    "AIResponse",
    "BatchState",
    "BatcherConfig",
    "BotConfig",
    "ChannelPolicy",
    "ChatType",
    "InboundMessage",
    "SenderInfo",
]
