"""Claude responder and prompt templates."""

from telegram_batch_bot.agent.responder import ChatResponder, ResponderError

__all__ = [
    "ChatResponder",
    "ResponderError",
]
