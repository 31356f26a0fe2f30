"""Processing sink that turns a flushed batch into a reply."""

from telegram_batch_bot.pipeline.sink import ReplyPipeline, aggregate_messages

__all__ = [
    "ReplyPipeline",
    "aggregate_messages",
]
