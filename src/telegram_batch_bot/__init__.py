"""
Telegram Batch Bot - a Telegram chat-bot that answers messages in batches.

Incoming messages are de-duplicated, grouped per chat into randomly sized
batches and answered with one Claude reply per batch. Messages and replies
are stored in PostgreSQL and in a vector memory used as reply context.
"""

__version__ = "1.0.0"
