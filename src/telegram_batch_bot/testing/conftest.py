"""Shared fixtures for the batch bot tests."""

import random
from datetime import datetime, timedelta
from typing import Callable

import pytest

from telegram_batch_bot.core.models import BatcherConfig, ChatType, InboundMessage, SenderInfo

BASE_TIME = datetime(2026, 1, 15, 12, 0, 0)

class FixedRandom(random.Random):
    """Random source whose randint returns scripted sizes, repeating the last one."""

    def __init__(self, *sizes: int):
        super().__init__(0)
        self.sizes = list(sizes)
        self.calls: list[tuple[int, int]] = []

    def randint(self, a: int, b: int) -> int:
        self.calls.append((a, b))
        if len(self.sizes) > 1:
            return self.sizes.pop(0)
        return self.sizes[0]

class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

@pytest.fixture
def make_message() -> Callable[..., InboundMessage]:
    """Factory for InboundMessage snapshots with sensible defaults."""

    def _make(
        message_id: int,
        chat_id: int | str = 42,
        text: str | None = None,
        sender_id: int = 1001,
        username: str | None = "alice",
        chat_type: ChatType = ChatType.PRIVATE,
        chat_title: str | None = None,
    ) -> InboundMessage:
        return InboundMessage(
            id=message_id,
            chat_id=chat_id,
            sender=SenderInfo(id=sender_id, username=username, first_name="Alice"),
            text=text if text is not None else f"message {message_id}",
            timestamp=BASE_TIME + timedelta(seconds=message_id),
            chat_type=chat_type,
            chat_title=chat_title,
        )

    return _make

@pytest.fixture
def fast_config() -> BatcherConfig:
    """Batcher config with a short timeout so timer tests run quickly."""
    return BatcherConfig(batch_timeout_seconds=0.05, dedup_window_seconds=60.0)

@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()
