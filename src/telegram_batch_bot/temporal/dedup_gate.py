"""
Dedup Gate - drops redelivered Telegram messages.

Telegram can deliver the same update more than once (reconnects, webhook
retries, several polling instances). The gate remembers every admitted
``(chat_id, message_id)`` pair for a fixed window and rejects repeats.

Expiry is lazy: each call prunes records whose window has passed, so no
per-record timers are needed. The window is the same for every record,
which keeps records in expiry order and makes pruning a scan from the front.
"""

import logging
import time
from collections import OrderedDict
from typing import Callable, Hashable, Optional

logger = logging.getLogger(__name__)

DedupKey = tuple[Hashable, Hashable]

class DedupGate:
    """
    Remembers recently admitted message ids per chat.

    Attributes:
        window_seconds: How long an admitted message id is remembered
        max_entries: Upper bound on remembered ids (oldest evicted first)

    Example:
        gate = DedupGate(window_seconds=60.0)
        gate.admit(42, 1001)  # True - first delivery
        gate.admit(42, 1001)  # False - redelivery within the window
    """

    def __init__(
        self,
        window_seconds: float = 60.0,
        max_entries: int = 10_000,
        clock: Optional[Callable[[], float]] = None,
    ):
        """
        Initialize the gate.

        Args:
            window_seconds: Dedup window in seconds. Must be positive.
            max_entries: Maximum number of remembered ids. Must be >= 1.
            clock: Monotonic time source, ``time.monotonic`` by default.
                   Injected by tests to move time without sleeping.
        """
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")

        self._window_seconds = window_seconds
        self._max_entries = max_entries
        self._clock = clock or time.monotonic
        # key -> expires_at, in insertion (and therefore expiry) order
        self._records: OrderedDict[DedupKey, float] = OrderedDict()

    def admit(self, chat_id: Hashable, message_id: Hashable) -> bool:
        """
        Record a message id unless it was admitted within the window.

        Args:
            chat_id: Chat the message belongs to
            message_id: Platform message id

        Returns:
            True if the message is new and should be processed,
            False if it is a duplicate and must be dropped.
        """
        now = self._clock()
        self._prune(now)

        key = (chat_id, message_id)
        if key in self._records:
            logger.debug(f"Duplicate message {message_id} in chat {chat_id}, dropping")
            return False

        if len(self._records) >= self._max_entries:
            evicted, _ = self._records.popitem(last=False)
            logger.debug(f"Dedup set full, evicted {evicted}")

        self._records[key] = now + self._window_seconds
        return True

    def seen(self, chat_id: Hashable, message_id: Hashable) -> bool:
        """Check whether a message id is currently remembered, without recording it."""
        self._prune(self._clock())
        return (chat_id, message_id) in self._records

    def forget(self, chat_id: Hashable, message_id: Hashable) -> None:
        """Drop a single record so the message id is admitted again."""
        self._records.pop((chat_id, message_id), None)

    def clear(self) -> None:
        """Forget every record."""
        self._records.clear()

    def _prune(self, now: float) -> None:
        while self._records:
            key, expires_at = next(iter(self._records.items()))
            if expires_at > now:
                break
            del self._records[key]

    @property
    def window_seconds(self) -> float:
        return self._window_seconds

    @property
    def max_entries(self) -> int:
        return self._max_entries

    @property
    def size(self) -> int:
        """Number of live (unexpired) records."""
        self._prune(self._clock())
        return len(self._records)

    def __repr__(self) -> str:
        return (
            f"DedupGate(window_seconds={self._window_seconds}, "
            f"max_entries={self._max_entries}, "
            f"records={len(self._records)})"
        )
