"""
Message Batcher - groups inbound chat messages into randomly sized batches.

This module provides the MessageBatcher class that accumulates messages per chat
and hands each batch to a processing sink as a single call. The reply produced
by the sink is then sent back into the chat.

The batching pattern works as follows:
1. A message arrives and passes the dedup gate (redeliveries are dropped)
2. The first message of a chat creates a batch with a random target size
   and starts a single flush timer
3. Further messages are appended in arrival order
4. The batch flushes when it reaches its target size or when the timer fires,
   whichever happens first. The other trigger becomes a no-op.

Removal of the batch from the active map is the one and only "claim": whoever
removes it flushes it, anyone arriving later finds nothing and does nothing.
"""

import asyncio
import logging
import random
from typing import Awaitable, Callable, Hashable, Optional

from telegram_batch_bot.core.models import BatchState, BatcherConfig, InboundMessage
from telegram_batch_bot.temporal.dedup_gate import DedupGate

logger = logging.getLogger(__name__)

# Type aliases for the external collaborators
ProcessSink = Callable[[Hashable, list[InboundMessage]], Awaitable[str]]
OutputChannel = Callable[[Hashable, str], Awaitable[None]]

class _PendingBatch:
    """Messages of one chat waiting for a flush trigger."""

    __slots__ = ("messages", "target_size", "timer")

    def __init__(self, target_size: int):
        self.messages: list[InboundMessage] = []
        self.target_size = target_size
        self.timer: Optional[asyncio.Task] = None

class MessageBatcher:
    """
    Accumulates inbound messages per chat and flushes them as batches.

    Attributes:
        config: Timing and sizing settings (timeout, dedup window, size range)
        sink: Async function turning a batch into reply text
        send: Async function delivering reply text into a chat
        dedup_gate: Gate rejecting redelivered message ids

    Example:
        async def process(chat_id, messages: list[InboundMessage]) -> str:
            return f"Got {len(messages)} message(s)"

        async def send(chat_id, text: str) -> None:
            await client.send_message(chat_id, text)

        batcher = MessageBatcher(sink=process, send=send)
        await batcher.receive(message)
    """

    def __init__(
        self,
        sink: ProcessSink,
        send: OutputChannel,
        config: Optional[BatcherConfig] = None,
        dedup_gate: Optional[DedupGate] = None,
        rng: Optional[random.Random] = None,
    ):
        """
        Initialize the MessageBatcher.

        Args:
            sink: Async function called with (chat_id, messages) on flush.
                  Returns the reply text. May raise; failures are contained.
            send: Async function called with (chat_id, text) to deliver the reply
                  or the fallback notice.
            config: Batching configuration. Defaults to a 20s timeout,
                    a 60s dedup window and target sizes in [1, 6].
            dedup_gate: Custom dedup gate. Built from config when omitted.
            rng: Random source for target sizes. Injected by tests.
        """
        self._config = config or BatcherConfig()
        self._sink = sink
        self._send = send
        self._dedup = dedup_gate or DedupGate(
            window_seconds=self._config.dedup_window_seconds,
            max_entries=self._config.dedup_max_entries,
        )
        self._rng = rng or random.Random()

        self._batches: dict[Hashable, _PendingBatch] = {}
        # Serializes dispatches of the same chat; dropped when idle
        self._dispatch_locks: dict[Hashable, asyncio.Lock] = {}
        self._in_flight: dict[Hashable, int] = {}
        # Strong references to timer tasks until they finish
        self._tasks: set[asyncio.Task] = set()
        # Set while no dispatch is running, inline size flushes included
        self._idle = asyncio.Event()
        self._idle.set()

        logger.debug(
            f"MessageBatcher initialized: timeout={self._config.batch_timeout_seconds}s, "
            f"sizes=[{self._config.min_batch_size}, {self._config.max_batch_size}], "
            f"dedup_window={self._config.dedup_window_seconds}s"
        )

    async def receive(self, message: InboundMessage) -> bool:
        """
        Admit a message through the dedup gate and enqueue it.

        Args:
            message: The inbound message snapshot

        Returns:
            True if the message was enqueued, False if it was a duplicate.
        """
        if not self._dedup.admit(message.chat_id, message.id):
            return False
        await self.enqueue(message.chat_id, message)
        return True

    async def enqueue(self, chat_id: Hashable, message: InboundMessage) -> None:
        """
        Append a message to the chat's batch, creating the batch if needed.

        A new batch gets a random target size and a flush timer. When the batch
        reaches its target size it is flushed right away and its timer cancelled.

        Args:
            chat_id: Chat the batch belongs to
            message: The message to append
        """
        batch = self._batches.get(chat_id)
        if batch is None:
            batch = _PendingBatch(target_size=self._draw_target_size())
            self._batches[chat_id] = batch
            self._start_timer(chat_id, batch)
            logger.debug(f"Created batch for chat {chat_id}, target size {batch.target_size}")

        batch.messages.append(message)

        logger.debug(
            f"Added message {message.id} to batch for chat {chat_id}, "
            f"size: {len(batch.messages)}/{batch.target_size}"
        )

        if len(batch.messages) >= batch.target_size:
            logger.info(f"Batch for chat {chat_id} reached target size {batch.target_size}, flushing")
            await self._flush_batch(chat_id, batch)

    async def flush(self, chat_id: Hashable) -> bool:
        """
        Flush the chat's pending batch, if any.

        Args:
            chat_id: Chat to flush

        Returns:
            True if a batch was flushed, False if there was nothing to flush.
        """
        return await self._flush_batch(chat_id, None)

    def _draw_target_size(self) -> int:
        low = self._config.min_batch_size
        high = self._config.max_batch_size
        size = self._rng.randint(low, high)
        return max(low, min(high, size))

    def _start_timer(self, chat_id: Hashable, batch: _PendingBatch) -> None:
        """Start the single flush timer owned by *batch*."""
        timeout = self._config.batch_timeout_seconds
        logger.debug(f"Starting timer for chat {chat_id}: {timeout:.2f}s")

        async def timer_task():
            try:
                await asyncio.sleep(timeout)
            except asyncio.CancelledError:
                logger.debug(f"Timer cancelled for chat {chat_id}")
                raise
            logger.info(f"Batch timeout for chat {chat_id}, flushing")
            await self._flush_batch(chat_id, batch)

        task = asyncio.create_task(timer_task(), name=f"batch-timer-{chat_id}")
        batch.timer = task
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _claim(self, chat_id: Hashable, expected: Optional[_PendingBatch]) -> Optional[_PendingBatch]:
        """
        Remove the chat's batch from the active map.

        If *expected* is given, only that exact batch may be claimed; a timer
        whose batch was already flushed (and maybe replaced) claims nothing.
        The batch's timer is cancelled unless the caller is that timer.
        """
        batch = self._batches.get(chat_id)
        if batch is None or (expected is not None and batch is not expected):
            return None

        del self._batches[chat_id]

        timer = batch.timer
        batch.timer = None
        if timer is not None and timer is not asyncio.current_task() and not timer.done():
            timer.cancel()
        return batch

    async def _flush_batch(self, chat_id: Hashable, expected: Optional[_PendingBatch]) -> bool:
        batch = self._claim(chat_id, expected)
        if batch is None:
            logger.debug(f"No batch to flush for chat {chat_id}")
            return False

        messages = list(batch.messages)
        logger.info(f"Flushing batch for chat {chat_id}: {len(messages)} message(s)")
        await self._dispatch(chat_id, messages)
        return True

    async def _dispatch(self, chat_id: Hashable, messages: list[InboundMessage]) -> None:
        """
        Hand a claimed batch to the sink and deliver the result.

        Sink errors are logged and answered with the fallback notice. Send
        errors are logged. Nothing propagates to the caller.
        """
        lock = self._dispatch_locks.get(chat_id)
        if lock is None:
            lock = asyncio.Lock()
            self._dispatch_locks[chat_id] = lock
        self._in_flight[chat_id] = self._in_flight.get(chat_id, 0) + 1
        self._idle.clear()

        try:
            async with lock:
                try:
                    reply = await self._sink(chat_id, messages)
                except Exception:
                    logger.exception(
                        f"Processing failed for chat {chat_id}, sending fallback. "
                        f"Message ids were: {[m.id for m in messages]}"
                    )
                    reply = self._config.fallback_message

                if not reply:
                    logger.debug(f"Empty reply for chat {chat_id}, nothing to send")
                    return

                try:
                    await self._send(chat_id, reply)
                except Exception:
                    logger.exception(f"Failed to send reply to chat {chat_id}")
        finally:
            remaining = self._in_flight[chat_id] - 1
            if remaining:
                self._in_flight[chat_id] = remaining
            else:
                del self._in_flight[chat_id]
                del self._dispatch_locks[chat_id]
                if not self._in_flight:
                    self._idle.set()

    def state(self, chat_id: Hashable) -> BatchState:
        """
        Get the batching state of a chat.

        A chat that started a new batch while its previous batch is still
        being processed reports ACCUMULATING.
        """
        if chat_id in self._batches:
            return BatchState.ACCUMULATING
        if chat_id in self._in_flight:
            return BatchState.FLUSHING
        return BatchState.NONE

    def get_batch_size(self, chat_id: Hashable) -> int:
        """Number of messages waiting in the chat's batch (0 if none)."""
        batch = self._batches.get(chat_id)
        return len(batch.messages) if batch else 0

    def get_target_size(self, chat_id: Hashable) -> Optional[int]:
        """Target size of the chat's pending batch, or None if there is no batch."""
        batch = self._batches.get(chat_id)
        return batch.target_size if batch else None

    def get_pending_messages(self, chat_id: Hashable) -> list[InboundMessage]:
        """Copy of the chat's pending messages, without flushing."""
        batch = self._batches.get(chat_id)
        return list(batch.messages) if batch else []

    def has_pending_batch(self, chat_id: Hashable) -> bool:
        return chat_id in self._batches

    def get_all_pending_chat_ids(self) -> list[Hashable]:
        """
        Get all chat IDs that have pending batches.

        Useful for shutdown operations to identify all batches that need flushing.
        """
        return list(self._batches.keys())

    async def flush_all(self) -> None:
        """
        Flush all pending batches.

        Used for graceful shutdown so buffered messages still get answered
        before the application exits.
        """
        chat_ids = self.get_all_pending_chat_ids()
        logger.info(f"Flushing all batches: {len(chat_ids)} chat(s)")

        for chat_id in chat_ids:
            await self.flush(chat_id)

    async def cancel_all(self) -> None:
        """
        Drop all pending batches without processing them.

        Used for forced shutdown where buffered messages are abandoned.
        """
        chat_ids = self.get_all_pending_chat_ids()
        logger.info(f"Cancelling all batches: {len(chat_ids)} chat(s)")

        timers = []
        for chat_id in chat_ids:
            timer = self._batches[chat_id].timer
            batch = self._claim(chat_id, None)
            if timer is not None:
                timers.append(timer)
            if batch is not None and batch.messages:
                logger.warning(
                    f"Discarded {len(batch.messages)} pending message(s) for chat {chat_id}"
                )
        await asyncio.gather(*timers, return_exceptions=True)

    async def join(self) -> None:
        """
        Wait until every timer and every flush in progress has finished.

        Size-triggered flushes run inside the caller's task (the Telegram
        handler), so they are awaited through the idle event rather than
        as tasks.
        """
        while self._tasks or not self._idle.is_set():
            if self._tasks:
                await asyncio.gather(*list(self._tasks), return_exceptions=True)
            else:
                await self._idle.wait()

    @property
    def config(self) -> BatcherConfig:
        return self._config

    @property
    def dedup_gate(self) -> DedupGate:
        return self._dedup

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"MessageBatcher(timeout={self._config.batch_timeout_seconds}, "
            f"sizes=[{self._config.min_batch_size}, {self._config.max_batch_size}], "
            f"pending_batches={len(self._batches)}, "
            f"in_flight={sum(self._in_flight.values())})"
        )
