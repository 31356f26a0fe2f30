"""Tests for the daemon's Telegram event handling and reply delivery."""

from __future__ import annotations

from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from telegram_batch_bot.core.daemon import TelegramDaemon, build_inbound_message
from telegram_batch_bot.core.models import (
    DEFAULT_FALLBACK_MESSAGE,
    BatcherConfig,
    BotConfig,
    ChannelPolicy,
    ChatType,
)
from telegram_batch_bot.temporal.message_batcher import MessageBatcher
from telegram_batch_bot.testing.conftest import FixedRandom

def make_event(
    text: str = "hi",
    message_id: int = 1,
    chat_id: int = 42,
    private: bool = True,
    channel: bool = False,
    chat_title: str | None = None,
    chat_username: str | None = None,
) -> MagicMock:
    event = MagicMock()
    event.text = text
    event.id = message_id
    event.chat_id = chat_id
    event.is_private = private
    event.is_group = not private and not channel
    event.is_channel = channel
    event.message.date = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)
    event.get_sender = AsyncMock(return_value=SimpleNamespace(
        id=1001, username="alice", first_name="Alice", last_name=None,
    ))
    event.get_chat = AsyncMock(return_value=SimpleNamespace(title=chat_title, username=chat_username))
    return event

def make_daemon(config: BotConfig | None = None) -> TelegramDaemon:
    daemon = TelegramDaemon()
    daemon.config = config or BotConfig()
    daemon.batcher = MagicMock()
    daemon.batcher.receive = AsyncMock(return_value=True)
    daemon.batcher.get_batch_size = MagicMock(return_value=1)
    daemon.batcher.get_target_size = MagicMock(return_value=3)
    daemon.client = MagicMock()
    daemon.client.send_message = AsyncMock()
    return daemon

class TestBuildInboundMessage:
    @pytest.mark.asyncio
    async def test_private_message(self) -> None:
        msg = await build_inbound_message(make_event(text="hello", message_id=5))

        assert msg.id == 5
        assert msg.chat_id == 42
        assert msg.text == "hello"
        assert msg.sender.username == "alice"
        assert msg.chat_type == ChatType.PRIVATE
        assert msg.chat_title is None
        assert msg.chat_username == "alice"

    @pytest.mark.asyncio
    async def test_group_message(self) -> None:
        msg = await build_inbound_message(make_event(
            private=False, chat_id=-100, chat_title="Friends", chat_username="friends",
        ))

        assert msg.chat_type == ChatType.GROUP
        assert msg.chat_title == "Friends"
        assert msg.chat_username == "friends"

    @pytest.mark.asyncio
    async def test_channel_message(self) -> None:
        msg = await build_inbound_message(make_event(private=False, channel=True, chat_title="News"))
        assert msg.chat_type == ChatType.CHANNEL

    @pytest.mark.asyncio
    async def test_missing_sender(self) -> None:
        event = make_event()
        event.get_sender = AsyncMock(return_value=None)
        assert await build_inbound_message(event) is None

class TestHandleIncoming:
    @pytest.mark.asyncio
    async def test_message_forwarded_to_batcher(self) -> None:
        daemon = make_daemon()

        await daemon.handle_incoming(make_event(text="hello"))

        daemon.batcher.receive.assert_awaited_once()
        message = daemon.batcher.receive.await_args.args[0]
        assert message.text == "hello"
        assert daemon.stats["messages_received"] == 1

    @pytest.mark.asyncio
    async def test_commands_and_empty_messages_ignored(self) -> None:
        daemon = make_daemon()

        await daemon.handle_incoming(make_event(text="/start"))
        await daemon.handle_incoming(make_event(text="   "))

        daemon.batcher.receive.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_replies_disabled_for_channel(self) -> None:
        config = BotConfig(channels={"@news": ChannelPolicy(allow_replies=False)})
        daemon = make_daemon(config)

        await daemon.handle_incoming(make_event(private=False, channel=True, chat_username="news"))

        daemon.batcher.receive.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_duplicate_counted(self) -> None:
        daemon = make_daemon()
        daemon.batcher.receive = AsyncMock(return_value=False)

        await daemon.handle_incoming(make_event())

        assert daemon.stats["duplicates_dropped"] == 1
        assert daemon.stats["messages_received"] == 0

    @pytest.mark.asyncio
    async def test_policy_resolved_per_message(self) -> None:
        config = BotConfig(channels={"@news": ChannelPolicy(allow_replies=False)})
        daemon = make_daemon(config)

        for name in ("sports", "news", "weather"):
            await daemon.handle_incoming(make_event(chat_id=-100, private=False, channel=True, chat_username=name))

        received = [c.args[0].chat_username for c in daemon.batcher.receive.await_args_list]
        assert received == ["sports", "weather"]

class TestSendReply:
    @pytest.mark.asyncio
    async def test_reply_sent(self) -> None:
        daemon = make_daemon()

        await daemon._send_reply(42, "hello back")

        daemon.client.send_message.assert_awaited_once_with(42, "hello back")
        assert daemon.stats["replies_sent"] == 1

    @pytest.mark.asyncio
    async def test_send_ignores_reply_probability(self) -> None:
        daemon = make_daemon(BotConfig(channels={"42": ChannelPolicy(reply_probability=0.0)}))

        await daemon._send_reply(42, "fallback")

        daemon.client.send_message.assert_awaited_once_with(42, "fallback")

class TestReplyProbability:
    @pytest.mark.asyncio
    async def test_zero_probability_skips_pipeline(self, make_message) -> None:
        daemon = make_daemon(BotConfig(channels={"42": ChannelPolicy(reply_probability=0.0)}))
        daemon.pipeline = MagicMock()
        daemon.pipeline.process = AsyncMock(return_value="answer")

        assert await daemon._process_batch(42, [make_message(1)]) == ""

        daemon.pipeline.process.assert_not_awaited()
        assert daemon.stats["replies_skipped"] == 1

    @pytest.mark.asyncio
    async def test_policy_matched_by_username(self, make_message) -> None:
        config = BotConfig(channels={"@alice": ChannelPolicy(reply_probability=0.0)})
        daemon = make_daemon(config)
        daemon.pipeline = MagicMock()
        daemon.pipeline.process = AsyncMock(return_value="answer")

        message = make_message(1).model_copy(update={"chat_username": "alice"})
        assert await daemon._process_batch(42, [message]) == ""
        daemon.pipeline.process.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_fallback_sent_in_chat_with_reply_probability(self) -> None:
        """A failing batch still gets the fallback notice when replies are probabilistic."""
        daemon = make_daemon(BotConfig(channels={"42": ChannelPolicy(reply_probability=0.5)}))
        daemon.pipeline = MagicMock()
        daemon.pipeline.process = AsyncMock(side_effect=RuntimeError("AI down"))
        daemon.batcher = MessageBatcher(
            sink=daemon._process_batch,
            send=daemon._send_reply,
            config=BatcherConfig(batch_timeout_seconds=10.0),
            rng=FixedRandom(1),
        )

        with patch("telegram_batch_bot.core.daemon.random.random", return_value=0.1):
            await daemon.handle_incoming(make_event(chat_id=42))
        await daemon.batcher.join()

        daemon.pipeline.process.assert_awaited_once()
        daemon.client.send_message.assert_awaited_once_with(42, DEFAULT_FALLBACK_MESSAGE)

    @pytest.mark.asyncio
    async def test_skipped_batch_sends_nothing(self) -> None:
        daemon = make_daemon(BotConfig(channels={"42": ChannelPolicy(reply_probability=0.0)}))
        daemon.pipeline = MagicMock()
        daemon.pipeline.process = AsyncMock(side_effect=RuntimeError("AI down"))
        daemon.batcher = MessageBatcher(
            sink=daemon._process_batch,
            send=daemon._send_reply,
            config=BatcherConfig(batch_timeout_seconds=10.0),
            rng=FixedRandom(1),
        )

        await daemon.handle_incoming(make_event(chat_id=42))
        await daemon.batcher.join()

        daemon.pipeline.process.assert_not_awaited()
        daemon.client.send_message.assert_not_awaited()

@pytest.mark.asyncio
async def test_redelivered_event_answered_once() -> None:
    """Two deliveries of the same update produce one pipeline call and one reply."""
    daemon = make_daemon()
    daemon.pipeline = MagicMock()
    daemon.pipeline.process = AsyncMock(return_value="answer")
    daemon.batcher = MessageBatcher(
        sink=daemon._process_batch,
        send=daemon._send_reply,
        config=BatcherConfig(batch_timeout_seconds=0.05),
        rng=FixedRandom(4),
    )

    event = make_event(message_id=99, chat_id=5)
    await daemon.handle_incoming(event)
    await daemon.handle_incoming(event)
    await daemon.batcher.join()

    daemon.pipeline.process.assert_awaited_once()
    assert [m.id for m in daemon.pipeline.process.await_args.args[1]] == [99]
    daemon.client.send_message.assert_awaited_once_with(5, "answer")
    assert daemon.stats["duplicates_dropped"] == 1
    assert daemon.stats["batches_processed"] == 1
