#!/usr/bin/env python3
"""
Telegram Batch Bot Daemon.
Long-running service that batches incoming chat messages, answers each batch
with Claude and stores the conversation in PostgreSQL and a vector memory.
"""
import argparse
import asyncio
import logging
import os
import random
import signal
from datetime import datetime
from pathlib import Path
from typing import Hashable, Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table
from telethon import events

from telegram_batch_bot.agent.responder import ChatResponder
from telegram_batch_bot.core.client import get_client
from telegram_batch_bot.core.config import load_config
from telegram_batch_bot.core.models import (
    BotConfig,
    ChannelPolicy,
    ChatType,
    InboundMessage,
    SenderInfo,
)
from telegram_batch_bot.database.db import close_pool, init_database
from telegram_batch_bot.memory.vector_store import ConversationMemory
from telegram_batch_bot.pipeline.sink import ReplyPipeline
from telegram_batch_bot.temporal.message_batcher import MessageBatcher

console = Console()
logger = logging.getLogger(__name__)

async def build_inbound_message(event) -> Optional[InboundMessage]:
    """
    Snapshot a Telethon NewMessage event.

    Returns:
        InboundMessage, or None for events without a resolvable sender.
    """
    sender = await event.get_sender()
    if not sender:
        return None

    if event.is_private:
        chat_type = ChatType.PRIVATE
        chat_title = None
        chat_username = getattr(sender, "username", None)
    else:
        chat = await event.get_chat()
        chat_type = ChatType.CHANNEL if event.is_channel and not event.is_group else ChatType.GROUP
        chat_title = getattr(chat, "title", None)
        chat_username = getattr(chat, "username", None)

    return InboundMessage(
        id=event.id,
        chat_id=event.chat_id,
        sender=SenderInfo(
            id=sender.id,
            username=getattr(sender, "username", None),
            first_name=getattr(sender, "first_name", None),
            last_name=getattr(sender, "last_name", None),
        ),
        text=event.text or "",
        timestamp=event.message.date or datetime.now(),
        chat_type=chat_type,
        chat_title=chat_title,
        chat_username=chat_username,
    )

class TelegramDaemon:
    """Main daemon that wires Telegram, the batcher and the reply pipeline."""

    def __init__(self, config_file: Optional[Path] = None, memory_enabled: bool = True):
        self.config_file = config_file
        self.memory_enabled = memory_enabled
        self.client = None
        self.config: Optional[BotConfig] = None
        self.pipeline: Optional[ReplyPipeline] = None
        self.batcher: Optional[MessageBatcher] = None
        self.running = False
        self._db_ready = False
        self.stats = {
            "messages_received": 0,
            "duplicates_dropped": 0,
            "batches_processed": 0,
            "messages_batched": 0,
            "replies_sent": 0,
            "replies_skipped": 0,
            "started_at": None
        }

    async def initialize(self) -> None:
        """Initialize all components."""
        console.print("[bold blue]Initializing Telegram Batch Bot...[/bold blue]")

        self.config = load_config(self.config_file)
        console.print(f"  [green]✓[/green] Config loaded")

        # Database is optional: without DATABASE_URL messages are not persisted
        persist = self.config.persist_messages
        if persist and os.getenv("DATABASE_URL"):
            try:
                await init_database()
            except Exception as e:
                console.print(f"[red bold]Database initialization failed: {e}[/red bold]")
                raise
            self._db_ready = True
            console.print(f"  [green]✓[/green] Database initialized")
        elif persist:
            persist = False
            console.print(f"  [yellow]⚠[/yellow] DATABASE_URL not set (persistence disabled)")

        memory = None
        if self.memory_enabled and self.config.memory_enabled:
            try:
                memory = ConversationMemory(model=self.config.embedding_model)
                console.print(f"  [green]✓[/green] Conversation memory enabled ({self.config.embedding_model})")
            except ValueError as e:
                console.print(f"  [yellow]![/yellow] Conversation memory disabled: {e}")

        responder = ChatResponder(self.config)
        console.print(f"  [green]✓[/green] Responder ready (model: {self.config.llm_model})")

        self.pipeline = ReplyPipeline(
            responder,
            config=self.config,
            memory=memory,
            persist=persist,
            policy_lookup=self._policy_for_batch,
        )

        self.batcher = MessageBatcher(
            sink=self._process_batch,
            send=self._send_reply,
            config=self.config.batching,
        )
        console.print(
            f"  [green]✓[/green] Message batcher initialized "
            f"(timeout {self.config.batching.batch_timeout_seconds:.0f}s, "
            f"batch size {self.config.batching.min_batch_size}-{self.config.batching.max_batch_size})"
        )

        self.client = await get_client()
        me = await self.client.get_me()
        console.print(f"  [green]✓[/green] Logged in as: {me.first_name} (@{me.username})")

        self._register_handlers()
        console.print(f"  [green]✓[/green] Message handlers registered")

    def _policy(self, message: InboundMessage) -> ChannelPolicy:
        """Resolve the channel policy by @username first, then by chat id."""
        username = f"@{message.chat_username}" if message.chat_username else None
        return self.config.policy_for(username, str(message.chat_id))

    def _policy_for_batch(self, chat_id: Hashable, messages: list[InboundMessage]) -> ChannelPolicy:
        return self._policy(messages[-1])

    async def _process_batch(self, chat_id: Hashable, messages: list[InboundMessage]) -> str:
        """
        Sink called by the batcher on flush.

        The reply probability is rolled here, before any completion is paid
        for. A skipped batch returns "" so the batcher sends nothing.
        """
        console.print(f"\n[cyan]Processing batch of {len(messages)} message(s) from chat {chat_id}[/cyan]")
        self.stats["batches_processed"] += 1
        self.stats["messages_batched"] += len(messages)

        policy = self._policy_for_batch(chat_id, messages)
        if policy.reply_probability < 1.0 and random.random() >= policy.reply_probability:
            self.stats["replies_skipped"] += 1
            console.print(f"[dim]Skipped reply to chat {chat_id} (reply probability {policy.reply_probability})[/dim]")
            return ""

        return await self.pipeline.process(chat_id, messages)

    async def _send_reply(self, chat_id: Hashable, text: str) -> None:
        """Output channel called by the batcher with the reply or fallback notice."""
        await self.client.send_message(chat_id, text)
        self.stats["replies_sent"] += 1
        console.print(f"[green]-> Replied to chat {chat_id}:[/green] {text[:100]}")

    async def handle_incoming(self, event) -> None:
        """Handle an incoming message event."""
        text = event.text or ""
        if text.startswith("/"):
            return  # Commands are not conversation
        if not text.strip():
            return

        message = await build_inbound_message(event)
        if message is None:
            return

        if not self._policy(message).allow_replies:
            logger.debug(f"Replies disabled for chat {message.chat_id}, ignoring message {message.id}")
            return

        console.print(f"\n[cyan]<- Received from {message.sender.display_name}:[/cyan] {text[:100]}")

        accepted = await self.batcher.receive(message)
        if not accepted:
            self.stats["duplicates_dropped"] += 1
            console.print(f"[dim]Duplicate message {message.id} in chat {message.chat_id} dropped[/dim]")
            return
        self.stats["messages_received"] += 1

        pending = self.batcher.get_batch_size(message.chat_id)
        if pending:
            target = self.batcher.get_target_size(message.chat_id)
            console.print(f"[dim]Batched message for chat {message.chat_id} ({pending}/{target})[/dim]")

    def _register_handlers(self) -> None:
        """Register Telegram event handlers."""

        @self.client.on(events.NewMessage(incoming=True))
        async def on_new_message(event):
            await self.handle_incoming(event)

    def _create_status_table(self) -> Table:
        """Create status table for display."""
        table = Table(title="Bot Status")
        table.add_column("Metric", style="cyan")
        table.add_column("Value", style="green")

        if self.stats["started_at"]:
            uptime = datetime.now() - self.stats["started_at"]
            table.add_row("Uptime", str(uptime).split('.')[0])

        table.add_row("Messages Received", str(self.stats["messages_received"]))
        table.add_row("Duplicates Dropped", str(self.stats["duplicates_dropped"]))
        table.add_row("Messages Batched", str(self.stats["messages_batched"]))
        table.add_row("Batches Processed", str(self.stats["batches_processed"]))
        table.add_row("Replies Sent", str(self.stats["replies_sent"]))
        table.add_row("Replies Skipped", str(self.stats["replies_skipped"]))
        if self.batcher:
            table.add_row("Pending Batches", str(len(self.batcher.get_all_pending_chat_ids())))

        return table

    async def run(self) -> None:
        """Run the daemon."""
        self.running = True
        self.stats["started_at"] = datetime.now()

        console.print(Panel.fit(
            "[bold green]Telegram Batch Bot Started[/bold green]\n"
            "Press Ctrl+C to stop",
            title="Status"
        ))

        check_interval = 60 * 5  # Print status every 5 minutes
        last_check = datetime.now()

        try:
            while self.running:
                if (datetime.now() - last_check).total_seconds() >= check_interval:
                    console.print(self._create_status_table())
                    last_check = datetime.now()

                # Keep event loop running
                await asyncio.sleep(1)

        except asyncio.CancelledError:
            console.print("\n[yellow]Shutdown requested...[/yellow]")
        finally:
            await self.shutdown()

    async def shutdown(self) -> None:
        """Gracefully shutdown the daemon."""
        self.running = False
        console.print("[yellow]Shutting down...[/yellow]")

        # Answer whatever is still buffered before the client goes away
        if self.batcher:
            pending = self.batcher.get_all_pending_chat_ids()
            if pending:
                console.print(f"[cyan]Flushing {len(pending)} pending batch(es)...[/cyan]")
                await self.batcher.flush_all()
            await self.batcher.join()
            console.print("[green]Message batches flushed[/green]")

        if self._db_ready:
            try:
                await close_pool()
                console.print("[green]Database connections closed[/green]")
            except Exception as e:
                console.print(f"[yellow]Warning: Error closing database pool: {e}[/yellow]")

        if self.client:
            await self.client.disconnect()
            console.print("[green]Disconnected from Telegram[/green]")

        console.print(Panel.fit(
            f"[bold]Final Stats[/bold]\n"
            f"Messages Received: {self.stats['messages_received']}\n"
            f"Duplicates Dropped: {self.stats['duplicates_dropped']}\n"
            f"Messages Batched: {self.stats['messages_batched']}\n"
            f"Batches Processed: {self.stats['batches_processed']}\n"
            f"Replies Sent: {self.stats['replies_sent']}",
            title="Session Summary"
        ))

def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )

async def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Telegram Batch Bot")
    parser.add_argument(
        '--config',
        type=Path,
        default=None,
        help='Path to bot_config.json (default: config/bot_config.json)',
    )
    parser.add_argument(
        '--no-memory',
        action='store_true',
        help='Disable vector conversation memory',
    )
    parser.add_argument(
        '--log-level',
        default=os.getenv("LOG_LEVEL", "INFO"),
        help='Logging level (DEBUG, INFO, WARNING, ERROR)',
    )
    args = parser.parse_args()
    setup_logging(args.log_level)

    daemon = TelegramDaemon(config_file=args.config, memory_enabled=not args.no_memory)

    # Setup signal handlers
    loop = asyncio.get_running_loop()

    def signal_handler():
        daemon.running = False

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, signal_handler)

    try:
        await daemon.initialize()
        await daemon.run()
    except KeyboardInterrupt:
        pass
    except Exception as e:
        console.print(f"[red bold]Fatal error: {e}[/red bold]")
        raise

def run() -> None:
    """Console script entry point."""
    asyncio.run(main())

if __name__ == "__main__":
    run()
