"""
Reply pipeline - the processing sink behind the message batcher.

For each flushed batch:
1. Persist the messages (users, chat, message rows)
2. Remember the user messages in conversation memory
3. Search memory for context related to the batch
4. Generate a single reply with the responder
5. Persist the reply and remember it

Any step may raise. The batcher catches the error and sends its fallback
notice, so this module does not recover from failures on its own.
"""
import logging
from typing import Callable, Hashable, Optional

from telegram_batch_bot.agent.responder import ChatResponder
from telegram_batch_bot.core.models import BotConfig, ChannelPolicy, InboundMessage
from telegram_batch_bot.database.db import save_ai_response, save_messages
from telegram_batch_bot.memory.vector_store import ConversationMemory

logger = logging.getLogger(__name__)

PolicyLookup = Callable[[Hashable, list[InboundMessage]], ChannelPolicy]

def aggregate_messages(messages: list[InboundMessage]) -> str:
    """Combine a batch into one text, used as the memory search query."""
    return "\n".join(m.text for m in messages if m.text)

class ReplyPipeline:
    """
    Persistence + memory + completion for one batch.

    Attributes:
        responder: Generates the reply text
        memory: Optional conversation memory (None disables it)
        persist: Whether to write messages and replies to PostgreSQL
    """

    def __init__(
        self,
        responder: ChatResponder,
        config: Optional[BotConfig] = None,
        memory: Optional[ConversationMemory] = None,
        persist: bool = True,
        policy_lookup: Optional[PolicyLookup] = None,
    ):
        self.responder = responder
        self.config = config or BotConfig()
        self.memory = memory
        self.persist = persist
        self._policy_lookup = policy_lookup

    def _policy(self, chat_id: Hashable, messages: list[InboundMessage]) -> ChannelPolicy:
        if self._policy_lookup is not None:
            return self._policy_lookup(chat_id, messages)
        return self.config.policy_for(str(chat_id))

    async def process(self, chat_id: Hashable, messages: list[InboundMessage]) -> str:
        """
        Produce the reply for a flushed batch.

        Args:
            chat_id: Chat the batch came from
            messages: Batch in arrival order

        Returns:
            Reply text to send into the chat
        """
        if not messages:
            return ""

        row_ids: list[int] = []
        if self.persist:
            row_ids = await save_messages(messages)

        context: list[str] = []
        if self.memory is not None:
            for msg in messages:
                await self.memory.add(msg.text, {
                    "type": "user_message",
                    "chat_id": str(chat_id),
                    "user_id": msg.sender.id,
                })
            context = await self.memory.search(
                aggregate_messages(messages),
                top_k=self.config.context_top_k,
            )

        policy = self._policy(chat_id, messages)
        reply = await self.responder.generate(
            messages,
            context=context,
            custom_prompt=policy.custom_prompt,
        )

        if self.persist and row_ids:
            await save_ai_response(row_ids[-1], reply.text)

        if self.memory is not None:
            await self.memory.add(reply.text, {
                "type": "ai_response",
                "chat_id": str(chat_id),
            })

        logger.info(f"Generated reply for chat {chat_id} ({len(messages)} message(s), model {reply.model})")
        return reply.text
