"""
Claude-powered responder for batched chat messages.

Turns a batch of inbound messages plus retrieved conversation context into a
single reply using the Anthropic Messages API.
"""
import logging
import os
from typing import TYPE_CHECKING, Optional

from dotenv import load_dotenv

from telegram_batch_bot.agent.prompts import (
    BATCH_PROMPT,
    CUSTOM_PROMPT_SUFFIX,
    NO_CONTEXT,
    NO_RESPONSE_TEXT,
)
from telegram_batch_bot.core.models import AIResponse, BotConfig, InboundMessage

load_dotenv()

if TYPE_CHECKING:
    from anthropic import AsyncAnthropic

logger = logging.getLogger(__name__)

class ResponderError(RuntimeError):
    """The completion API call failed."""

def format_messages(messages: list[InboundMessage]) -> str:
    """Format a batch as ``[HH:MM] name: text`` lines, in arrival order."""
    lines = []
    for msg in messages:
        time_str = msg.timestamp.strftime("%H:%M")
        text = msg.text or "[non-text message]"
        lines.append(f"[{time_str}] {msg.sender.display_name}: {text}")
    return "\n".join(lines)

def build_prompt(messages: list[InboundMessage], context: list[str]) -> str:
    """
    Build the user prompt for a batch.

    Args:
        messages: Non-empty batch, arrival order
        context: Retrieved snippets from conversation memory

    Returns:
        Prompt text
    """
    first = messages[0]
    return BATCH_PROMPT.format(
        messages=format_messages(messages),
        chat_type=first.chat_type.value,
        chat_title=first.chat_title or "-",
        context="\n".join(context) if context else NO_CONTEXT,
    )

class ChatResponder:
    """
    Generate replies with Claude.

    Attributes:
        client: Anthropic async API client
        config: Bot configuration (model, temperature, max tokens, system prompt)

    Example:
        >>> responder = ChatResponder(BotConfig())
        >>> reply = await responder.generate(messages, context=["..."])
        >>> print(reply.text)
    """

    def __init__(self, config: Optional[BotConfig] = None, client: Optional["AsyncAnthropic"] = None):
        """
        Initialize responder.

        Args:
            config: Bot configuration. Defaults to BotConfig().
            client: Pre-built Anthropic client. Created from ANTHROPIC_API_KEY when omitted.
        """
        self.config = config or BotConfig()
        if client is None:
            from anthropic import AsyncAnthropic
            client = AsyncAnthropic(api_key=os.getenv("ANTHROPIC_API_KEY"))
        self.client = client

    def _system_prompt(self, custom_prompt: Optional[str]) -> str:
        system = self.config.system_prompt
        if custom_prompt:
            system += CUSTOM_PROMPT_SUFFIX.format(custom_prompt=custom_prompt)
        return system

    async def generate(
        self,
        messages: list[InboundMessage],
        context: Optional[list[str]] = None,
        custom_prompt: Optional[str] = None,
    ) -> AIResponse:
        """
        Generate one reply for a batch of messages.

        Args:
            messages: Batch from one chat, arrival order. Must not be empty.
            context: Relevant snippets from conversation memory
            custom_prompt: Per-chat system instructions

        Returns:
            AIResponse with the reply text and generation settings

        Raises:
            ValueError: If messages is empty
            ResponderError: If the API call fails
        """
        if not messages:
            raise ValueError("Cannot generate a reply for an empty batch")

        prompt = build_prompt(messages, context or [])

        try:
            response = await self.client.messages.create(
                model=self.config.llm_model,
                max_tokens=self.config.max_tokens,
                temperature=self.config.temperature,
                system=self._system_prompt(custom_prompt),
                messages=[{"role": "user", "content": prompt}],
            )
        except Exception as e:
            raise ResponderError(f"Completion request failed: {e}") from e

        text = ""
        for block in response.content or []:
            if getattr(block, "type", None) == "text":
                text = block.text.strip()
                break

        if not text:
            logger.warning("Empty completion for chat %s", messages[0].chat_id)
            text = NO_RESPONSE_TEXT

        return AIResponse(
            text=text,
            model=self.config.llm_model,
            temperature=self.config.temperature,
            max_tokens=self.config.max_tokens,
        )
