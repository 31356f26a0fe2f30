"""
Pydantic models for the Telegram batch bot.

Inbound message snapshots, batcher/bot configuration and AI response
metadata. Models are shared by the batcher, the reply pipeline and the daemon.
"""
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

DEFAULT_FALLBACK_MESSAGE = "I'm sorry, I encountered an error while processing your request."
DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful assistant in a Telegram chat. "
    "Respond to the user's messages appropriately based on the context provided."
)

class BatchState(str, Enum):
    """Per-chat state of the message batcher."""
    NONE = "none"  # No batch, no timer
    ACCUMULATING = "accumulating"  # Batch exists, flush timer outstanding
    FLUSHING = "flushing"  # Batch claimed, sink call in flight

class ChatType(str, Enum):
    """Kind of Telegram chat a message arrived from."""
    PRIVATE = "private"
    GROUP = "group"
    CHANNEL = "channel"

class SenderInfo(BaseModel):
    """Author of an inbound message."""
    model_config = ConfigDict(frozen=True)

    id: int
    username: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None

    @property
    def display_name(self) -> str:
        """Best human-readable name for prompts and logs."""
        if self.username:
            return self.username
        full_name = " ".join(p for p in (self.first_name, self.last_name) if p)
        return full_name or str(self.id)

class InboundMessage(BaseModel):
    """
    Immutable snapshot of a message captured when it arrived.

    Attributes:
        id: Telegram message ID (unique within a chat)
        chat_id: Chat the message belongs to
        sender: Who wrote it
        text: Message text (empty string for captionless media)
        timestamp: Platform timestamp of the message
        chat_type: private / group / channel
        chat_title: Group or channel title, None for private chats
        chat_username: Public @username of the chat (the sender's for private chats)
    """
    model_config = ConfigDict(frozen=True)

    id: int
    chat_id: int | str
    sender: SenderInfo
    text: str = ""
    timestamp: datetime = Field(default_factory=datetime.now)
    chat_type: ChatType = ChatType.PRIVATE
    chat_title: Optional[str] = None
    chat_username: Optional[str] = None

class BatcherConfig(BaseModel):
    """Timing and sizing of the inbound message batcher."""
    batch_timeout_seconds: float = 20.0  # Flush a partial batch after this long
    dedup_window_seconds: float = 60.0  # Ignore redelivered message ids for this long
    min_batch_size: int = 1
    max_batch_size: int = 6
    dedup_max_entries: int = 10_000  # Oldest dedup records evicted past this
    fallback_message: str = DEFAULT_FALLBACK_MESSAGE

    @field_validator('batch_timeout_seconds', 'dedup_window_seconds')
    @classmethod
    def validate_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("Timeouts must be positive")
        return v

    @field_validator('dedup_max_entries')
    @classmethod
    def validate_max_entries(cls, v: int) -> int:
        if v < 1:
            raise ValueError("dedup_max_entries must be at least 1")
        return v

    @model_validator(mode='after')
    def validate_batch_sizes(self) -> "BatcherConfig":
        if self.min_batch_size < 1:
            raise ValueError("min_batch_size must be at least 1")
        if self.min_batch_size > self.max_batch_size:
            raise ValueError(
                f"min_batch_size ({self.min_batch_size}) must be <= "
                f"max_batch_size ({self.max_batch_size})"
            )
        return self

class ChannelPolicy(BaseModel):
    """Reply behaviour for a single chat or channel."""
    allow_replies: bool = True
    reply_probability: float = Field(default=1.0, ge=0.0, le=1.0)
    custom_prompt: Optional[str] = None  # Extra system instructions for this chat

class BotConfig(BaseModel):
    """Configuration for the bot behaviour."""
    bot_name: str = "Assistant"

    # LLM settings
    llm_model: str = "claude-sonnet-4-20250514"
    temperature: float = Field(default=0.5, ge=0.0, le=1.0)
    max_tokens: int = 1024
    system_prompt: str = DEFAULT_SYSTEM_PROMPT

    # Conversation memory (vector store)
    memory_enabled: bool = True
    embedding_model: str = "text-embedding-3-small"
    context_top_k: int = 15

    # Persistence
    persist_messages: bool = True

    # Keyed by "@username" or str(chat_id)
    channels: dict[str, ChannelPolicy] = Field(default_factory=dict)

    batching: BatcherConfig = Field(default_factory=BatcherConfig)

    def policy_for(self, *chat_keys: Optional[str]) -> ChannelPolicy:
        """Return the first configured policy among *chat_keys*, else the default."""
        for key in chat_keys:
            if key and key in self.channels:
                return self.channels[key]
        return ChannelPolicy()

class AIResponse(BaseModel):
    """Reply text plus the generation settings that produced it."""
    text: str
    model: str
    temperature: float
    max_tokens: int
