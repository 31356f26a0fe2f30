"""
Conversation memory backed by a vector store.

Every user message and bot reply is embedded with OpenAI embeddings and kept
in a persistent ChromaDB collection. Before answering, the pipeline searches
the collection for snippets related to the new batch.
"""

import asyncio
import logging
import os
import uuid
from pathlib import Path
from typing import Any, Optional

from openai import AsyncOpenAI

logger = logging.getLogger(__name__)

COLLECTION_NAME = "conversation_memory"
DEFAULT_EMBEDDING_MODEL = "text-embedding-3-small"
DEFAULT_PERSIST_DIR = Path(__file__).parent.parent.parent.parent / "data" / "chroma_db"

class MemoryStoreError(RuntimeError):
    """Embedding or vector store write failed."""

def get_or_create_collection(persist_dir: Optional[str | Path] = None):
    """Get or create the conversation collection in a persistent ChromaDB.

    Uses cosine similarity, which suits OpenAI embeddings (normalized vectors).

    Args:
        persist_dir: Storage directory. Defaults to CHROMA_DIR or data/chroma_db.

    Returns:
        ChromaDB Collection instance.
    """
    import chromadb

    persist_dir = Path(persist_dir or os.getenv("CHROMA_DIR") or DEFAULT_PERSIST_DIR)
    persist_dir.mkdir(parents=True, exist_ok=True)
    client = chromadb.PersistentClient(path=str(persist_dir))
    return client.get_or_create_collection(
        name=COLLECTION_NAME,
        metadata={"hnsw:space": "cosine"},
    )

class ConversationMemory:
    """
    Embed-and-search store for chat history.

    Attributes:
        model: OpenAI embedding model name

    Example:
        memory = ConversationMemory()
        await memory.add("Hello there", {"type": "user_message", "chat_id": "42"})
        snippets = await memory.search("hello", top_k=5)
    """

    def __init__(
        self,
        model: str = DEFAULT_EMBEDDING_MODEL,
        client: Optional[AsyncOpenAI] = None,
        collection: Any = None,
    ):
        """
        Args:
            model: Embedding model name
            client: Pre-built AsyncOpenAI client. Built from OPENAI_API_KEY when omitted.
            collection: ChromaDB collection. Opened lazily when omitted.

        Raises:
            ValueError: If no client is given and OPENAI_API_KEY is not set.
        """
        if client is None:
            api_key = os.getenv("OPENAI_API_KEY")
            if not api_key:
                raise ValueError("OPENAI_API_KEY not found in environment")
            client = AsyncOpenAI(api_key=api_key)
        self.model = model
        self._client = client
        self._collection = collection

    async def _get_collection(self):
        if self._collection is None:
            self._collection = await asyncio.to_thread(get_or_create_collection)
        return self._collection

    async def embed(self, text: str) -> list[float]:
        """Embed a single non-blank text."""
        response = await self._client.embeddings.create(
            model=self.model,
            input=text,
            encoding_format="float",
        )
        return response.data[0].embedding

    async def add(self, text: str, metadata: Optional[dict[str, Any]] = None) -> Optional[str]:
        """
        Embed *text* and store it with *metadata*.

        Args:
            text: Content to remember. Blank text is skipped.
            metadata: Flat dict of str/int/float/bool values (chat_id, type, ...)

        Returns:
            The stored record id, or None when the text was blank.

        Raises:
            MemoryStoreError: If embedding or storing fails.
        """
        if not isinstance(text, str) or not text.strip():
            logger.debug("Skipping blank text for memory")
            return None

        record_id = uuid.uuid4().hex
        meta = {k: v for k, v in (metadata or {}).items() if v is not None}
        meta["content"] = text

        try:
            embedding = await self.embed(text)
            collection = await self._get_collection()
            await asyncio.to_thread(
                collection.add,
                ids=[record_id],
                embeddings=[embedding],
                metadatas=[meta],
                documents=[text],
            )
        except Exception as e:
            raise MemoryStoreError(f"Failed to store memory: {e}") from e

        return record_id

    async def search(self, query: str, top_k: int = 15) -> list[str]:
        """
        Find stored snippets similar to *query*.

        Failures are logged and produce an empty result so that a memory
        outage only costs context, not the reply.

        Returns:
            Stored contents, most similar first.
        """
        if not isinstance(query, str) or not query.strip():
            return []

        try:
            embedding = await self.embed(query)
            collection = await self._get_collection()
            results = await asyncio.to_thread(
                collection.query,
                query_embeddings=[embedding],
                n_results=top_k,
                include=["metadatas"],
            )
        except Exception as e:
            logger.error(f"Memory search failed: {e}")
            return []

        metadatas = (results.get("metadatas") or [[]])[0] or []
        snippets = [m["content"] for m in metadatas if m and m.get("content")]
        logger.debug(f"Found {len(snippets)} relevant context item(s)")
        return snippets
