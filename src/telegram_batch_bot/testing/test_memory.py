"""Tests for ConversationMemory with fake embedding client and collection."""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from telegram_batch_bot.memory.vector_store import ConversationMemory, MemoryStoreError

def make_openai(embedding: list[float] | None = None) -> MagicMock:
    client = MagicMock()
    client.embeddings.create = AsyncMock(return_value=SimpleNamespace(
        data=[SimpleNamespace(embedding=embedding or [0.1, 0.2, 0.3])],
    ))
    return client

class TestAdd:
    @pytest.mark.asyncio
    async def test_add_stores_embedding_and_content(self) -> None:
        collection = MagicMock()
        memory = ConversationMemory(model="embed-test", client=make_openai(), collection=collection)

        record_id = await memory.add("hello world", {"type": "user_message", "chat_id": "42", "title": None})

        assert record_id
        kwargs = collection.add.call_args.kwargs
        assert kwargs["ids"] == [record_id]
        assert kwargs["embeddings"] == [[0.1, 0.2, 0.3]]
        assert kwargs["metadatas"] == [{"type": "user_message", "chat_id": "42", "content": "hello world"}]

    @pytest.mark.asyncio
    async def test_blank_text_skipped(self) -> None:
        client = make_openai()
        collection = MagicMock()
        memory = ConversationMemory(client=client, collection=collection)

        assert await memory.add("   ") is None
        client.embeddings.create.assert_not_awaited()
        collection.add.assert_not_called()

    @pytest.mark.asyncio
    async def test_embedding_failure_raises(self) -> None:
        client = MagicMock()
        client.embeddings.create = AsyncMock(side_effect=RuntimeError("rate limited"))
        memory = ConversationMemory(client=client, collection=MagicMock())

        with pytest.raises(MemoryStoreError):
            await memory.add("hello")

class TestSearch:
    @pytest.mark.asyncio
    async def test_search_returns_contents(self) -> None:
        collection = MagicMock()
        collection.query.return_value = {
            "metadatas": [[{"content": "first"}, {"content": "second"}, None]],
        }
        memory = ConversationMemory(client=make_openai(), collection=collection)

        results = await memory.search("what did I say?", top_k=3)

        assert results == ["first", "second"]
        assert collection.query.call_args.kwargs["n_results"] == 3

    @pytest.mark.asyncio
    async def test_search_failure_returns_empty(self) -> None:
        collection = MagicMock()
        collection.query.side_effect = RuntimeError("index unavailable")
        memory = ConversationMemory(client=make_openai(), collection=collection)

        assert await memory.search("anything") == []

    @pytest.mark.asyncio
    async def test_blank_query_returns_empty(self) -> None:
        client = make_openai()
        memory = ConversationMemory(client=client, collection=MagicMock())

        assert await memory.search("") == []
        client.embeddings.create.assert_not_awaited()

def test_missing_api_key(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)

    with pytest.raises(ValueError):
        ConversationMemory()
