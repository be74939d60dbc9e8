"""Tests for the streaming-path conversation store."""

from __future__ import annotations

import time

import pytest

from models.conversation import Turn
from services.control_tokens import encode_auto_intro
from services.conversation_store import (
    InMemoryConversationStore,
    StoredConversation,
    generate_conversation_id,
)

# ── Unit tests: StoredConversation ───────────────────────────


class TestStoredConversation:
    def test_append_turns_keeps_order(self):
        conv = StoredConversation(conversation_id="c")
        conv.append_turns([Turn.user("a"), Turn.assistant("b")])
        assert [t.content for t in conv.turns] == ["a", "b"]

    def test_append_turns_skips_known_ids(self):
        conv = StoredConversation(conversation_id="c")
        turn = Turn.user("a")
        conv.append_turns([turn])
        conv.append_turns([turn, Turn.assistant("b")])
        assert [t.content for t in conv.turns] == ["a", "b"]

    def test_latest_stream_id(self):
        conv = StoredConversation(conversation_id="c")
        assert conv.latest_stream_id is None
        conv.record_stream("stream-1")
        conv.record_stream("stream-2")
        assert conv.latest_stream_id == "stream-2"
        assert conv.stream_ids == ["stream-1", "stream-2"]

    def test_visible_turns_hide_control_tokens(self):
        conv = StoredConversation(conversation_id="c")
        conv.append_turns([Turn.user(encode_auto_intro()), Turn.assistant("Welcome")])
        assert [t.content for t in conv.visible_turns()] == ["Welcome"]


# ── InMemoryConversationStore ────────────────────────────────


class TestInMemoryStore:
    @pytest.mark.asyncio
    async def test_save_and_get(self):
        store = InMemoryConversationStore()
        conv = StoredConversation(conversation_id="c1")
        conv.append_turns([Turn.user("hi")])
        await store.save(conv)

        loaded = await store.get("c1")
        assert loaded is not None
        assert loaded.turns[0].content == "hi"

    @pytest.mark.asyncio
    async def test_get_returns_copy(self):
        store = InMemoryConversationStore()
        await store.save(StoredConversation(conversation_id="c1"))
        loaded = await store.get("c1")
        loaded.append_turns([Turn.user("not saved")])
        assert (await store.get("c1")).turns == []

    @pytest.mark.asyncio
    async def test_get_or_create(self):
        store = InMemoryConversationStore()
        conv = await store.get_or_create("new", course_id="c-1", session_id="s-1")
        assert conv.conversation_id == "new"
        assert conv.course_id == "c-1"
        assert await store.get("new") is None

    @pytest.mark.asyncio
    async def test_expired_conversation_is_gone(self):
        store = InMemoryConversationStore(ttl_seconds=1)
        conv = StoredConversation(conversation_id="old")
        conv.updated_at = time.time() - 10
        await store.save(conv)
        assert await store.get("old") is None

    @pytest.mark.asyncio
    async def test_cleanup_expired(self):
        store = InMemoryConversationStore(ttl_seconds=1)
        stale = StoredConversation(conversation_id="old")
        stale.updated_at = time.time() - 10
        await store.save(stale)
        await store.save(StoredConversation(conversation_id="fresh"))
        assert await store.cleanup_expired() == 1
        assert store.size == 1

    @pytest.mark.asyncio
    async def test_delete(self):
        store = InMemoryConversationStore()
        await store.save(StoredConversation(conversation_id="c1"))
        await store.delete("c1")
        assert await store.get("c1") is None


def test_generate_conversation_id():
    cid = generate_conversation_id()
    assert cid.startswith("conv-")
    assert cid != generate_conversation_id()
