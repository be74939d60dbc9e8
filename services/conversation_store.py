"""Conversation store — server-side transcripts for the streaming chat path.

Each conversation keeps its append-only turn list and the ids of every
stream opened for it (the latest one is what a reconnecting client resumes).
An in-memory implementation with TTL and a Redis one share one interface.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from abc import ABC, abstractmethod

from pydantic import BaseModel, Field, ValidationError
from redis.exceptions import RedisError

from config.settings import Settings, get_settings
from models.conversation import Turn
from services.control_tokens import visible_transcript

logger = logging.getLogger(__name__)

# ── Data Models ──────────────────────────────────────────────


class StoredConversation(BaseModel):
    """Server-side state of one streaming conversation."""

    conversation_id: str
    turns: list[Turn] = Field(default_factory=list)
    stream_ids: list[str] = Field(default_factory=list)
    course_id: str | None = None
    session_id: str | None = None
    created_at: float = Field(default_factory=time.time)
    updated_at: float = Field(default_factory=time.time)

    def append_turns(self, turns: list[Turn]) -> None:
        """Append turns, skipping any id already stored."""
        known = {t.id for t in self.turns}
        self.turns.extend(t for t in turns if t.id not in known)
        self.updated_at = time.time()

    def record_stream(self, stream_id: str) -> None:
        self.stream_ids.append(stream_id)
        self.updated_at = time.time()

    @property
    def latest_stream_id(self) -> str | None:
        return self.stream_ids[-1] if self.stream_ids else None

    def visible_turns(self) -> list[Turn]:
        return visible_transcript(self.turns)


# ── Abstract Interface ───────────────────────────────────────


class ConversationStore(ABC):
    """Abstract conversation store — implement for different backends."""

    @abstractmethod
    async def get(self, conversation_id: str) -> StoredConversation | None:
        """Retrieve a conversation by ID.  Returns None if not found or expired."""
        ...

    @abstractmethod
    async def save(self, conversation: StoredConversation) -> None:
        """Persist a conversation (create or update)."""
        ...

    @abstractmethod
    async def delete(self, conversation_id: str) -> None:
        ...

    @abstractmethod
    async def cleanup_expired(self) -> int:
        """Remove all expired conversations.  Returns count removed."""
        ...

    async def get_or_create(
        self,
        conversation_id: str,
        *,
        course_id: str | None = None,
        session_id: str | None = None,
    ) -> StoredConversation:
        conversation = await self.get(conversation_id)
        if conversation is None:
            conversation = StoredConversation(
                conversation_id=conversation_id, course_id=course_id, session_id=session_id,
            )
        return conversation

    async def close(self) -> None:
        """Release backend connections (no-op by default)."""


# ── In-Memory Implementation ────────────────────────────────


class InMemoryConversationStore(ConversationStore):
    """Single-process store with TTL expiration."""

    def __init__(self, ttl_seconds: int = 86400):
        self._store: dict[str, StoredConversation] = {}
        self._ttl = ttl_seconds

    def _is_expired(self, conversation: StoredConversation) -> bool:
        return (time.time() - conversation.updated_at) > self._ttl

    async def get(self, conversation_id: str) -> StoredConversation | None:
        conversation = self._store.get(conversation_id)
        if conversation is None:
            return None
        if self._is_expired(conversation):
            del self._store[conversation_id]
            logger.debug("Conversation expired: %s", conversation_id)
            return None
        return conversation.model_copy(deep=True)

    async def save(self, conversation: StoredConversation) -> None:
        self._store[conversation.conversation_id] = conversation.model_copy(deep=True)

    async def delete(self, conversation_id: str) -> None:
        self._store.pop(conversation_id, None)

    async def cleanup_expired(self) -> int:
        expired = [cid for cid, c in self._store.items() if self._is_expired(c)]
        for cid in expired:
            del self._store[cid]
        if expired:
            logger.info("Cleaned up %d expired conversations", len(expired))
        return len(expired)

    @property
    def size(self) -> int:
        """Number of conversations currently stored (may include expired)."""
        return len(self._store)


# ── Redis Implementation ─────────────────────────────────────


class RedisConversationStore(ConversationStore):
    """Redis-backed store; expiry is delegated to the key TTL."""

    _KEY_PREFIX = "lesson:conv:"

    def __init__(self, redis_url: str, ttl_seconds: int = 86400):
        import redis.asyncio as aioredis

        self._redis = aioredis.from_url(
            redis_url,
            decode_responses=True,
            socket_connect_timeout=10,
            socket_timeout=10,
        )
        self._ttl = ttl_seconds

    def _key(self, conversation_id: str) -> str:
        return f"{self._KEY_PREFIX}{conversation_id}"

    async def get(self, conversation_id: str) -> StoredConversation | None:
        data = await self._redis.get(self._key(conversation_id))
        if data is None:
            return None
        try:
            return StoredConversation.model_validate_json(data)
        except ValidationError:
            logger.warning("Failed to deserialize conversation: %s", conversation_id)
            return None

    async def save(self, conversation: StoredConversation) -> None:
        await self._redis.set(
            self._key(conversation.conversation_id),
            conversation.model_dump_json(),
            ex=self._ttl,
        )

    async def delete(self, conversation_id: str) -> None:
        await self._redis.delete(self._key(conversation_id))

    async def cleanup_expired(self) -> int:
        return 0

    async def close(self) -> None:
        await self._redis.aclose()

    async def ping(self) -> bool:
        """Check Redis connectivity."""
        try:
            return await self._redis.ping()
        except (RedisError, OSError) as exc:
            logger.warning("Redis ping failed: %s", exc)
            return False


# ── Factory ──────────────────────────────────────────────────


def create_conversation_store(settings: Settings | None = None) -> ConversationStore:
    """Pick the backend from ``conversation_store_type``."""
    settings = settings or get_settings()
    ttl = settings.conversation_ttl
    if settings.conversation_store_type == "redis" and settings.redis_url:
        logger.info("Initialized RedisConversationStore (TTL=%ds)", ttl)
        return RedisConversationStore(redis_url=settings.redis_url, ttl_seconds=ttl)
    logger.info("Initialized InMemoryConversationStore (TTL=%ds)", ttl)
    return InMemoryConversationStore(ttl_seconds=ttl)


def generate_conversation_id() -> str:
    return f"conv-{uuid.uuid4().hex[:12]}"


# ── Background Cleanup Task ──────────────────────────────────


async def periodic_cleanup(store: ConversationStore, interval_seconds: int = 300) -> None:
    """Periodically evict expired conversations; run as a lifespan task."""
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await store.cleanup_expired()
        except Exception:
            logger.exception("Conversation store cleanup failed")
