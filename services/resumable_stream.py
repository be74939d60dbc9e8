"""Resumable stream backends — durable buffers keyed by stream id.

A producer registers a stream id, appends SSE chunks and marks it finished.
Any number of readers can attach at any time: they replay what was already
produced and then follow live output until the stream finishes.

When no backend is available (disabled, or Redis requested without a
``REDIS_URL``) the factory returns ``None`` and delivery falls back to a
one-shot stream.
"""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass, field

from config.settings import Settings, get_settings

logger = logging.getLogger(__name__)


class ResumableStreamBackend(ABC):
    """Append-only chunk buffer per stream id."""

    @abstractmethod
    async def create(self, stream_id: str) -> None:
        """Register *stream_id* before its first chunk is produced."""

    @abstractmethod
    async def append(self, stream_id: str, chunk: str) -> None: ...

    @abstractmethod
    async def finish(self, stream_id: str) -> None: ...

    @abstractmethod
    async def exists(self, stream_id: str) -> bool: ...

    @abstractmethod
    async def is_finished(self, stream_id: str) -> bool: ...

    @abstractmethod
    def read(self, stream_id: str, *, start: int = 0) -> AsyncIterator[str]:
        """Replay from chunk *start*, then follow until the stream finishes."""

    async def close(self) -> None:
        """Release backend connections (no-op by default)."""


# ── In-Memory Implementation ────────────────────────────────


@dataclass
class _Buffer:
    chunks: list[str] = field(default_factory=list)
    done: bool = False
    finished_at: float | None = None
    changed: asyncio.Condition = field(default_factory=asyncio.Condition)


class InMemoryResumableStreamBackend(ResumableStreamBackend):
    """Single-process backend; finished streams stay replayable for ``ttl_seconds``."""

    def __init__(self, ttl_seconds: int = 600) -> None:
        self._buffers: dict[str, _Buffer] = {}
        self._ttl = ttl_seconds

    def _evict_expired(self) -> None:
        now = time.time()
        expired = [
            sid for sid, buf in self._buffers.items()
            if buf.finished_at is not None and now - buf.finished_at > self._ttl
        ]
        for sid in expired:
            del self._buffers[sid]

    async def create(self, stream_id: str) -> None:
        self._evict_expired()
        self._buffers.setdefault(stream_id, _Buffer())

    async def append(self, stream_id: str, chunk: str) -> None:
        buf = self._buffers.get(stream_id)
        if buf is None or buf.done:
            return
        async with buf.changed:
            buf.chunks.append(chunk)
            buf.changed.notify_all()

    async def finish(self, stream_id: str) -> None:
        buf = self._buffers.get(stream_id)
        if buf is None or buf.done:
            return
        async with buf.changed:
            buf.done = True
            buf.finished_at = time.time()
            buf.changed.notify_all()

    async def exists(self, stream_id: str) -> bool:
        return stream_id in self._buffers

    async def is_finished(self, stream_id: str) -> bool:
        buf = self._buffers.get(stream_id)
        return buf is None or buf.done

    async def read(self, stream_id: str, *, start: int = 0) -> AsyncIterator[str]:
        buf = self._buffers.get(stream_id)
        if buf is None:
            return
        index = start
        while True:
            async with buf.changed:
                await buf.changed.wait_for(lambda: index < len(buf.chunks) or buf.done)
                batch = buf.chunks[index:]
                done = buf.done
            for chunk in batch:
                yield chunk
            index += len(batch)
            if done and index >= len(buf.chunks):
                return


# ── Redis Implementation ─────────────────────────────────────


class RedisResumableStreamBackend(ResumableStreamBackend):
    """Redis list per stream; readers poll for new chunks."""

    _KEY_PREFIX = "lesson:stream:"

    def __init__(self, redis_url: str, ttl_seconds: int = 600, poll_interval: float = 0.05) -> None:
        import redis.asyncio as aioredis

        self._redis = aioredis.from_url(
            redis_url,
            decode_responses=True,
            socket_connect_timeout=10,
            socket_timeout=10,
        )
        self._ttl = ttl_seconds
        self._poll_interval = poll_interval

    def _chunks_key(self, stream_id: str) -> str:
        return f"{self._KEY_PREFIX}{stream_id}:chunks"

    def _state_key(self, stream_id: str) -> str:
        return f"{self._KEY_PREFIX}{stream_id}:state"

    async def create(self, stream_id: str) -> None:
        await self._redis.set(self._state_key(stream_id), "open", ex=self._ttl)

    async def append(self, stream_id: str, chunk: str) -> None:
        key = self._chunks_key(stream_id)
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.rpush(key, chunk)
            pipe.expire(key, self._ttl)
            await pipe.execute()

    async def finish(self, stream_id: str) -> None:
        await self._redis.set(self._state_key(stream_id), "done", ex=self._ttl)

    async def exists(self, stream_id: str) -> bool:
        return bool(await self._redis.exists(self._state_key(stream_id)))

    async def is_finished(self, stream_id: str) -> bool:
        return await self._redis.get(self._state_key(stream_id)) != "open"

    async def read(self, stream_id: str, *, start: int = 0) -> AsyncIterator[str]:
        if not await self.exists(stream_id):
            return
        index = start
        while True:
            # Read the state first so no chunk appended before "done" is missed.
            finished = await self.is_finished(stream_id)
            batch = await self._redis.lrange(self._chunks_key(stream_id), index, -1)
            for chunk in batch:
                yield chunk
            index += len(batch)
            if finished:
                return
            if not batch:
                await asyncio.sleep(self._poll_interval)

    async def close(self) -> None:
        await self._redis.aclose()


# ── Factory ──────────────────────────────────────────────────


def create_resumable_backend(settings: Settings | None = None) -> ResumableStreamBackend | None:
    """Build the configured backend, or ``None`` for one-shot delivery."""
    settings = settings or get_settings()
    kind = settings.resumable_stream_backend
    if kind == "none":
        logger.info("[Stream] Resumable streams are disabled")
        return None
    if kind == "redis":
        if not settings.redis_url:
            logger.warning("[Stream] Resumable streams are disabled due to missing REDIS_URL")
            return None
        logger.info("[Stream] Redis resumable streams (TTL=%ds)", settings.resumable_stream_ttl)
        return RedisResumableStreamBackend(
            settings.redis_url,
            ttl_seconds=settings.resumable_stream_ttl,
            poll_interval=settings.stream_poll_interval,
        )
    logger.info("[Stream] In-memory resumable streams (TTL=%ds)", settings.resumable_stream_ttl)
    return InMemoryResumableStreamBackend(ttl_seconds=settings.resumable_stream_ttl)
