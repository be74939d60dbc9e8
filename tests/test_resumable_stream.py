"""Tests for services/resumable_stream.py — replay + follow semantics."""

from __future__ import annotations

import asyncio

import pytest

from config.settings import Settings
from services.resumable_stream import (
    InMemoryResumableStreamBackend,
    RedisResumableStreamBackend,
    create_resumable_backend,
)


async def _collect(it) -> list[str]:
    return [chunk async for chunk in it]


@pytest.mark.asyncio
async def test_reader_replays_finished_stream():
    backend = InMemoryResumableStreamBackend()
    await backend.create("s1")
    for chunk in ["a", "b", "c"]:
        await backend.append("s1", chunk)
    await backend.finish("s1")

    assert await _collect(backend.read("s1")) == ["a", "b", "c"]
    assert await _collect(backend.read("s1", start=2)) == ["c"]


@pytest.mark.asyncio
async def test_late_reader_gets_history_then_live_chunks():
    backend = InMemoryResumableStreamBackend()
    await backend.create("s1")
    await backend.append("s1", "early")

    reader = asyncio.create_task(_collect(backend.read("s1")))
    await asyncio.sleep(0)
    await backend.append("s1", "late")
    await backend.finish("s1")

    assert await reader == ["early", "late"]


@pytest.mark.asyncio
async def test_two_readers_see_the_same_stream():
    backend = InMemoryResumableStreamBackend()
    await backend.create("s1")
    first = asyncio.create_task(_collect(backend.read("s1")))
    second = asyncio.create_task(_collect(backend.read("s1")))
    await asyncio.sleep(0)
    await backend.append("s1", "x")
    await backend.finish("s1")
    assert await first == ["x"]
    assert await second == ["x"]


@pytest.mark.asyncio
async def test_state_queries():
    backend = InMemoryResumableStreamBackend()
    assert not await backend.exists("s1")
    assert await backend.is_finished("s1")
    await backend.create("s1")
    assert await backend.exists("s1")
    assert not await backend.is_finished("s1")
    await backend.finish("s1")
    assert await backend.is_finished("s1")


@pytest.mark.asyncio
async def test_append_after_finish_is_ignored():
    backend = InMemoryResumableStreamBackend()
    await backend.create("s1")
    await backend.finish("s1")
    await backend.append("s1", "too late")
    assert await _collect(backend.read("s1")) == []


@pytest.mark.asyncio
async def test_unknown_stream_reads_nothing():
    backend = InMemoryResumableStreamBackend()
    assert await _collect(backend.read("missing")) == []


@pytest.mark.asyncio
async def test_finished_streams_expire():
    backend = InMemoryResumableStreamBackend(ttl_seconds=0)
    await backend.create("s1")
    await backend.finish("s1")
    await asyncio.sleep(0.01)
    await backend.create("s2")
    assert not await backend.exists("s1")


# ── Factory ──────────────────────────────────────────────────


def test_factory_disabled():
    assert create_resumable_backend(Settings(_env_file=None, resumable_stream_backend="none")) is None


def test_factory_redis_without_url_degrades(caplog):
    settings = Settings(_env_file=None, resumable_stream_backend="redis", redis_url="")
    with caplog.at_level("WARNING"):
        assert create_resumable_backend(settings) is None
    assert "missing REDIS_URL" in caplog.text


def test_factory_memory():
    backend = create_resumable_backend(Settings(_env_file=None, resumable_stream_backend="memory"))
    assert isinstance(backend, InMemoryResumableStreamBackend)


def test_factory_redis():
    settings = Settings(
        _env_file=None, resumable_stream_backend="redis", redis_url="redis://localhost:6379/0",
    )
    assert isinstance(create_resumable_backend(settings), RedisResumableStreamBackend)
