"""Tests for services/session_registry.py — open sessions and idle eviction."""

from __future__ import annotations

import asyncio

import pytest

from errors import SessionNotFoundError, SessionNotLoadedError
from services.session_registry import LearningSessionRegistry, periodic_eviction
from tests.conftest import COURSE_ID


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def registry(container, course_store, clock) -> LearningSessionRegistry:
    return LearningSessionRegistry(
        course_store, container.new_learning_session, idle_ttl=60, completed_ttl=10, clock=clock,
    )


@pytest.mark.asyncio
async def test_open_returns_same_session(registry):
    first = await registry.open(COURSE_ID, "s-theory")
    assert await registry.open(COURSE_ID, "s-theory") is first
    assert registry.get(COURSE_ID, "s-theory") is first
    assert len(registry) == 1


@pytest.mark.asyncio
async def test_open_unknown_session(registry):
    with pytest.raises(SessionNotFoundError):
        await registry.open(COURSE_ID, "nope")


@pytest.mark.asyncio
async def test_idle_session_is_evicted(registry, clock):
    session = await registry.open(COURSE_ID, "s-theory")
    await session.load()
    assert session.heartbeat.running

    clock.advance(59)
    assert registry.evict_idle() == 0
    clock.advance(1)
    assert registry.evict_idle() == 1

    assert not session.heartbeat.running
    assert len(registry) == 0
    with pytest.raises(SessionNotLoadedError):
        registry.get(COURSE_ID, "s-theory")


@pytest.mark.asyncio
async def test_access_keeps_session_alive(registry, clock):
    session = await registry.open(COURSE_ID, "s-theory")
    await session.load()

    clock.advance(50)
    registry.get(COURSE_ID, "s-theory")
    clock.advance(50)
    assert registry.evict_idle() == 0
    assert session.heartbeat.running


@pytest.mark.asyncio
async def test_completed_session_uses_shorter_ttl(registry, clock):
    done = await registry.open(COURSE_ID, "s-theory")
    await done.load()
    await done.apply_model_reply('{"type":"complete","summary":"Done"}')
    active = await registry.open(COURSE_ID, "s-loops")
    await active.load()

    clock.advance(10)
    assert registry.evict_idle() == 1
    assert registry.get(COURSE_ID, "s-loops") is active
    with pytest.raises(SessionNotLoadedError):
        registry.get(COURSE_ID, "s-theory")


@pytest.mark.asyncio
async def test_pending_turn_is_not_evicted(registry, clock, completer):
    session = await registry.open(COURSE_ID, "s-theory")
    await session.load()
    completer.gate = asyncio.Event()
    pending = asyncio.create_task(session.send_message("hello"))
    await asyncio.sleep(0)
    assert session.turn_in_flight

    clock.advance(120)
    assert registry.evict_idle() == 0

    completer.gate.set()
    await pending
    assert registry.evict_idle() == 1


@pytest.mark.asyncio
async def test_left_session_is_forgotten(registry, clock):
    session = await registry.open(COURSE_ID, "s-theory")
    await session.load()
    assert registry.leave(COURSE_ID, "s-theory")
    assert not registry.leave(COURSE_ID, "s-theory")
    clock.advance(120)
    assert registry.evict_idle() == 0


@pytest.mark.asyncio
async def test_periodic_eviction_runs_in_background(registry, clock):
    session = await registry.open(COURSE_ID, "s-theory")
    await session.load()
    clock.advance(120)

    task = asyncio.create_task(periodic_eviction(registry, interval_seconds=0.01))
    try:
        for _ in range(100):
            if not len(registry):
                break
            await asyncio.sleep(0.01)
    finally:
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    assert len(registry) == 0
    assert not session.heartbeat.running
