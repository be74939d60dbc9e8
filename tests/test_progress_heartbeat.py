"""Tests for services/progress_heartbeat.py — debounced best-effort progress."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from errors import CollaboratorError
from models.progress import ProgressStatus
from models.quiz import QuizRun
from services.background import pending_tasks
from services.course_store import InMemoryCourseStore
from services.progress_heartbeat import ProgressHeartbeat
from tests.conftest import make_quiz_items


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def _heartbeat(store=None, clock=None, **kwargs) -> tuple[ProgressHeartbeat, AsyncMock, FakeClock]:
    store = store or InMemoryCourseStore()
    report = AsyncMock()
    store.report_progress = report
    clock = clock or FakeClock()
    hb = ProgressHeartbeat(store, "c-1", "s-1", interval=15.0, clock=clock, **kwargs)
    return hb, report, clock


async def _settle() -> None:
    for _ in range(3):
        await asyncio.sleep(0)


@pytest.mark.asyncio
async def test_scenario_e_two_ticks_within_ten_seconds_send_once():
    hb, report, clock = _heartbeat()
    assert hb.maybe_send() is True
    clock.now += 9
    assert hb.maybe_send() is False
    await _settle()
    assert report.await_count == 1


@pytest.mark.asyncio
async def test_sends_again_after_interval():
    hb, report, clock = _heartbeat()
    hb.maybe_send()
    clock.now += 15
    assert hb.maybe_send() is True
    await _settle()
    assert report.await_count == 2


@pytest.mark.asyncio
async def test_quiz_index_advance_sends_immediately_once():
    hb, report, clock = _heartbeat()
    run = QuizRun(items=make_quiz_items(3))
    hb.attach_quiz(run)
    hb.maybe_send()

    run.record_answer(run.current_item.correct_index)
    run.advance()
    clock.now += 1
    assert hb.notify_quiz_index() is True
    clock.now += 1
    assert hb.notify_quiz_index() is False
    await _settle()
    assert report.await_count == 2


@pytest.mark.asyncio
async def test_snapshot_carries_time_and_quiz_score():
    hb, report, clock = _heartbeat()
    run = QuizRun(items=make_quiz_items(4))
    hb.attach_quiz(run)
    run.record_answer(run.current_item.correct_index)
    clock.now += 42.7

    hb.maybe_send()
    await _settle()
    course_id, session_id, update = report.await_args.args
    assert (course_id, session_id) == ("c-1", "s-1")
    assert update.status == ProgressStatus.IN_PROGRESS
    assert update.time_spent_sec == 42
    assert update.score == 25


@pytest.mark.asyncio
async def test_snapshot_without_quiz_has_no_score():
    hb, _, _ = _heartbeat()
    assert hb.snapshot().score is None


@pytest.mark.asyncio
async def test_failed_send_is_swallowed():
    hb, report, _ = _heartbeat()
    report.side_effect = CollaboratorError("report_progress", "down", 503)
    assert hb.maybe_send() is True
    await _settle()
    assert not pending_tasks()


def test_time_progress_pct():
    hb, _, clock = _heartbeat()
    clock.now += 300
    assert hb.time_progress_pct(10) == 50
    assert hb.time_progress_pct(None) == 50
    clock.now += 10_000
    assert hb.time_progress_pct(10) == 100


@pytest.mark.asyncio
async def test_timer_sends_on_start_and_stops():
    hb, report, _ = _heartbeat(tick=0.01)
    hb.start()
    assert hb.running
    await asyncio.sleep(0.05)
    hb.stop()
    assert not hb.running
    await _settle()
    assert report.await_count == 1


@pytest.mark.asyncio
async def test_reports_reach_the_store():
    store = InMemoryCourseStore()
    hb = ProgressHeartbeat(store, "c-1", "s-1", clock=FakeClock())
    hb.maybe_send()
    await _settle()
    assert store.get_progress("c-1", "s-1").status == ProgressStatus.IN_PROGRESS
