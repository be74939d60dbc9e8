"""Detached background tasks with no result channel.

Heartbeats, background quiz grading and similar side effects are started
here and never awaited by the caller.  A failure is logged and dropped.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine
from typing import Any

logger = logging.getLogger(__name__)

# Strong references; the event loop only keeps weak ones.
_tasks: set[asyncio.Task[Any]] = set()


def fire_and_forget(coro: Coroutine[Any, Any, Any], *, name: str) -> asyncio.Task[Any]:
    """Schedule *coro* detached from the caller.

    Args:
        coro: The side effect to run.
        name: Task name, used in the failure log line.

    Returns:
        The task, for tests and shutdown draining only.
    """
    task = asyncio.create_task(coro, name=name)
    _tasks.add(task)
    task.add_done_callback(_on_done)
    return task


def _on_done(task: asyncio.Task[Any]) -> None:
    _tasks.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.warning("Background task %s failed: %s", task.get_name(), exc)


def pending_tasks() -> set[asyncio.Task[Any]]:
    return set(_tasks)


async def drain(timeout: float = 5.0) -> None:
    """Wait briefly for outstanding tasks, then cancel the rest (shutdown)."""
    if not _tasks:
        return
    done, pending = await asyncio.wait(set(_tasks), timeout=timeout)
    for task in pending:
        task.cancel()
    logger.info("Drained background tasks: %d done, %d cancelled", len(done), len(pending))
