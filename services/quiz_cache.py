"""Quiz battery cache — at-most-once generation per session id.

Contract:
- the first successful battery for a session id is kept for the lifetime of
  the cache and never replaced (first writer wins);
- concurrent requests for the same session id share one in-flight
  generation instead of starting their own;
- a failed generation is not cached, so a later request retries.

The cache is an explicit object handed to its users, not module state.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from models.quiz import QuizItem

logger = logging.getLogger(__name__)

BatteryFactory = Callable[[], Awaitable[list[QuizItem]]]


def cache_key(session_id: str) -> str:
    return f"session:{session_id}"


class QuizBatteryCache:
    """In-process battery cache keyed by ``session:{id}``."""

    def __init__(self) -> None:
        self._batteries: dict[str, list[QuizItem]] = {}
        self._pending: dict[str, asyncio.Task[list[QuizItem]]] = {}

    def __len__(self) -> int:
        return len(self._batteries)

    def get(self, session_id: str) -> list[QuizItem] | None:
        battery = self._batteries.get(cache_key(session_id))
        return list(battery) if battery is not None else None

    async def get_or_generate(
        self,
        session_id: str | None,
        factory: BatteryFactory,
    ) -> list[QuizItem]:
        """Return the cached battery, generating it once if needed.

        Without a session id nothing is cached and *factory* always runs.
        """
        if not session_id:
            return await factory()

        key = cache_key(session_id)
        cached = self._batteries.get(key)
        if cached is not None:
            logger.debug("[Quiz] Cache hit for %s", key)
            return list(cached)

        task = self._pending.get(key)
        if task is None:
            task = asyncio.ensure_future(factory())
            self._pending[key] = task
            task.add_done_callback(lambda t, key=key: self._on_generated(key, t))
            logger.info("[Quiz] Generating battery for %s", key)
        else:
            logger.info("[Quiz] Joining in-flight generation for %s", key)

        # Shield so one cancelled waiter does not cancel the shared generation.
        await asyncio.shield(task)
        return list(self._batteries.get(key) or task.result())

    def _on_generated(self, key: str, task: asyncio.Task[list[QuizItem]]) -> None:
        self._pending.pop(key, None)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("[Quiz] Battery generation for %s failed: %s", key, exc)
            return
        self._batteries.setdefault(key, list(task.result()))
