"""Cross-view progress notifications on the ``progress_updates`` channel.

Subscribers (open course views) each get a bounded queue.  Publishing never
blocks and has no acknowledgment: a subscriber whose queue is full is
dropped, and the caller never learns about it.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from models.progress import SessionCompletedEvent

logger = logging.getLogger(__name__)

PROGRESS_CHANNEL = "progress_updates"
SUBSCRIBER_QUEUE_SIZE = 1000


class ProgressBroadcaster:
    """In-process fan-out of :class:`SessionCompletedEvent` per course."""

    def __init__(self, queue_size: int = SUBSCRIBER_QUEUE_SIZE) -> None:
        self._queue_size = queue_size
        self._subscribers: dict[str, set[asyncio.Queue[SessionCompletedEvent]]] = {}

    def subscriber_count(self, course_id: str) -> int:
        return len(self._subscribers.get(course_id, ()))

    def register(self, course_id: str) -> asyncio.Queue[SessionCompletedEvent]:
        queue: asyncio.Queue[SessionCompletedEvent] = asyncio.Queue(maxsize=self._queue_size)
        self._subscribers.setdefault(course_id, set()).add(queue)
        return queue

    def unregister(self, course_id: str, queue: asyncio.Queue[SessionCompletedEvent]) -> None:
        queues = self._subscribers.get(course_id)
        if queues is None:
            return
        queues.discard(queue)
        if not queues:
            del self._subscribers[course_id]

    @asynccontextmanager
    async def subscription(self, course_id: str) -> AsyncIterator[asyncio.Queue[SessionCompletedEvent]]:
        queue = self.register(course_id)
        try:
            yield queue
        finally:
            self.unregister(course_id, queue)

    def publish(self, event: SessionCompletedEvent) -> None:
        """Deliver *event* to every subscriber of its course, best effort."""
        delivered = 0
        dead = []
        for queue in self._subscribers.get(event.course_id, set()):
            try:
                queue.put_nowait(event)
                delivered += 1
            except asyncio.QueueFull:
                dead.append(queue)
        for queue in dead:
            logger.debug("[Handoff] Dropping slow %s subscriber for %s", PROGRESS_CHANNEL, event.course_id)
            self.unregister(event.course_id, queue)
        logger.debug(
            "[Handoff] Broadcast %s on %s to %d view(s)", event.type, PROGRESS_CHANNEL, delivered,
        )
