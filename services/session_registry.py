"""Registry of open learning sessions, keyed by (user, course, session).

Views that are closed without a ``leave`` call would otherwise keep their
heartbeat running forever; :meth:`LearningSessionRegistry.evict_idle` drops
sessions nobody has touched for a while and :func:`periodic_eviction` runs
it from the application lifespan.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable

from errors import SessionNotFoundError, SessionNotLoadedError
from models.session import CourseInfo, SessionDescriptor
from services.course_store import DEFAULT_USER_ID, CourseStore
from services.learning_session import LearningSession

logger = logging.getLogger(__name__)

SessionFactory = Callable[[CourseInfo, SessionDescriptor, str], LearningSession]
SessionKey = tuple[str, str, str]


class LearningSessionRegistry:
    """Builds one :class:`LearningSession` per open view and hands it back on later calls."""

    def __init__(
        self,
        course_store: CourseStore,
        factory: SessionFactory,
        *,
        idle_ttl: float = 1800.0,
        completed_ttl: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._course_store = course_store
        self._factory = factory
        self._idle_ttl = idle_ttl
        self._completed_ttl = completed_ttl
        self._clock = clock
        self._sessions: dict[SessionKey, LearningSession] = {}
        self._last_seen: dict[SessionKey, float] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    async def open(
        self, course_id: str, session_id: str, *, user_id: str = DEFAULT_USER_ID,
    ) -> LearningSession:
        """Return the open session, or build one from the course store.

        Raises:
            SessionNotFoundError: The course store has no such course/session.
        """
        key = (user_id, course_id, session_id)
        existing = self._sessions.get(key)
        if existing is not None:
            self._touch(key)
            return existing

        course = await self._course_store.get_course(course_id)
        session = await self._course_store.get_session(course_id, session_id)
        if course is None or session is None:
            raise SessionNotFoundError(course_id, session_id)

        learning_session = self._factory(course, session, user_id)
        self._sessions[key] = learning_session
        self._touch(key)
        logger.info("[Session] Opened %s/%s for %s", course_id, session_id, user_id)
        return learning_session

    def get(self, course_id: str, session_id: str, *, user_id: str = DEFAULT_USER_ID) -> LearningSession:
        """Raises:
            SessionNotLoadedError: The session was never opened (or was left or evicted).
        """
        key = (user_id, course_id, session_id)
        session = self._sessions.get(key)
        if session is None:
            raise SessionNotLoadedError(course_id, session_id)
        self._touch(key)
        return session

    def leave(self, course_id: str, session_id: str, *, user_id: str = DEFAULT_USER_ID) -> bool:
        key = (user_id, course_id, session_id)
        session = self._sessions.pop(key, None)
        self._last_seen.pop(key, None)
        if session is None:
            return False
        session.leave()
        return True

    def evict_idle(self) -> int:
        """Leave and drop sessions untouched for longer than their TTL.

        Completed sessions use the shorter ``completed_ttl``.  A session with
        a reply still pending is kept until the turn settles.

        Returns:
            Number of sessions evicted.
        """
        now = self._clock()
        expired = []
        for key, session in self._sessions.items():
            if session.turn_in_flight:
                continue
            ttl = self._completed_ttl if session.completed else self._idle_ttl
            if now - self._last_seen.get(key, now) >= ttl:
                expired.append(key)

        for key in expired:
            self._last_seen.pop(key, None)
            self._sessions.pop(key).leave()

        if expired:
            logger.info("[Session] Evicted %d idle sessions", len(expired))
        return len(expired)

    def close_all(self) -> None:
        for session in self._sessions.values():
            session.leave()
        self._sessions.clear()
        self._last_seen.clear()

    def _touch(self, key: SessionKey) -> None:
        self._last_seen[key] = self._clock()


async def periodic_eviction(registry: LearningSessionRegistry, interval_seconds: float = 60) -> None:
    """Periodically evict idle learning sessions; run as a lifespan task."""
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            registry.evict_idle()
        except Exception:
            logger.exception("Learning session eviction failed")
