"""Completion & handoff — close a finished session and point at the next one.

Steps, in order:
1. final progress write (``completed`` + accumulated time);
2. next-session lookup (``None`` is a valid answer);
3. ``session_completed`` broadcast to other open course views;
4. navigation target: the next session, else the course overview.

A failed lookup navigates back to the course overview and skips the
broadcast.  A failed progress write is logged and does not stop the handoff.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from errors import CollaboratorError
from models.progress import ProgressStatus, ProgressUpdate, SessionCompletedEvent
from services.broadcast import ProgressBroadcaster
from services.course_store import DEFAULT_USER_ID, CourseStore

logger = logging.getLogger(__name__)


def session_path(course_id: str, session_id: str) -> str:
    return f"/course/{course_id}/session/{session_id}"


def course_path(course_id: str) -> str:
    return f"/course/{course_id}"


@dataclass(frozen=True)
class HandoffResult:
    next_session_id: str | None
    navigate_to: str


class CompletionHandoff:
    """Runs the completion protocol against the course store and broadcaster."""

    def __init__(self, store: CourseStore, broadcaster: ProgressBroadcaster) -> None:
        self._store = store
        self._broadcaster = broadcaster

    async def complete(
        self,
        course_id: str,
        session_id: str,
        *,
        time_spent_sec: int,
        score: float | None = None,
        user_id: str = DEFAULT_USER_ID,
    ) -> HandoffResult:
        try:
            await self._store.report_progress(
                course_id,
                session_id,
                ProgressUpdate(
                    status=ProgressStatus.COMPLETED,
                    time_spent_sec=time_spent_sec,
                    score=score,
                ),
                user_id=user_id,
            )
        except CollaboratorError as exc:
            logger.warning("[Handoff] Final progress write failed for %s/%s: %s", course_id, session_id, exc)

        try:
            next_session_id = await self._store.resolve_next_session(
                course_id, session_id, user_id=user_id,
            )
        except CollaboratorError as exc:
            logger.error("[Handoff] Next-session lookup failed for %s/%s: %s", course_id, session_id, exc)
            return HandoffResult(next_session_id=None, navigate_to=course_path(course_id))

        self._broadcaster.publish(SessionCompletedEvent(course_id=course_id, session_id=session_id))

        navigate_to = (
            session_path(course_id, next_session_id) if next_session_id else course_path(course_id)
        )
        logger.info(
            "[Handoff] %s/%s completed (time=%ss) → %s",
            course_id, session_id, time_spent_sec, navigate_to,
        )
        return HandoffResult(next_session_id=next_session_id, navigate_to=navigate_to)
