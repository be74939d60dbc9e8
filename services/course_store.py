"""Course / progress collaborator — session descriptors, progress upserts, next-session lookup.

Two implementations behind one interface:
- InMemoryCourseStore: process-local, seeded at start-up or by tests.
- HttpCourseStore: the external course service over ``httpx`` with retry
  and exponential backoff on network / 5xx errors.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any

import httpx

from config.settings import Settings, get_settings
from errors import CollaboratorError
from models.progress import ProgressSnapshot, ProgressStatus, ProgressUpdate
from models.session import CourseInfo, SessionDescriptor

logger = logging.getLogger(__name__)

DEFAULT_USER_ID = "anonymous"

MAX_RETRIES = 3
RETRY_BASE_DELAY = 0.5  # seconds, doubles each attempt


def apply_progress_update(
    existing: ProgressSnapshot | None,
    update: ProgressUpdate,
    *,
    now: datetime | None = None,
) -> ProgressSnapshot:
    """Upsert rules for one progress write.

    - status falls back to the stored status, then ``in_progress``;
    - a completed record is never moved back to ``in_progress``;
    - ``start_time`` is kept once set, else stamped when in progress;
    - ``completion_time`` is stamped once, when status becomes completed;
    - ``time_spent_sec`` only accepts a finite non-negative number (floored);
    - ``score`` is kept when not supplied.
    """
    now = now or datetime.now(timezone.utc)
    status = update.status or (existing.status if existing else ProgressStatus.IN_PROGRESS)
    completed_before = existing is not None and existing.status == ProgressStatus.COMPLETED
    if completed_before and status == ProgressStatus.IN_PROGRESS:
        status = ProgressStatus.COMPLETED

    start_time = existing.start_time if existing else None
    if start_time is None and status == ProgressStatus.IN_PROGRESS:
        start_time = now

    completion_time = existing.completion_time if existing else None
    if status == ProgressStatus.COMPLETED and completion_time is None:
        completion_time = now

    time_spent = existing.time_spent_sec if existing else 0
    raw = update.time_spent_sec
    if isinstance(raw, (int, float)) and not isinstance(raw, bool) and math.isfinite(raw) and raw >= 0:
        time_spent = math.floor(raw)

    score = update.score if update.score is not None else (existing.score if existing else None)

    return ProgressSnapshot(
        status=status,
        start_time=start_time,
        completion_time=completion_time,
        time_spent_sec=time_spent,
        score=score,
    )


class CourseStore(ABC):
    """Abstract course / progress collaborator."""

    async def start(self) -> None:
        """Open connections (no-op by default)."""

    async def close(self) -> None:
        """Release connections (no-op by default)."""

    @abstractmethod
    async def get_course(self, course_id: str) -> CourseInfo | None: ...

    @abstractmethod
    async def get_session(self, course_id: str, session_id: str) -> SessionDescriptor | None: ...

    @abstractmethod
    async def report_progress(
        self,
        course_id: str,
        session_id: str,
        update: ProgressUpdate,
        *,
        user_id: str = DEFAULT_USER_ID,
    ) -> None:
        """Upsert the progress of one session.

        Raises:
            CollaboratorError: The write failed.
        """

    @abstractmethod
    async def resolve_next_session(
        self,
        course_id: str,
        session_id: str,
        *,
        user_id: str = DEFAULT_USER_ID,
    ) -> str | None:
        """Mark *session_id* completed and return the next session id.

        ``None`` means the course has no further session; the course is
        marked completed once every session is.

        Raises:
            CollaboratorError: The lookup failed.
        """


# ── In-memory implementation ─────────────────────────────────


class InMemoryCourseStore(CourseStore):
    """Process-local course catalogue and progress table."""

    def __init__(self) -> None:
        self._courses: dict[str, CourseInfo] = {}
        self._sessions: dict[str, dict[str, SessionDescriptor]] = {}
        self._progress: dict[tuple[str, str, str], ProgressSnapshot] = {}

    def add_course(self, course: CourseInfo, sessions: list[SessionDescriptor]) -> None:
        self._courses[course.id] = course
        self._sessions[course.id] = {s.id: s for s in sessions}

    async def get_course(self, course_id: str) -> CourseInfo | None:
        return self._courses.get(course_id)

    async def get_session(self, course_id: str, session_id: str) -> SessionDescriptor | None:
        return self._sessions.get(course_id, {}).get(session_id)

    def get_progress(
        self, course_id: str, session_id: str, *, user_id: str = DEFAULT_USER_ID
    ) -> ProgressSnapshot | None:
        return self._progress.get((user_id, course_id, session_id))

    async def report_progress(
        self,
        course_id: str,
        session_id: str,
        update: ProgressUpdate,
        *,
        user_id: str = DEFAULT_USER_ID,
    ) -> None:
        key = (user_id, course_id, session_id)
        self._progress[key] = apply_progress_update(self._progress.get(key), update)

    async def resolve_next_session(
        self,
        course_id: str,
        session_id: str,
        *,
        user_id: str = DEFAULT_USER_ID,
    ) -> str | None:
        await self.report_progress(
            course_id, session_id, ProgressUpdate(status=ProgressStatus.COMPLETED), user_id=user_id,
        )

        sessions = self._sessions.get(course_id, {})
        current = sessions.get(session_id)
        if current is None:
            return None

        following = sorted(
            (s for s in sessions.values() if s.order_index > current.order_index),
            key=lambda s: s.order_index,
        )
        if following:
            return following[0].id

        completed = sum(
            1 for sid in sessions
            if (p := self._progress.get((user_id, course_id, sid))) is not None
            and p.status == ProgressStatus.COMPLETED
        )
        course = self._courses.get(course_id)
        if course is not None and sessions and completed >= len(sessions):
            course.status = "completed"
            logger.info("[Handoff] Course %s completed", course_id)
        return None


# ── HTTP implementation ──────────────────────────────────────


class HttpCourseStore(CourseStore):
    """Course service client with retry on network / 5xx errors."""

    def __init__(self, settings: Settings | None = None) -> None:
        settings = settings or get_settings()
        self._base_url = (
            f"{settings.course_service_base_url.rstrip('/')}{settings.course_service_api_prefix}"
        )
        self._timeout = settings.course_service_timeout
        self._token = settings.course_service_token
        self._http: httpx.AsyncClient | None = None

    async def start(self) -> None:
        if self._http is not None:
            return
        headers = {"Authorization": f"Bearer {self._token}"} if self._token else {}
        self._http = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=httpx.Timeout(self._timeout),
            headers=headers,
        )
        logger.info("HttpCourseStore started — base_url=%s", self._base_url)

    async def close(self) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None
            logger.info("HttpCourseStore closed")

    async def get_course(self, course_id: str) -> CourseInfo | None:
        data = await self._request("GET", f"/courses/{course_id}", allow_404=True)
        return CourseInfo.model_validate(data) if data else None

    async def get_session(self, course_id: str, session_id: str) -> SessionDescriptor | None:
        data = await self._request(
            "GET", f"/courses/{course_id}/sessions/{session_id}", allow_404=True,
        )
        return SessionDescriptor.model_validate(data) if data else None

    async def report_progress(
        self,
        course_id: str,
        session_id: str,
        update: ProgressUpdate,
        *,
        user_id: str = DEFAULT_USER_ID,
    ) -> None:
        body = {
            "userId": user_id,
            "courseId": course_id,
            "sessionId": session_id,
            **update.model_dump(by_alias=True, exclude_none=True, mode="json"),
        }
        await self._request("POST", "/sessions/progress", json_body=body)

    async def resolve_next_session(
        self,
        course_id: str,
        session_id: str,
        *,
        user_id: str = DEFAULT_USER_ID,
    ) -> str | None:
        data = await self._request(
            "POST",
            "/sessions/complete",
            json_body={"userId": user_id, "courseId": course_id, "sessionId": session_id},
        )
        return (data or {}).get("nextSessionId")

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json_body: dict[str, Any] | None = None,
        allow_404: bool = False,
    ) -> Any:
        """Execute a request with exponential-backoff retry.

        Retries network errors and 5xx; other 4xx raise immediately.
        """
        if self._http is None:
            raise RuntimeError("HttpCourseStore not started — call await store.start() first")

        operation = f"{method} {path}"
        last_exc: CollaboratorError | None = None
        for attempt in range(1, MAX_RETRIES + 1):
            t0 = time.monotonic()
            try:
                response = await self._http.request(method, path, json=json_body)
            except httpx.TransportError as exc:
                last_exc = CollaboratorError(operation, f"network error: {exc}")
                logger.warning(
                    "%s → network error (%.0fms): %s [attempt %d/%d]",
                    operation, (time.monotonic() - t0) * 1000, exc, attempt, MAX_RETRIES,
                )
            else:
                logger.info(
                    "%s → %d (%.0fms)", operation, response.status_code, (time.monotonic() - t0) * 1000,
                )
                if response.status_code == 404 and allow_404:
                    return None
                if 400 <= response.status_code < 500:
                    raise CollaboratorError(operation, response.text[:500], response.status_code)
                if response.status_code < 400:
                    return response.json() if response.text else {}
                last_exc = CollaboratorError(operation, response.text[:200], response.status_code)

            if attempt < MAX_RETRIES:
                await asyncio.sleep(RETRY_BASE_DELAY * (2 ** (attempt - 1)))

        assert last_exc is not None
        raise last_exc


def create_course_store(settings: Settings | None = None) -> CourseStore:
    """Factory: pick the implementation from ``course_store_type``."""
    settings = settings or get_settings()
    if settings.course_store_type == "http":
        return HttpCourseStore(settings)
    return InMemoryCourseStore()
