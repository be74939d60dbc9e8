"""Progress heartbeat — periodic, best-effort progress reports for an open session.

The timer runs independently of model calls.  Each tick asks
:meth:`ProgressHeartbeat.maybe_send`, which sends when the interval has
elapsed or the batch quiz index moved since the last send.  Sends are
detached tasks; a failed send is logged by the background runner and
never reaches the learner.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable

from models.progress import ProgressStatus, ProgressUpdate
from models.quiz import QuizRun
from services.background import fire_and_forget
from services.course_store import DEFAULT_USER_ID, CourseStore

logger = logging.getLogger(__name__)

DEFAULT_SESSION_MINUTES = 10


class ProgressHeartbeat:
    """Debounced progress reporter for one (course, session) view."""

    def __init__(
        self,
        store: CourseStore,
        course_id: str,
        session_id: str,
        *,
        user_id: str = DEFAULT_USER_ID,
        interval: float = 15.0,
        tick: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._store = store
        self.course_id = course_id
        self.session_id = session_id
        self._user_id = user_id
        self._interval = interval
        self._tick = tick
        self._clock = clock
        self._started_at = clock()
        self._last_sent_at: float | None = None
        self._last_quiz_index: int | None = None
        self._quiz: QuizRun | None = None
        self._task: asyncio.Task[None] | None = None
        self.sent_count = 0

    # ── State ─────────────────────────────────────────────────

    def attach_quiz(self, run: QuizRun) -> None:
        self._quiz = run

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def elapsed_sec(self) -> int:
        return max(0, int(self._clock() - self._started_at))

    def time_progress_pct(self, estimated_duration_min: int | None) -> int:
        """Wall-clock progress against the session's estimated duration."""
        total_sec = max(1, estimated_duration_min or DEFAULT_SESSION_MINUTES) * 60
        return min(100, round(100 * self.elapsed_sec / total_sec))

    def snapshot(self) -> ProgressUpdate:
        score = None
        if self._quiz is not None and self._quiz.total:
            score = self._quiz.score_pct
        return ProgressUpdate(
            status=ProgressStatus.IN_PROGRESS,
            time_spent_sec=self.elapsed_sec,
            score=score,
        )

    # ── Sending ───────────────────────────────────────────────

    def maybe_send(self) -> bool:
        """Send a snapshot if due.  Returns whether a send was dispatched."""
        now = self._clock()
        quiz_index = self._quiz.current_index if self._quiz is not None else None
        index_moved = quiz_index is not None and quiz_index != self._last_quiz_index
        due = self._last_sent_at is None or now - self._last_sent_at >= self._interval
        if not (due or index_moved):
            return False

        self._last_sent_at = now
        self._last_quiz_index = quiz_index
        self.sent_count += 1
        update = self.snapshot()
        logger.debug(
            "[Heartbeat] %s/%s time=%ss score=%s",
            self.course_id, self.session_id, update.time_spent_sec, update.score,
        )
        fire_and_forget(
            self._store.report_progress(
                self.course_id, self.session_id, update, user_id=self._user_id,
            ),
            name=f"heartbeat:{self.course_id}/{self.session_id}",
        )
        return True

    def notify_quiz_index(self) -> bool:
        """Called after the quiz cursor moves; sends immediately if the index is new."""
        return self.maybe_send()

    # ── Timer ─────────────────────────────────────────────────

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(
            self._run(), name=f"heartbeat-timer:{self.course_id}/{self.session_id}",
        )
        logger.info("[Heartbeat] Started for %s/%s", self.course_id, self.session_id)

    def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None
            logger.info("[Heartbeat] Stopped for %s/%s", self.course_id, self.session_id)

    async def _run(self) -> None:
        self.maybe_send()
        while True:
            await asyncio.sleep(self._tick)
            self.maybe_send()
