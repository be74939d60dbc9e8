"""Progress models — per (course, session) progress snapshots and events."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Literal

from models.base import CamelModel


class ProgressStatus(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    SKIPPED = "skipped"


class ProgressUpdate(CamelModel):
    """A partial progress write; unset fields keep their stored value."""

    status: ProgressStatus | None = None
    time_spent_sec: float | None = None
    score: float | None = None


class ProgressSnapshot(CamelModel):
    """Stored progress of one session."""

    status: ProgressStatus = ProgressStatus.NOT_STARTED
    start_time: datetime | None = None
    completion_time: datetime | None = None
    time_spent_sec: int = 0
    score: float | None = None


class SessionCompletedEvent(CamelModel):
    """Cross-view notification broadcast when a session is completed."""

    type: Literal["session_completed"] = "session_completed"
    course_id: str
    session_id: str
