"""API request / response models."""

from __future__ import annotations

from typing import Any

from pydantic import Field

from models.base import CamelModel
from models.conversation import Turn
from models.progress import ProgressStatus
from models.quiz import QuizItem
from models.session import SessionDescriptor

# ── /api/sessions ────────────────────────────────────────────


class SessionChatRequest(CamelModel):
    """POST /api/sessions/chat — request body.

    ``session_content`` and ``user_message`` are required; the route answers
    400 when either is missing.
    """

    session_content: Any = None
    user_message: str | None = None
    conversation_history: list[Turn] = Field(default_factory=list)
    session_title: str = ""
    session_type: str = ""
    course_title: str = ""
    course_learning_objectives: list[str] = Field(default_factory=list)
    grading_preamble: str | None = None
    first_turn_preamble: str | None = None
    emotion_data: Any = None


class SessionChatResponse(CamelModel):
    """POST /api/sessions/chat — response body."""

    reply: str


class QuizBatteryRequest(CamelModel):
    """POST /api/sessions/quiz — request body."""

    session_id: str | None = None
    session_content: Any = None
    session_title: str | None = None
    session_type: str | None = None
    course_title: str | None = None
    course_learning_objectives: list[str] = Field(default_factory=list)


class ProgressRequest(CamelModel):
    """POST /api/sessions/progress — request body."""

    course_id: str | None = None
    session_id: str | None = None
    status: ProgressStatus | None = None
    time_spent_sec: Any = None  # validated by the store: finite, non-negative
    score: float | None = None


class CompleteSessionRequest(CamelModel):
    """POST /api/sessions/complete — request body."""

    course_id: str | None = None
    session_id: str | None = None


class CompleteSessionResponse(CamelModel):
    next_session_id: str | None = None


class ErrorResponse(CamelModel):
    error: str


# ── /api/chat (streaming) ────────────────────────────────────


class IncomingMessage(CamelModel):
    id: str | None = None
    text: str


class StreamChatRequest(CamelModel):
    """POST /api/chat — request body."""

    conversation_id: str
    message: IncomingMessage
    course_id: str | None = None
    session_id: str | None = None
    session: SessionDescriptor | None = None


# ── /api/learning (server-held orchestration) ────────────────


class LearnerMessageRequest(CamelModel):
    text: str


class QuizAnswerRequest(CamelModel):
    """Answer to the current batch item, or to an inline quiz when ``quiz_id`` is set."""

    quiz_id: str | None = None
    selected_index: int | None = None
    text_answer: str | None = None


class QuizView(CamelModel):
    items: list[QuizItem]
    current_index: int
    correct_count: int
    wrong_count: int
    progress_pct: int
    finished: bool
    selected_index: int | None = None
    last_answer_correct: bool | None = None
    feedback: str | None = None


class HandoffView(CamelModel):
    next_session_id: str | None = None
    navigate_to: str


class LearningSessionView(CamelModel):
    """Snapshot of one learning session for the UI."""

    course_id: str
    session_id: str
    state: str
    transcript: list[Turn]
    quiz: QuizView | None = None
    time_progress_pct: int = 0
    handoff: HandoffView | None = None
