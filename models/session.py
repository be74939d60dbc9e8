"""Course and learning-session descriptors supplied by the course store."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import Field

from models.base import CamelModel


class SessionType(str, Enum):
    """Kind of micro-learning session.

    Only ``QUIZ`` sessions run the batch quiz flow; the rest are driven
    purely by conversation.
    """

    THEORY = "theory"
    QUIZ = "quiz"
    INTERACTIVE = "interactive"
    HANDS_ON = "hands_on"
    REVIEW = "review"


class CourseInfo(CamelModel):
    """Course-level context folded into the lesson prompt."""

    id: str
    title: str = ""
    description: str = ""
    learning_objectives: list[str] = Field(default_factory=list)
    status: str = "in_progress"


class SessionDescriptor(CamelModel):
    """One session of a course, ordered by ``order_index``."""

    id: str
    course_id: str
    title: str = ""
    type: SessionType = SessionType.THEORY
    content: Any = None
    estimated_duration: int | None = None  # minutes
    order_index: int = 0

    @property
    def is_quiz(self) -> bool:
        return self.type == SessionType.QUIZ

    @property
    def estimated_duration_sec(self) -> int:
        return (self.estimated_duration or 0) * 60

    def rich_content(self, course: CourseInfo | None = None) -> dict[str, Any]:
        """Session payload handed to the lesson prompt."""
        return build_rich_session_content(
            self.content,
            session_title=self.title,
            session_type=self.type.value,
            course_title=course.title if course else "",
            learning_objectives=course.learning_objectives if course else None,
        )


def build_rich_session_content(
    content: Any,
    *,
    session_title: str = "",
    session_type: str = "",
    course_title: str = "",
    learning_objectives: list[str] | None = None,
) -> dict[str, Any]:
    """Fold course and session metadata next to the raw session content.

    Returns:
        ``{"course": {"title", "learningObjectives"}, "session": {"title", "type"}, "content"}``
    """
    return {
        "course": {
            "title": course_title,
            "learningObjectives": list(learning_objectives or []),
        },
        "session": {"title": session_title, "type": session_type},
        "content": content,
    }
