"""Conversation models — transcript turns shared by every delivery path.

A transcript is an ordered list of :class:`Turn`.  Control-token turns
(auto-intro, quiz answers) live in the transcript so the model sees them,
but they are never rendered to the learner.
"""

from __future__ import annotations

import uuid
from enum import Enum

from pydantic import Field

from models.base import CamelModel


class Role(str, Enum):
    """Speaker of a transcript turn."""

    USER = "user"
    ASSISTANT = "assistant"


def generate_turn_id() -> str:
    """Generate a unique turn ID with ``turn-`` prefix."""
    return f"turn-{uuid.uuid4().hex[:12]}"


class Turn(CamelModel):
    """One message in a learning-session transcript.

    ``content`` is either free text, a control-token payload (user side) or
    a ``QUIZ::{json}`` block (assistant side, quiz-bearing sessions only).
    """

    id: str = Field(default_factory=generate_turn_id)
    role: Role
    content: str

    @classmethod
    def user(cls, content: str) -> Turn:
        return cls(role=Role.USER, content=content)

    @classmethod
    def assistant(cls, content: str) -> Turn:
        return cls(role=Role.ASSISTANT, content=content)
