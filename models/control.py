"""Control-token envelope — out-of-band intents carried inside user turns.

The text channel carries two sentinels::

    <auto_intro>{}
    <quiz_answer>{"intent": "quiz_answer", "id": ..., "selectedIndex": ..., "quiz": {...}}

They are decoded once at ingress into a :class:`ControlEnvelope`
(``{kind, payload}``) so downstream code never re-parses raw text.
"""

from __future__ import annotations

from enum import Enum
from typing import Literal

from pydantic import BaseModel

from models.base import CamelModel
from models.quiz import QuizItem

AUTO_INTRO_SENTINEL = "<auto_intro>"
QUIZ_ANSWER_SENTINEL = "<quiz_answer>"
CONTROL_SENTINELS = (AUTO_INTRO_SENTINEL, QUIZ_ANSWER_SENTINEL)

# Assistant-side transcript encoding for an inline quiz block.
QUIZ_BLOCK_PREFIX = "QUIZ::"


class ControlKind(str, Enum):
    PLAIN = "plain"
    AUTO_INTRO = "auto_intro"
    QUIZ_ANSWER = "quiz_answer"


class QuizAnswerPayload(CamelModel):
    """Body of a ``<quiz_answer>`` token."""

    intent: Literal["quiz_answer"] = "quiz_answer"
    id: str
    selected_index: int | None = None
    text_answer: str | None = None
    quiz: QuizItem


class ControlEnvelope(BaseModel):
    """A user turn after control-token decoding."""

    kind: ControlKind
    text: str
    payload: QuizAnswerPayload | None = None

    @property
    def is_control(self) -> bool:
        return self.kind != ControlKind.PLAIN

    @property
    def is_auto_intro(self) -> bool:
        return self.kind == ControlKind.AUTO_INTRO

    @property
    def is_quiz_answer(self) -> bool:
        return self.kind == ControlKind.QUIZ_ANSWER
