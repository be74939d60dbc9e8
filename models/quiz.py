"""Quiz models — quiz items and the per-session batch quiz run.

Includes:
- QuestionType: the four question shapes the tutor may produce
- QuizItem: one question, with type-specific validation
- QuizRun: ordered battery + monotonic cursor + local score counters
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, PrivateAttr, model_validator

from models.base import CamelModel

logger = logging.getLogger(__name__)

TRUE_FALSE_CHOICES = ["True", "False"]


class QuestionType(str, Enum):
    """Question shapes.  Free-text types are graded by the model, not locally."""

    MULTIPLE_CHOICE = "multiple-choice"
    TRUE_FALSE = "true-false"
    FILL_IN_THE_BLANK = "fill-in-the-blank"
    CASE_BASED = "case-based"

    @property
    def is_free_text(self) -> bool:
        return self in (QuestionType.FILL_IN_THE_BLANK, QuestionType.CASE_BASED)


# ── Quiz item ────────────────────────────────────────────────


class QuizItem(CamelModel):
    """One quiz question, as emitted by the model (``{"type": "quiz", ...}``)."""

    id: str
    question: str
    choices: list[str] | None = None
    correct_index: int | None = None
    question_type: QuestionType = QuestionType.MULTIPLE_CHOICE
    explanation: str = ""
    theory: str | None = None
    image_url: str | None = None

    @model_validator(mode="before")
    @classmethod
    def default_true_false_choices(cls, data: Any) -> Any:
        if isinstance(data, dict):
            qtype = data.get("questionType", data.get("question_type"))
            if qtype == QuestionType.TRUE_FALSE.value and not data.get("choices"):
                data = {**data, "choices": list(TRUE_FALSE_CHOICES)}
        return data

    @model_validator(mode="after")
    def validate_shape(self) -> QuizItem:
        """Type-specific validation rules."""
        if self.question_type.is_free_text:
            # Free-text items carry no local answer key.
            self.choices = None
            self.correct_index = None
            return self
        if not self.choices or not 2 <= len(self.choices) <= 4:
            raise ValueError("Choice question must have 2 to 4 choices")
        if self.correct_index is not None and not 0 <= self.correct_index < len(self.choices):
            raise ValueError("correctIndex out of range")
        return self

    def is_correct(self, selected_index: int | None) -> bool:
        """Local grading for choice questions."""
        return (
            selected_index is not None
            and self.correct_index is not None
            and selected_index == self.correct_index
        )

    @property
    def correct_choice(self) -> str | None:
        if self.choices is None or self.correct_index is None:
            return None
        return self.choices[self.correct_index]

    def to_block(self) -> dict[str, Any]:
        """Serialize back to the wire shape the model emits."""
        return {"type": "quiz", **self.model_dump(by_alias=True, exclude_none=True, mode="json")}


def local_feedback(item: QuizItem, selected_index: int | None) -> str:
    """Immediate feedback text shown before the model's grading comes back."""
    if item.is_correct(selected_index):
        return f"Correct! {item.explanation}".strip()
    parts = ["Not quite."]
    if item.correct_choice is not None:
        parts.append(f"Correct answer: {item.correct_choice}.")
    if item.explanation:
        parts.append(item.explanation)
    return " ".join(parts)


# ── Quiz run ─────────────────────────────────────────────────


class QuizRun(BaseModel):
    """Batch quiz state for one session.

    ``current_index`` only moves forward; the run is finished once it
    equals the number of items.  Each item is scored at most once.
    """

    items: list[QuizItem]
    current_index: int = 0
    correct_count: int = 0
    wrong_count: int = 0
    selected_index: int | None = None
    last_answer_correct: bool | None = None

    _answered: set[int] = PrivateAttr(default_factory=set)

    @property
    def total(self) -> int:
        return len(self.items)

    @property
    def finished(self) -> bool:
        return self.current_index >= self.total

    @property
    def current_item(self) -> QuizItem | None:
        return None if self.finished else self.items[self.current_index]

    @property
    def current_answered(self) -> bool:
        return self.current_index in self._answered

    @property
    def progress_pct(self) -> int:
        if self.total == 0:
            return 100
        return max(0, min(100, round(100 * self.current_index / self.total)))

    @property
    def score_pct(self) -> int:
        if self.total == 0:
            return 0
        return round(100 * self.correct_count / self.total)

    def record_answer(self, selected_index: int | None) -> bool:
        """Score the current item locally.

        Returns:
            Whether the answer was correct.  A repeated answer for the same
            item returns the first verdict without touching the counters.
        """
        item = self.current_item
        if item is None:
            raise ValueError("Quiz run is finished")
        if self.current_answered:
            return bool(self.last_answer_correct)

        self._answered.add(self.current_index)
        self.selected_index = selected_index
        if item.question_type.is_free_text:
            # Graded by the model; no local counter moves.
            self.last_answer_correct = None
            return False
        correct = item.is_correct(selected_index)
        self.last_answer_correct = correct
        if correct:
            self.correct_count += 1
        else:
            self.wrong_count += 1
        return correct

    def advance(self) -> int:
        """Move to the next item and return the new index (never decreases)."""
        if not self.finished:
            self.current_index += 1
        self.selected_index = None
        self.last_answer_correct = None
        return self.current_index

    def item_token_id(self) -> str:
        """Stable id used in the quiz-answer control token for the current item."""
        item = self.current_item
        if item is not None and item.id:
            return item.id
        return f"q{self.current_index + 1}"


class QuizBattery(CamelModel):
    """Response body of the quiz battery endpoint."""

    quizzes: list[QuizItem] = Field(default_factory=list)
