"""Classified model replies — a tagged union over plain / quiz / complete."""

from __future__ import annotations

from typing import Annotated, Literal, Union

from pydantic import Field

from models.base import CamelModel
from models.quiz import QuizItem

DEFAULT_COMPLETION_SUMMARY = "Session complete."


class PlainReply(CamelModel):
    kind: Literal["plain"] = "plain"
    text: str


class QuizReply(CamelModel):
    """Reply carrying an embedded quiz block, plus any prose before it."""

    kind: Literal["quiz"] = "quiz"
    preface: str = ""
    quiz: QuizItem


class CompletionReply(CamelModel):
    kind: Literal["complete"] = "complete"
    summary: str = DEFAULT_COMPLETION_SUMMARY


ModelReply = Annotated[
    Union[PlainReply, QuizReply, CompletionReply],
    Field(discriminator="kind"),
]
