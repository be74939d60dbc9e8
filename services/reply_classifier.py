"""Reply classifier — decode raw model output into a :data:`ModelReply`.

Precedence is strict:

1. the whole trimmed output is ``{"type": "complete", ...}`` → CompletionReply
2. the output embeds ``{"type": "quiz", ...}`` (the *last* such object wins) → QuizReply
3. anything else → PlainReply
"""

from __future__ import annotations

import logging

from pydantic import ValidationError

from models.conversation import Turn
from models.quiz import QuizItem
from models.reply import (
    DEFAULT_COMPLETION_SUMMARY,
    CompletionReply,
    ModelReply,
    PlainReply,
    QuizReply,
)
from services.control_tokens import encode_quiz_block
from services.json_blocks import loads_lenient, scan_json_objects

logger = logging.getLogger(__name__)


def _as_completion(trimmed: str) -> CompletionReply | None:
    if not (trimmed.startswith("{") and trimmed.endswith("}")):
        return None
    try:
        value = loads_lenient(trimmed)
    except ValueError:
        return None
    if not isinstance(value, dict) or value.get("type") != "complete":
        return None
    summary = value.get("summary")
    if isinstance(summary, list):
        summary = "\n".join(str(s) for s in summary)
    if not isinstance(summary, str) or not summary.strip():
        summary = DEFAULT_COMPLETION_SUMMARY
    return CompletionReply(summary=summary)


def _as_quiz(raw: str) -> QuizReply | None:
    candidates = [
        block for block in scan_json_objects(raw)
        if isinstance(block.value, dict) and block.value.get("type") == "quiz"
    ]
    if not candidates:
        return None
    last = candidates[-1]
    try:
        quiz = QuizItem.model_validate(last.value)
    except ValidationError as exc:
        logger.info("[Quiz] Inline quiz block failed validation, keeping plain text: %s", exc)
        return None
    return QuizReply(preface=raw[: last.start].strip(), quiz=quiz)


def classify_reply(raw: str) -> ModelReply:
    """Classify one complete model reply.  Never raises."""
    trimmed = raw.strip()
    completion = _as_completion(trimmed)
    if completion is not None:
        return completion
    quiz = _as_quiz(raw)
    if quiz is not None:
        return quiz
    return PlainReply(text=trimmed)


def reply_turns(reply: ModelReply, *, quiz_enabled: bool) -> list[Turn]:
    """Assistant turns to append to the transcript for a non-completion reply.

    Outside quiz-bearing sessions the quiz block is dropped and only its
    preface survives.
    """
    if isinstance(reply, PlainReply):
        return [Turn.assistant(reply.text)] if reply.text else []
    if isinstance(reply, QuizReply):
        turns: list[Turn] = []
        if reply.preface:
            turns.append(Turn.assistant(reply.preface))
        if quiz_enabled:
            turns.append(Turn.assistant(encode_quiz_block(reply.quiz)))
        return turns
    return [Turn.assistant(reply.summary)]
