"""Control-token codec — encode, classify and filter sentinel-prefixed turns.

Recognition is prefix-based and fails open: a sentinel whose JSON body does
not parse (or does not validate) is treated as plain learner text.  Rendering
is stricter: any turn that *starts* with a sentinel is hidden from the
learner regardless of whether its payload decoded.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable

from pydantic import ValidationError

from models.control import (
    AUTO_INTRO_SENTINEL,
    CONTROL_SENTINELS,
    QUIZ_ANSWER_SENTINEL,
    QUIZ_BLOCK_PREFIX,
    ControlEnvelope,
    ControlKind,
    QuizAnswerPayload,
)
from models.conversation import Turn
from models.quiz import QuizItem
from services.json_blocks import loads_lenient

logger = logging.getLogger(__name__)


# ── Encoding ─────────────────────────────────────────────────


def encode_auto_intro() -> str:
    return f"{AUTO_INTRO_SENTINEL}{{}}"


def encode_quiz_answer(
    item_id: str,
    quiz: QuizItem,
    *,
    selected_index: int | None = None,
    text_answer: str | None = None,
) -> str:
    """Build a ``<quiz_answer>{json}`` token for one answered item."""
    payload = QuizAnswerPayload(
        id=item_id,
        selected_index=selected_index,
        text_answer=text_answer,
        quiz=quiz,
    )
    body = payload.model_dump(by_alias=True, exclude_none=True, mode="json")
    return f"{QUIZ_ANSWER_SENTINEL}{json.dumps(body, ensure_ascii=False)}"


def encode_quiz_block(item: QuizItem) -> str:
    """Transcript encoding of an inline quiz block (assistant side)."""
    return f"{QUIZ_BLOCK_PREFIX}{json.dumps(item.to_block(), ensure_ascii=False)}"


# ── Decoding ─────────────────────────────────────────────────


def classify(text: str) -> ControlEnvelope:
    """Decode a user turn into a :class:`ControlEnvelope`.  Never raises."""
    if text.startswith(AUTO_INTRO_SENTINEL):
        body = text[len(AUTO_INTRO_SENTINEL):]
        try:
            loads_lenient(body)
        except ValueError:
            logger.debug("Malformed auto-intro token, treating as plain text")
            return ControlEnvelope(kind=ControlKind.PLAIN, text=text)
        return ControlEnvelope(kind=ControlKind.AUTO_INTRO, text=text)

    if text.startswith(QUIZ_ANSWER_SENTINEL):
        body = text[len(QUIZ_ANSWER_SENTINEL):]
        try:
            payload = QuizAnswerPayload.model_validate(loads_lenient(body))
        except (ValueError, ValidationError):
            logger.debug("Malformed quiz-answer token, treating as plain text")
            return ControlEnvelope(kind=ControlKind.PLAIN, text=text)
        return ControlEnvelope(kind=ControlKind.QUIZ_ANSWER, text=text, payload=payload)

    return ControlEnvelope(kind=ControlKind.PLAIN, text=text)


def decode_quiz_block(content: str) -> QuizItem | None:
    """Inverse of :func:`encode_quiz_block`; ``None`` for anything else."""
    if not content.startswith(QUIZ_BLOCK_PREFIX):
        return None
    try:
        return QuizItem.model_validate(loads_lenient(content[len(QUIZ_BLOCK_PREFIX):]))
    except (ValueError, ValidationError):
        return None


# ── Rendering ────────────────────────────────────────────────


def is_control_text(text: str) -> bool:
    """True when *text* starts with any recognized sentinel."""
    return text.startswith(CONTROL_SENTINELS)


def visible_transcript(turns: Iterable[Turn]) -> list[Turn]:
    """The transcript as shown to the learner: control-token turns removed."""
    return [t for t in turns if not is_control_text(t.content)]
