"""LessonAgent — drives one micro-learning conversation turn.

Module-level agent with no bound model; the configured backend is resolved
per call so a missing key surfaces as :class:`ModelNotConfiguredError`
instead of failing at import.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any

from pydantic_ai import Agent
from pydantic_ai.messages import (
    ModelMessage,
    ModelRequest,
    ModelResponse,
    SystemPromptPart,
    TextPart,
    UserPromptPart,
)

from agents.provider import get_default_model
from config.llm_config import LLMConfig
from config.prompts.lesson import (
    FIRST_TURN_PREAMBLE,
    build_grading_preamble,
    build_lesson_system_prompt,
)
from config.settings import get_settings
from errors import ModelNotConfiguredError, ModelTransportError
from models.control import AUTO_INTRO_SENTINEL, QUIZ_BLOCK_PREFIX, ControlEnvelope
from models.conversation import Role, Turn
from services.concurrency import llm_slot
from services.control_tokens import classify

logger = logging.getLogger(__name__)

# Stands in for the auto-intro sentinel when it opens a conversation.
SEED_USER_TEXT = "Hello"

_lesson_agent = Agent(
    output_type=str,
    retries=1,
    defer_model_check=True,
)


@dataclass
class LessonTurn:
    """Everything needed for one model call: context, history and the new turn."""

    session_content: Any
    history: list[Turn]
    user_message: str
    envelope: ControlEnvelope
    grading_preamble: str | None = None
    first_turn_preamble: str | None = None
    emotion_data: Any = None
    llm_config: LLMConfig = field(default_factory=LLMConfig)

    @classmethod
    def prepare(
        cls,
        session_content: Any,
        history: list[Turn],
        user_message: str,
        *,
        grading_preamble: str | None = None,
        first_turn_preamble: str | None = None,
        emotion_data: Any = None,
    ) -> LessonTurn:
        """Decode the control token and derive the one-shot preambles.

        Caller-supplied preambles win.  A quiz answer gets a grading
        preamble; an opening turn that is not a quiz answer gets the
        first-turn preamble.
        """
        envelope = classify(user_message)
        if grading_preamble is None and envelope.payload is not None:
            grading_preamble = build_grading_preamble(envelope.payload)
        if first_turn_preamble is None and not history and not envelope.is_quiz_answer:
            first_turn_preamble = FIRST_TURN_PREAMBLE
        return cls(
            session_content=session_content,
            history=list(history),
            user_message=user_message,
            envelope=envelope,
            grading_preamble=grading_preamble,
            first_turn_preamble=first_turn_preamble,
            emotion_data=emotion_data,
        )

    def system_instruction(self) -> str:
        return (
            build_lesson_system_prompt(self.session_content, self.emotion_data)
            + (self.grading_preamble or "")
            + (self.first_turn_preamble or "")
        )

    def model_prompt(self) -> str:
        """The new user turn as the model sees it."""
        if self.envelope.is_auto_intro and not self.history:
            return SEED_USER_TEXT
        return self.user_message


def build_message_history(system_instruction: str, history: list[Turn]) -> list[ModelMessage]:
    """Convert transcript turns into PydanticAI messages.

    A leading auto-intro turn becomes the synthetic seed and ``QUIZ::``
    blocks go back to the raw JSON the model produced.  Adjacent turns of
    the same role are folded into one message.
    """
    messages: list[ModelMessage] = [ModelRequest(parts=[SystemPromptPart(content=system_instruction)])]
    for index, turn in enumerate(history):
        content = turn.content
        if turn.role == Role.USER:
            if index == 0 and content.startswith(AUTO_INTRO_SENTINEL):
                content = SEED_USER_TEXT
            part = UserPromptPart(content=content)
            last = messages[-1]
            if isinstance(last, ModelRequest) and len(messages) > 1:
                last.parts = [*last.parts, part]
            else:
                messages.append(ModelRequest(parts=[part]))
        else:
            if content.startswith(QUIZ_BLOCK_PREFIX):
                content = content[len(QUIZ_BLOCK_PREFIX):]
            text = TextPart(content=content)
            last = messages[-1]
            if isinstance(last, ModelResponse):
                last.parts = [*last.parts, text]
            else:
                messages.append(ModelResponse(parts=[text]))
    return messages


def _model_settings(turn: LessonTurn):
    return get_settings().get_chat_llm_config().merge(turn.llm_config).to_model_settings()


async def generate_reply(turn: LessonTurn) -> str:
    """Run one lesson turn and return the complete assistant text.

    Raises:
        ModelNotConfiguredError: No backend is configured.
        ModelTransportError: The model call failed or timed out.
    """
    model = get_default_model()
    messages = build_message_history(turn.system_instruction(), turn.history)

    logger.info(
        "[Session] Lesson turn kind=%s history_turns=%d grading=%s first_turn=%s",
        turn.envelope.kind.value, len(turn.history),
        turn.grading_preamble is not None, turn.first_turn_preamble is not None,
    )

    try:
        async with llm_slot():
            result = await _lesson_agent.run(
                turn.model_prompt(),
                model=model,
                message_history=messages,
                model_settings=_model_settings(turn),
            )
    except ModelNotConfiguredError:
        raise
    except Exception as exc:
        logger.exception("[Session] Lesson turn failed")
        raise ModelTransportError(str(exc), cause=exc) from exc

    reply = str(result.output)
    logger.info("[Session] Lesson reply length=%d", len(reply))
    return reply


async def stream_reply(turn: LessonTurn) -> AsyncIterator[str]:
    """Run one lesson turn, yielding text deltas as they arrive.

    Raises:
        ModelNotConfiguredError: No backend is configured.
        ModelTransportError: The model call failed mid-stream.
    """
    model = get_default_model()
    messages = build_message_history(turn.system_instruction(), turn.history)

    try:
        async with llm_slot():
            async with _lesson_agent.run_stream(
                turn.model_prompt(),
                model=model,
                message_history=messages,
                model_settings=_model_settings(turn),
            ) as result:
                async for delta in result.stream_text(delta=True):
                    if delta:
                        yield delta
    except ModelNotConfiguredError:
        raise
    except Exception as exc:
        logger.exception("[Stream] Lesson stream failed")
        raise ModelTransportError(str(exc), cause=exc) from exc
