"""QuizBatteryAgent — generates the fixed multiple-choice battery of a quiz session."""

from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError
from pydantic_ai import Agent

from agents.provider import get_default_model
from config.prompts.lesson import QUIZ_BATTERY_SYSTEM_PROMPT, build_quiz_battery_prompt
from config.settings import get_settings
from errors import ModelNotConfiguredError, QuizGenerationError
from models.quiz import QuizItem
from services.concurrency import llm_slot
from services.json_blocks import loads_lenient, strip_code_fences

logger = logging.getLogger(__name__)

_quiz_agent = Agent(
    output_type=str,
    system_prompt=QUIZ_BATTERY_SYSTEM_PROMPT,
    retries=1,
    defer_model_check=True,
)


def parse_quiz_battery(raw: str, count: int | None = None) -> list[QuizItem]:
    """Parse the model's JSON array into validated items.

    Items that fail validation are dropped with a warning; ids missing from
    the output are filled as ``q<n>``.

    Raises:
        QuizGenerationError: The output is not a JSON array, or no item survived.
    """
    try:
        parsed = loads_lenient(strip_code_fences(raw))
    except ValueError as exc:
        raise QuizGenerationError(f"Quiz set is not valid JSON: {exc}") from exc
    if not isinstance(parsed, list):
        raise QuizGenerationError("Quiz set must be an array")

    items: list[QuizItem] = []
    for index, entry in enumerate(parsed):
        if not isinstance(entry, dict):
            logger.warning("[Quiz] Dropped non-object quiz entry #%d", index + 1)
            continue
        entry.setdefault("id", f"q{index + 1}")
        try:
            items.append(QuizItem.model_validate(entry))
        except ValidationError as exc:
            logger.warning("[Quiz] Dropped invalid quiz entry #%d: %s", index + 1, exc)

    if not items:
        raise QuizGenerationError("Quiz set contained no valid items")
    return items[:count] if count else items


async def generate_quiz_battery(
    *,
    session_content: Any,
    session_title: str,
    course_title: str,
    count: int | None = None,
) -> list[QuizItem]:
    """Ask the model for *count* multiple-choice items about the session.

    Raises:
        ModelNotConfiguredError: No backend is configured.
        QuizGenerationError: The call failed or returned an unusable battery.
    """
    settings = get_settings()
    count = count or settings.quiz_battery_size
    model = get_default_model()
    prompt = build_quiz_battery_prompt(
        count=count,
        session_title=session_title,
        course_title=course_title,
        session_content=session_content,
    )

    logger.info("[Quiz] Generating battery of %d for session '%s'", count, session_title)
    try:
        async with llm_slot():
            result = await _quiz_agent.run(
                prompt,
                model=model,
                model_settings=settings.get_quiz_llm_config().to_model_settings(),
            )
    except ModelNotConfiguredError:
        raise
    except Exception as exc:
        logger.exception("[Quiz] Battery generation failed")
        raise QuizGenerationError(f"Quiz generation failed: {exc}") from exc

    items = parse_quiz_battery(str(result.output), count)
    logger.info("[Quiz] Battery ready: %d items", len(items))
    return items
