"""Quiz battery service — cached battery generation for quiz sessions."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

from agents.quiz_battery import generate_quiz_battery
from models.quiz import QuizItem
from models.session import CourseInfo, SessionDescriptor
from services.quiz_cache import QuizBatteryCache

BatteryGenerator = Callable[..., Awaitable[list[QuizItem]]]


class QuizBatteryService:
    """Wraps the quiz agent with the per-session at-most-once cache."""

    def __init__(
        self,
        cache: QuizBatteryCache,
        *,
        generator: BatteryGenerator = generate_quiz_battery,
        battery_size: int = 10,
    ) -> None:
        self.cache = cache
        self._generator = generator
        self._battery_size = battery_size

    async def get_battery(
        self,
        *,
        session_id: str | None,
        session_content: Any,
        session_title: str,
        course_title: str,
    ) -> list[QuizItem]:
        async def factory() -> list[QuizItem]:
            return await self._generator(
                session_content=session_content,
                session_title=session_title,
                course_title=course_title,
                count=self._battery_size,
            )

        return await self.cache.get_or_generate(session_id, factory)

    async def for_session(self, session: SessionDescriptor, course: CourseInfo) -> list[QuizItem]:
        return await self.get_battery(
            session_id=session.id,
            session_content=session.content,
            session_title=session.title,
            course_title=course.title,
        )
