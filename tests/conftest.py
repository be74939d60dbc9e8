"""Shared pytest fixtures for the learning-session tests.

Provides:
- ``settings``: Settings with no model keys and fast timers
- ``course_store``: InMemoryCourseStore seeded with a three-session course
- ``quiz_items``: a ten-item multiple-choice battery
- ``completer``: scripted stand-in for the lesson model (records each turn)
- ``container`` / ``client``: the app wired to the doubles above
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator

import pytest
from httpx import ASGITransport, AsyncClient

from agents.lesson_chat import LessonTurn
from config.settings import Settings
from models.quiz import QuizItem
from models.session import CourseInfo, SessionDescriptor, SessionType
from services.container import ServiceContainer, build_container
from services.conversation_store import InMemoryConversationStore
from services.course_store import InMemoryCourseStore
from services.resumable_stream import InMemoryResumableStreamBackend

COURSE_ID = "c-1"


class ScriptedCompleter:
    """Returns queued replies in order and records every turn it was given.

    A queued exception is raised instead of returned.  When the queue runs
    dry the last reply is repeated.
    """

    def __init__(self, *replies: str | BaseException) -> None:
        self.replies = list(replies) or ["Let's begin."]
        self.last: str | BaseException = self.replies[-1]
        self.turns: list[LessonTurn] = []
        self.gate: asyncio.Event | None = None

    def queue(self, *replies: str | BaseException) -> None:
        self.replies.extend(replies)

    async def __call__(self, turn: LessonTurn) -> str:
        self.turns.append(turn)
        if self.gate is not None:
            await self.gate.wait()
        if self.replies:
            self.last = self.replies.pop(0)
        reply = self.last
        if isinstance(reply, BaseException):
            raise reply
        return reply


class ScriptedResponder:
    """Streams a fixed reply in small deltas (streaming-path model double)."""

    def __init__(self, text: str = "Hello there, learner.", chunk: int = 5) -> None:
        self.text = text
        self.chunk = chunk
        self.turns: list[LessonTurn] = []

    async def __call__(self, turn: LessonTurn) -> AsyncIterator[str]:
        self.turns.append(turn)
        for start in range(0, len(self.text), self.chunk):
            await asyncio.sleep(0)
            yield self.text[start:start + self.chunk]


def make_quiz_items(count: int = 10) -> list[QuizItem]:
    return [
        QuizItem(
            id=f"q{n}",
            question=f"Question {n}?",
            choices=["A", "B", "C", "D"],
            correct_index=n % 4,
            explanation=f"Because {n}.",
        )
        for n in range(1, count + 1)
    ]


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        xai_api_key="",
        openai_api_key="",
        resumable_stream_backend="memory",
        sse_keepalive_interval=5.0,
        heartbeat_interval=15.0,
        heartbeat_tick=60.0,
    )


@pytest.fixture
def course_store() -> InMemoryCourseStore:
    store = InMemoryCourseStore()
    store.add_course(
        CourseInfo(
            id=COURSE_ID,
            title="Intro to Python",
            learning_objectives=["Variables", "Loops"],
        ),
        [
            SessionDescriptor(
                id="s-theory", course_id=COURSE_ID, title="Variables",
                type=SessionType.THEORY, content={"text": "A variable names a value."},
                estimated_duration=10, order_index=1,
            ),
            SessionDescriptor(
                id="s-quiz", course_id=COURSE_ID, title="Check-in",
                type=SessionType.QUIZ, content={"text": "Variables and loops."},
                estimated_duration=5, order_index=2,
            ),
            SessionDescriptor(
                id="s-loops", course_id=COURSE_ID, title="Loops",
                type=SessionType.THEORY, content={"text": "for and while."},
                estimated_duration=10, order_index=3,
            ),
        ],
    )
    return store


@pytest.fixture
def quiz_items() -> list[QuizItem]:
    return make_quiz_items()


@pytest.fixture
def completer() -> ScriptedCompleter:
    return ScriptedCompleter("Welcome! Ready to start?")


@pytest.fixture
def responder() -> ScriptedResponder:
    return ScriptedResponder()


@pytest.fixture
def container(settings, course_store, completer, responder, quiz_items) -> ServiceContainer:
    async def battery(**kwargs) -> list[QuizItem]:
        return list(quiz_items)

    return build_container(
        settings,
        conversation_store=InMemoryConversationStore(),
        course_store=course_store,
        resumable_backend=InMemoryResumableStreamBackend(),
        completer=completer,
        responder=responder,
        battery_generator=battery,
    )


@pytest.fixture
async def client(container):
    from main import app

    app.state.container = container
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    await container.close()
    del app.state.container
