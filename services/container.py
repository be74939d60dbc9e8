"""Service container — the shared objects of one running app.

Built once in the FastAPI lifespan and stored on ``app.state.container``;
routes reach it through the :func:`get_container` dependency.  Tests build
their own container with in-memory stores and model doubles.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from fastapi import Request

from agents.lesson_chat import generate_reply, stream_reply
from config.settings import Settings, get_settings
from models.session import CourseInfo, SessionDescriptor
from services.background import drain
from services.broadcast import ProgressBroadcaster
from services.completion import CompletionHandoff
from services.conversation_store import (
    ConversationStore,
    RedisConversationStore,
    create_conversation_store,
)
from services.course_store import CourseStore, create_course_store
from services.learning_session import LearningSession, TurnCompleter
from services.progress_heartbeat import ProgressHeartbeat
from services.quiz_battery import BatteryGenerator, QuizBatteryService
from services.quiz_cache import QuizBatteryCache
from services.resumable_stream import ResumableStreamBackend, create_resumable_backend
from services.session_registry import LearningSessionRegistry
from services.stream_manager import Responder, StreamDeliveryManager

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    settings: Settings
    conversation_store: ConversationStore
    course_store: CourseStore
    resumable_backend: ResumableStreamBackend | None
    stream_manager: StreamDeliveryManager
    quiz_batteries: QuizBatteryService
    broadcaster: ProgressBroadcaster
    handoff: CompletionHandoff
    completer: TurnCompleter
    sessions: LearningSessionRegistry = field(init=False)

    def __post_init__(self) -> None:
        self.sessions = LearningSessionRegistry(
            self.course_store,
            self.new_learning_session,
            idle_ttl=self.settings.session_idle_ttl,
            completed_ttl=self.settings.completed_session_ttl,
        )

    def new_learning_session(
        self, course: CourseInfo, session: SessionDescriptor, user_id: str,
    ) -> LearningSession:
        heartbeat = ProgressHeartbeat(
            self.course_store,
            course.id,
            session.id,
            user_id=user_id,
            interval=self.settings.heartbeat_interval,
            tick=self.settings.heartbeat_tick,
        )
        return LearningSession(
            course,
            session,
            heartbeat=heartbeat,
            handoff=self.handoff,
            battery_provider=self.quiz_batteries.for_session,
            completer=self.completer,
            user_id=user_id,
        )

    async def start(self) -> None:
        await self.course_store.start()
        if isinstance(self.conversation_store, RedisConversationStore):
            if await self.conversation_store.ping():
                logger.info("Redis connection verified")
            else:
                logger.warning("Redis connection failed, conversations may not persist")

    async def close(self) -> None:
        self.sessions.close_all()
        await self.stream_manager.shutdown()
        await drain()
        if self.resumable_backend is not None:
            await self.resumable_backend.close()
        await self.conversation_store.close()
        await self.course_store.close()


def build_container(
    settings: Settings | None = None,
    *,
    conversation_store: ConversationStore | None = None,
    course_store: CourseStore | None = None,
    resumable_backend: ResumableStreamBackend | None = None,
    completer: TurnCompleter = generate_reply,
    responder: Responder = stream_reply,
    battery_generator: BatteryGenerator | None = None,
) -> ServiceContainer:
    """Wire the service graph; any collaborator can be replaced."""
    settings = settings or get_settings()
    conversation_store = conversation_store or create_conversation_store(settings)
    course_store = course_store or create_course_store(settings)
    if resumable_backend is None:
        resumable_backend = create_resumable_backend(settings)

    broadcaster = ProgressBroadcaster()
    batteries = QuizBatteryService(QuizBatteryCache(), battery_size=settings.quiz_battery_size)
    if battery_generator is not None:
        batteries = QuizBatteryService(
            batteries.cache, generator=battery_generator, battery_size=settings.quiz_battery_size,
        )

    return ServiceContainer(
        settings=settings,
        conversation_store=conversation_store,
        course_store=course_store,
        resumable_backend=resumable_backend,
        stream_manager=StreamDeliveryManager(
            conversation_store,
            resumable_backend,
            responder=responder,
            keepalive_interval=settings.sse_keepalive_interval,
        ),
        quiz_batteries=batteries,
        broadcaster=broadcaster,
        handoff=CompletionHandoff(course_store, broadcaster),
        completer=completer,
    )


def get_container(request: Request) -> ServiceContainer:
    """FastAPI dependency."""
    return request.app.state.container
