"""Streaming delivery — one detached producer per lesson turn, any number of readers.

For every turn:

1. a fresh stream id is minted and recorded against the conversation, and
   the id is registered with the stream channel, all before the model call;
2. a producer task runs the model, encodes SSE chunks into the channel and,
   when it ends for any reason, persists the turn set exactly once;
3. the HTTP response reads the channel, so a client that drops can re-attach
   through :meth:`StreamDeliveryManager.resume`.

Without a resumable backend the channel is a private in-memory buffer: the
turn still streams, but :meth:`resume` has nothing to offer.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import uuid
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from typing import Any

from agents.lesson_chat import LessonTurn, stream_reply
from errors import ModelNotConfiguredError
from models.conversation import Turn
from models.errors import STREAM_FALLBACK_TEXT, ErrorCode, classify_stream_error, format_error
from services.conversation_store import ConversationStore
from services.datastream import KEEPALIVE, DataStreamEncoder, is_terminal
from services.reply_classifier import classify_reply, reply_turns
from services.resumable_stream import InMemoryResumableStreamBackend, ResumableStreamBackend

logger = logging.getLogger(__name__)

Responder = Callable[[LessonTurn], AsyncIterator[str]]


def generate_stream_id() -> str:
    return f"stream-{uuid.uuid4().hex[:12]}"


@dataclass(frozen=True)
class StreamHandle:
    stream_id: str
    conversation_id: str


@dataclass
class StreamTurnRequest:
    """One learner turn on the streaming path."""

    conversation_id: str
    text: str
    session_content: Any
    message_id: str | None = None
    quiz_enabled: bool = False
    course_id: str | None = None
    session_id: str | None = None


class StreamDeliveryManager:
    """Owns producer tasks and the stream channel for the streaming chat path."""

    def __init__(
        self,
        store: ConversationStore,
        backend: ResumableStreamBackend | None,
        *,
        responder: Responder = stream_reply,
        keepalive_interval: float = 15.0,
    ) -> None:
        self._store = store
        self._resumable = backend is not None
        self._channel: ResumableStreamBackend = backend or InMemoryResumableStreamBackend(ttl_seconds=0)
        self._responder = responder
        self._keepalive_interval = keepalive_interval
        self._producers: dict[str, asyncio.Task[None]] = {}

    @property
    def resumable(self) -> bool:
        return self._resumable

    def producer_for(self, conversation_id: str) -> asyncio.Task[None] | None:
        return self._producers.get(conversation_id)

    # ── Public API ────────────────────────────────────────────

    async def start_turn(self, request: StreamTurnRequest) -> tuple[StreamHandle, AsyncIterator[str]]:
        """Start one turn and return its handle plus the SSE chunk iterator."""
        handle = StreamHandle(generate_stream_id(), request.conversation_id)

        conversation = await self._store.get_or_create(
            request.conversation_id, course_id=request.course_id, session_id=request.session_id,
        )
        history = list(conversation.turns)
        conversation.record_stream(handle.stream_id)
        await self._store.save(conversation)
        await self._channel.create(handle.stream_id)

        self._supersede(request.conversation_id)

        turn = LessonTurn.prepare(request.session_content, history, request.text)
        user_turn = Turn.user(request.text)
        if request.message_id:
            user_turn.id = request.message_id

        chunks = self._produce(handle, turn, user_turn, quiz_enabled=request.quiz_enabled)
        task = asyncio.create_task(self._pump(handle, chunks), name=f"stream:{handle.stream_id}")
        self._producers[request.conversation_id] = task
        logger.info(
            "[Stream] Started %s for %s (resumable=%s)",
            handle.stream_id, handle.conversation_id, self._resumable,
        )
        return handle, self._with_keepalive(self._channel.read(handle.stream_id))

    async def resume(self, conversation_id: str) -> AsyncIterator[str] | None:
        """Re-attach to the latest in-flight stream, or ``None`` if there is none."""
        if not self._resumable:
            return None
        conversation = await self._store.get(conversation_id)
        stream_id = conversation.latest_stream_id if conversation else None
        if stream_id is None or not await self._channel.exists(stream_id):
            return None
        if await self._channel.is_finished(stream_id):
            return None
        logger.info("[Stream] Resuming %s for %s", stream_id, conversation_id)
        return self._with_keepalive(self._channel.read(stream_id))

    async def shutdown(self) -> None:
        tasks = [t for t in self._producers.values() if not t.done()]
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._producers.clear()

    # ── Producer ──────────────────────────────────────────────

    def _supersede(self, conversation_id: str) -> None:
        previous = self._producers.pop(conversation_id, None)
        if previous is not None and not previous.done():
            logger.info("[Stream] Superseding open stream of %s", conversation_id)
            previous.cancel()

    async def _pump(self, handle: StreamHandle, chunks: AsyncIterator[str]) -> None:
        last: str | None = None
        try:
            async for chunk in chunks:
                last = chunk
                await self._channel.append(handle.stream_id, chunk)
        except asyncio.CancelledError:
            logger.info("[Stream] %s cancelled", handle.stream_id)
            raise
        except Exception:
            logger.exception("[Stream] Delivery of %s failed", handle.stream_id)
        finally:
            await chunks.aclose()
            if last is None or not is_terminal(last):
                await self._channel.append(handle.stream_id, DataStreamEncoder().finish())
            await self._channel.finish(handle.stream_id)
            if self._producers.get(handle.conversation_id) is asyncio.current_task():
                del self._producers[handle.conversation_id]

    async def _produce(
        self,
        handle: StreamHandle,
        turn: LessonTurn,
        user_turn: Turn,
        *,
        quiz_enabled: bool,
    ) -> AsyncIterator[str]:
        enc = DataStreamEncoder()
        text_id = enc.new_id()
        parts: list[str] = []
        try:
            yield enc.start()
            yield enc.stream_handle(handle.stream_id, handle.conversation_id)
            yield enc.text_start(text_id)
            async for delta in self._responder(turn):
                parts.append(delta)
                yield enc.text_delta(text_id, delta)
            yield enc.text_end(text_id)
            reply = classify_reply("".join(parts))
            yield enc.reply(reply.model_dump(by_alias=True, mode="json"))
        except ModelNotConfiguredError as exc:
            logger.error("[Stream] %s: %s", handle.stream_id, exc)
            yield enc.error(format_error(ErrorCode.MODEL_NOT_CONFIGURED, str(exc)))
        except Exception as exc:
            logger.error("[Stream] %s failed: %s", handle.stream_id, classify_stream_error(str(exc)))
            yield enc.error(STREAM_FALLBACK_TEXT)
        finally:
            await self._persist(handle, turn, user_turn, "".join(parts), quiz_enabled=quiz_enabled)
        yield enc.finish()

    async def _persist(
        self,
        handle: StreamHandle,
        turn: LessonTurn,
        user_turn: Turn,
        text: str,
        *,
        quiz_enabled: bool,
    ) -> None:
        """Store the turns of one invocation.  The auto-intro trigger is never stored."""
        turns: list[Turn] = [] if turn.envelope.is_auto_intro else [user_turn]
        if text.strip():
            turns.extend(reply_turns(classify_reply(text), quiz_enabled=quiz_enabled))
        try:
            conversation = await self._store.get_or_create(handle.conversation_id)
            conversation.append_turns(turns)
            await self._store.save(conversation)
        except Exception:
            logger.exception("[Stream] Persisting %s failed", handle.stream_id)
            return
        logger.info("[Stream] Persisted %d turn(s) for %s", len(turns), handle.stream_id)

    # ── Reader ────────────────────────────────────────────────

    async def _with_keepalive(self, source: AsyncIterator[str]) -> AsyncIterator[str]:
        """Interleave SSE comment lines while *source* is idle."""
        pending: asyncio.Future[str] | None = None
        try:
            while True:
                if pending is None:
                    pending = asyncio.ensure_future(source.__anext__())
                done, _ = await asyncio.wait({pending}, timeout=self._keepalive_interval or None)
                if not done:
                    yield KEEPALIVE
                    continue
                future, pending = pending, None
                try:
                    chunk = future.result()
                except StopAsyncIteration:
                    return
                yield chunk
        finally:
            if pending is not None:
                pending.cancel()
                with contextlib.suppress(asyncio.CancelledError, StopAsyncIteration):
                    await pending
            await source.aclose()
