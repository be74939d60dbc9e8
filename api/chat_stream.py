"""Streaming chat — Vercel AI SDK UI message stream v1 over SSE.

Endpoints:
- ``POST /api/chat``                             — one streamed lesson turn
- ``GET  /api/chat/{conversation_id}/stream``    — resume the in-flight stream (204 if none)
- ``GET  /api/chat/{conversation_id}/messages``  — rendered transcript
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Response
from starlette.responses import StreamingResponse

from agents.provider import is_model_configured
from api.sessions import error_response
from errors import ModelNotConfiguredError
from models.conversation import Turn
from models.request import StreamChatRequest
from models.session import CourseInfo, SessionDescriptor
from services.container import ServiceContainer, get_container
from services.datastream import STREAM_HEADERS
from services.stream_manager import StreamTurnRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/chat", tags=["chat"])


async def _resolve_session(
    req: StreamChatRequest, container: ServiceContainer,
) -> tuple[SessionDescriptor | None, CourseInfo | None]:
    """Prefer the descriptor in the body, else look it up in the course store."""
    session = req.session
    course_id = req.course_id or (session.course_id if session else None)
    course = await container.course_store.get_course(course_id) if course_id else None
    if session is None and course_id and req.session_id:
        session = await container.course_store.get_session(course_id, req.session_id)
    return session, course


@router.post("")
async def chat_stream(
    req: StreamChatRequest,
    container: ServiceContainer = Depends(get_container),
):
    """Stream one lesson turn.  The first data event carries the stream handle."""
    if not req.message.text:
        return error_response(400, "message.text is required")
    if not is_model_configured(container.settings):
        logger.error("[Stream] %s", ModelNotConfiguredError())
        return error_response(500, str(ModelNotConfiguredError()))

    session, course = await _resolve_session(req, container)
    session_content = session.rich_content(course) if session else None

    handle, chunks = await container.stream_manager.start_turn(
        StreamTurnRequest(
            conversation_id=req.conversation_id,
            text=req.message.text,
            session_content=session_content,
            message_id=req.message.id,
            quiz_enabled=bool(session and session.is_quiz),
            course_id=course.id if course else req.course_id,
            session_id=session.id if session else req.session_id,
        )
    )
    headers = {**STREAM_HEADERS, "x-stream-id": handle.stream_id}
    return StreamingResponse(chunks, media_type="text/event-stream", headers=headers)


@router.get("/{conversation_id}/stream")
async def resume_stream(
    conversation_id: str,
    container: ServiceContainer = Depends(get_container),
):
    """Re-attach to the most recent in-flight stream, replaying from its start."""
    chunks = await container.stream_manager.resume(conversation_id)
    if chunks is None:
        return Response(status_code=204)
    return StreamingResponse(chunks, media_type="text/event-stream", headers=STREAM_HEADERS)


@router.get("/{conversation_id}/messages", response_model=list[Turn])
async def conversation_messages(
    conversation_id: str,
    container: ServiceContainer = Depends(get_container),
):
    conversation = await container.conversation_store.get(conversation_id)
    if conversation is None:
        return []
    return conversation.visible_turns()
