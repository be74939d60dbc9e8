"""Session endpoints — stateless turn completion, quiz battery and progress.

Endpoints:
- ``POST /api/sessions/chat``     — one lesson turn, returns ``{reply}``
- ``POST /api/sessions/quiz``     — quiz battery, cached by ``sessionId``
- ``POST /api/sessions/progress`` — progress upsert
- ``POST /api/sessions/complete`` — mark completed, return ``{nextSessionId}``
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Header
from fastapi.responses import JSONResponse

from agents.lesson_chat import LessonTurn
from errors import CollaboratorError, ModelNotConfiguredError, QuizGenerationError
from models.progress import ProgressUpdate
from models.quiz import QuizBattery
from models.request import (
    CompleteSessionRequest,
    CompleteSessionResponse,
    ErrorResponse,
    ProgressRequest,
    QuizBatteryRequest,
    SessionChatRequest,
    SessionChatResponse,
)
from models.session import build_rich_session_content
from services.container import ServiceContainer, get_container
from services.course_store import DEFAULT_USER_ID

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/sessions", tags=["sessions"])

CHAT_FAILED = "Failed to generate response"
QUIZ_FAILED = "Failed to generate quiz"


def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=ErrorResponse(error=message).model_dump())


def _numeric_or_none(value: object) -> float | None:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    return None


@router.post("/chat", response_model=SessionChatResponse)
async def session_chat(
    req: SessionChatRequest,
    container: ServiceContainer = Depends(get_container),
):
    """Run one lesson turn against the caller-supplied history."""
    if req.session_content is None or not req.user_message:
        return error_response(400, "sessionContent and userMessage are required")

    content = build_rich_session_content(
        req.session_content,
        session_title=req.session_title,
        session_type=req.session_type,
        course_title=req.course_title,
        learning_objectives=req.course_learning_objectives,
    )
    turn = LessonTurn.prepare(
        content,
        req.conversation_history,
        req.user_message,
        grading_preamble=req.grading_preamble,
        first_turn_preamble=req.first_turn_preamble,
        emotion_data=req.emotion_data,
    )
    try:
        reply = await container.completer(turn)
    except ModelNotConfiguredError as exc:
        logger.error("[Session] %s", exc)
        return error_response(500, str(exc))
    except Exception:
        logger.exception("[Session] Session chat failed")
        return error_response(500, CHAT_FAILED)
    return SessionChatResponse(reply=reply)


@router.post("/quiz", response_model=QuizBattery)
async def session_quiz(
    req: QuizBatteryRequest,
    container: ServiceContainer = Depends(get_container),
):
    """Return the session's quiz battery, generating it at most once per ``sessionId``."""
    if req.session_content is None or not (req.session_title and req.session_type and req.course_title):
        return error_response(
            400, "sessionContent, sessionTitle, sessionType and courseTitle are required",
        )
    try:
        quizzes = await container.quiz_batteries.get_battery(
            session_id=req.session_id,
            session_content=req.session_content,
            session_title=req.session_title,
            course_title=req.course_title,
        )
    except ModelNotConfiguredError as exc:
        logger.error("[Quiz] %s", exc)
        return error_response(500, str(exc))
    except QuizGenerationError as exc:
        logger.warning("[Quiz] %s", exc)
        return error_response(500, QUIZ_FAILED)
    return QuizBattery(quizzes=quizzes)


@router.post("/progress")
async def session_progress(
    req: ProgressRequest,
    container: ServiceContainer = Depends(get_container),
    user_id: str = Header(DEFAULT_USER_ID, alias="X-User-ID"),
):
    if not req.course_id or not req.session_id:
        return error_response(400, "courseId and sessionId are required")
    update = ProgressUpdate(
        status=req.status,
        time_spent_sec=_numeric_or_none(req.time_spent_sec),
        score=req.score,
    )
    try:
        await container.course_store.report_progress(
            req.course_id, req.session_id, update, user_id=user_id,
        )
    except CollaboratorError as exc:
        logger.warning("[Heartbeat] Progress write failed: %s", exc)
        return error_response(500, "Failed to update progress")
    return {"success": True}


@router.post("/complete", response_model=CompleteSessionResponse)
async def session_complete(
    req: CompleteSessionRequest,
    container: ServiceContainer = Depends(get_container),
    user_id: str = Header(DEFAULT_USER_ID, alias="X-User-ID"),
):
    if not req.course_id or not req.session_id:
        return error_response(400, "courseId and sessionId are required")
    try:
        next_session_id = await container.course_store.resolve_next_session(
            req.course_id, req.session_id, user_id=user_id,
        )
    except CollaboratorError as exc:
        logger.error("[Handoff] Complete failed: %s", exc)
        return error_response(500, "Failed to complete session")
    return CompleteSessionResponse(next_session_id=next_session_id)
