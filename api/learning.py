"""Learning-session orchestration — server-held state machine per (course, session).

Every route answers with the session view: state, rendered transcript,
batch quiz state, time progress and, once completed, the handoff target.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Header, Response

from api.sessions import error_response
from errors import (
    ModelNotConfiguredError,
    SessionNotFoundError,
    SessionNotLoadedError,
    TurnInFlightError,
)
from models.request import LearnerMessageRequest, LearningSessionView, QuizAnswerRequest
from services.container import ServiceContainer, get_container
from services.course_store import DEFAULT_USER_ID

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/learning", tags=["learning"])


@router.post("/{course_id}/{session_id}/load", response_model=LearningSessionView)
async def load_session(
    course_id: str,
    session_id: str,
    container: ServiceContainer = Depends(get_container),
    user_id: str = Header(DEFAULT_USER_ID, alias="X-User-ID"),
):
    """Open the session and run its first step (battery load or auto-intro)."""
    try:
        session = await container.sessions.open(course_id, session_id, user_id=user_id)
    except SessionNotFoundError as exc:
        return error_response(404, str(exc))
    try:
        await session.load()
    except TurnInFlightError as exc:
        return error_response(409, str(exc))
    except ModelNotConfiguredError as exc:
        logger.error("[Session] %s", exc)
        return error_response(500, str(exc))
    return session.view()


@router.get("/{course_id}/{session_id}", response_model=LearningSessionView)
async def get_session_view(
    course_id: str,
    session_id: str,
    container: ServiceContainer = Depends(get_container),
    user_id: str = Header(DEFAULT_USER_ID, alias="X-User-ID"),
):
    try:
        session = container.sessions.get(course_id, session_id, user_id=user_id)
    except SessionNotLoadedError as exc:
        return error_response(404, str(exc))
    return session.view()


@router.post("/{course_id}/{session_id}/messages", response_model=LearningSessionView)
async def send_message(
    course_id: str,
    session_id: str,
    req: LearnerMessageRequest,
    container: ServiceContainer = Depends(get_container),
    user_id: str = Header(DEFAULT_USER_ID, alias="X-User-ID"),
):
    if not req.text.strip():
        return error_response(400, "text is required")
    try:
        session = container.sessions.get(course_id, session_id, user_id=user_id)
        await session.send_message(req.text)
    except SessionNotLoadedError as exc:
        return error_response(404, str(exc))
    except TurnInFlightError as exc:
        return error_response(409, str(exc))
    except ModelNotConfiguredError as exc:
        logger.error("[Session] %s", exc)
        return error_response(500, str(exc))
    return session.view()


@router.post("/{course_id}/{session_id}/quiz/answer", response_model=LearningSessionView)
async def answer_quiz(
    course_id: str,
    session_id: str,
    req: QuizAnswerRequest,
    container: ServiceContainer = Depends(get_container),
    user_id: str = Header(DEFAULT_USER_ID, alias="X-User-ID"),
):
    """Answer the current battery item, or an inline quiz when ``quizId`` is given."""
    if req.selected_index is None and not req.text_answer:
        return error_response(400, "selectedIndex or textAnswer is required")
    try:
        session = container.sessions.get(course_id, session_id, user_id=user_id)
        if req.quiz_id is not None:
            await session.answer_inline_quiz(
                req.quiz_id, selected_index=req.selected_index, text_answer=req.text_answer,
            )
        else:
            session.answer_quiz(selected_index=req.selected_index, text_answer=req.text_answer)
    except SessionNotLoadedError as exc:
        return error_response(404, str(exc))
    except TurnInFlightError as exc:
        return error_response(409, str(exc))
    except ModelNotConfiguredError as exc:
        logger.error("[Quiz] %s", exc)
        return error_response(500, str(exc))
    except KeyError:
        return error_response(404, f"Quiz '{req.quiz_id}' not found")
    except ValueError as exc:
        return error_response(400, str(exc))
    return session.view()


@router.post("/{course_id}/{session_id}/quiz/next", response_model=LearningSessionView)
async def next_question(
    course_id: str,
    session_id: str,
    container: ServiceContainer = Depends(get_container),
    user_id: str = Header(DEFAULT_USER_ID, alias="X-User-ID"),
):
    try:
        session = container.sessions.get(course_id, session_id, user_id=user_id)
        await session.next_question()
    except SessionNotLoadedError as exc:
        return error_response(404, str(exc))
    except ValueError as exc:
        return error_response(400, str(exc))
    return session.view()


@router.delete("/{course_id}/{session_id}", status_code=204)
async def leave_session(
    course_id: str,
    session_id: str,
    container: ServiceContainer = Depends(get_container),
    user_id: str = Header(DEFAULT_USER_ID, alias="X-User-ID"),
):
    """Stop the heartbeat and drop the session; an in-flight turn is abandoned."""
    container.sessions.leave(course_id, session_id, user_id=user_id)
    return Response(status_code=204)
