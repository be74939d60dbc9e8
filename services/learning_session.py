"""LearningSession — the turn-taking state machine of one learning session.

States::

    IDLE → AWAITING_FIRST_TURN → (IN_DIALOGUE ⇄ AWAITING_MODEL_REPLY) → COMPLETING → COMPLETED

Every model output goes through :func:`classify_reply` with strict
precedence (completion > quiz > plain).  Completion is one-way and
idempotent.  A failed turn appends one generic fallback message and returns
to ``IN_DIALOGUE``; a missing model backend is raised to the caller and
leaves the transcript untouched.  The heartbeat and background grading run
detached.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from enum import Enum

from agents.lesson_chat import LessonTurn, generate_reply
from errors import (
    LessonAgentError,
    ModelNotConfiguredError,
    QuizGenerationError,
    SessionNotLoadedError,
    TurnInFlightError,
)
from models.conversation import Turn
from models.errors import CONVERSATION_FALLBACK_TEXT
from models.quiz import QuizItem, QuizRun, local_feedback
from models.reply import CompletionReply
from models.request import HandoffView, LearningSessionView, QuizView
from models.session import CourseInfo, SessionDescriptor
from services.background import fire_and_forget
from services.completion import CompletionHandoff, HandoffResult
from services.control_tokens import (
    decode_quiz_block,
    encode_auto_intro,
    encode_quiz_answer,
    visible_transcript,
)
from services.course_store import DEFAULT_USER_ID
from services.progress_heartbeat import ProgressHeartbeat
from services.reply_classifier import classify_reply, reply_turns

logger = logging.getLogger(__name__)

TurnCompleter = Callable[[LessonTurn], Awaitable[str]]
BatteryProvider = Callable[[SessionDescriptor, CourseInfo], Awaitable[list[QuizItem]]]

FREE_TEXT_RECEIVED = "Answer received."


class SessionState(str, Enum):
    IDLE = "idle"
    AWAITING_FIRST_TURN = "awaiting_first_turn"
    IN_DIALOGUE = "in_dialogue"
    AWAITING_MODEL_REPLY = "awaiting_model_reply"
    COMPLETING = "completing"
    COMPLETED = "completed"


_FINAL_STATES = (SessionState.COMPLETING, SessionState.COMPLETED)


class LearningSession:
    """Server-held conversation for one (course, session) view."""

    def __init__(
        self,
        course: CourseInfo,
        session: SessionDescriptor,
        *,
        heartbeat: ProgressHeartbeat,
        handoff: CompletionHandoff,
        battery_provider: BatteryProvider,
        completer: TurnCompleter = generate_reply,
        user_id: str = DEFAULT_USER_ID,
    ) -> None:
        self.course = course
        self.session = session
        self.user_id = user_id
        self.state = SessionState.IDLE
        self.transcript: list[Turn] = []
        self.auto_started = False
        self.quiz_run: QuizRun | None = None
        self.quiz_feedback: str | None = None
        self.handoff_result: HandoffResult | None = None
        self._heartbeat = heartbeat
        self._handoff = handoff
        self._battery_provider = battery_provider
        self._completer = completer
        self._turn_lock = asyncio.Lock()

    # ── Properties ────────────────────────────────────────────

    @property
    def batch_quiz(self) -> bool:
        return self.quiz_run is not None

    @property
    def quiz_enabled(self) -> bool:
        """Inline quiz blocks are only shown while a quiz battery is loaded."""
        return self.batch_quiz

    @property
    def completed(self) -> bool:
        return self.state in _FINAL_STATES

    @property
    def turn_in_flight(self) -> bool:
        return self._turn_lock.locked()

    @property
    def heartbeat(self) -> ProgressHeartbeat:
        return self._heartbeat

    def session_content(self) -> dict:
        return self.session.rich_content(self.course)

    def visible_transcript(self) -> list[Turn]:
        return visible_transcript(self.transcript)

    # ── Load ──────────────────────────────────────────────────

    async def load(self) -> None:
        """Idle → AwaitingFirstTurn.  Loads the battery or sends the auto-intro.

        Calling it again on a loaded session is a no-op.
        """
        if self.state != SessionState.IDLE:
            return
        self.state = SessionState.AWAITING_FIRST_TURN

        if self.session.is_quiz:
            try:
                items = await self._battery_provider(self.session, self.course)
            except (QuizGenerationError, ModelNotConfiguredError) as exc:
                logger.warning(
                    "[Session] Quiz battery unavailable for %s, falling back to chat: %s",
                    self.session.id, exc,
                )
            else:
                self.quiz_run = QuizRun(items=items)
                self._heartbeat.attach_quiz(self.quiz_run)

        self._heartbeat.start()
        if self.batch_quiz or self.transcript:
            self.state = SessionState.IN_DIALOGUE
            return
        try:
            await self._auto_intro()
        except ModelNotConfiguredError:
            self._heartbeat.stop()
            self.auto_started = False
            self.state = SessionState.IDLE
            raise

    async def _auto_intro(self) -> None:
        if self.auto_started:
            return
        self.auto_started = True
        logger.info("[Session] Auto-intro for %s/%s", self.course.id, self.session.id)
        await self._dispatch(encode_auto_intro())

    # ── Dialogue ──────────────────────────────────────────────

    async def send_message(self, text: str) -> None:
        """Forward one learner turn with the full history.

        Raises:
            SessionNotLoadedError: ``load()`` has not run.
            TurnInFlightError: The previous reply is still pending.
        """
        self._require_loaded()
        text = text.strip()
        if not text:
            return
        if self.completed:
            logger.info("[Session] Ignoring message after completion of %s", self.session.id)
            return
        await self._dispatch(text)

    async def answer_inline_quiz(
        self,
        quiz_id: str,
        *,
        selected_index: int | None = None,
        text_answer: str | None = None,
    ) -> None:
        """Send a hidden quiz-answer turn for an inline quiz shown in the transcript.

        Raises:
            KeyError: No inline quiz with *quiz_id* is in the transcript.
        """
        self._require_loaded()
        item = self._find_inline_quiz(quiz_id)
        if item is None:
            raise KeyError(quiz_id)
        await self._dispatch(
            encode_quiz_answer(quiz_id, item, selected_index=selected_index, text_answer=text_answer)
        )

    async def _dispatch(self, user_text: str) -> None:
        if self._turn_lock.locked():
            raise TurnInFlightError("A reply is still pending for this session")
        async with self._turn_lock:
            history = list(self.transcript)
            turn = LessonTurn.prepare(self.session_content(), history, user_text)
            self.transcript.append(Turn.user(user_text))
            self.state = SessionState.AWAITING_MODEL_REPLY
            try:
                raw = await self._completer(turn)
            except ModelNotConfiguredError:
                self.transcript.pop()
                self.state = SessionState.IN_DIALOGUE
                raise
            except LessonAgentError as exc:
                logger.warning("[Session] Turn failed for %s: %s", self.session.id, exc)
                self._fail_turn()
                return
            except Exception:
                logger.exception("[Session] Turn failed for %s", self.session.id)
                self._fail_turn()
                return
            await self.apply_model_reply(raw)

    def _fail_turn(self) -> None:
        self.transcript.append(Turn.assistant(CONVERSATION_FALLBACK_TEXT))
        if not self.completed:
            self.state = SessionState.IN_DIALOGUE

    async def apply_model_reply(self, raw: str) -> None:
        """Interpret one model output: completion, else quiz, else plain."""
        reply = classify_reply(raw)
        if isinstance(reply, CompletionReply):
            await self._complete(reply.summary)
            return
        self.transcript.extend(reply_turns(reply, quiz_enabled=self.quiz_enabled))
        if not self.completed:
            self.state = SessionState.IN_DIALOGUE

    def _find_inline_quiz(self, quiz_id: str) -> QuizItem | None:
        for turn in reversed(self.transcript):
            item = decode_quiz_block(turn.content)
            if item is not None and item.id == quiz_id:
                return item
        return None

    # ── Batch quiz ────────────────────────────────────────────

    def answer_quiz(self, *, selected_index: int | None = None, text_answer: str | None = None) -> str:
        """Score the current battery item locally and return the feedback text.

        A grading request goes to the model in the background; its result
        is not awaited.
        """
        run = self._require_quiz()
        item = run.current_item
        if item is None:
            raise ValueError("Quiz is finished")

        first_answer = not run.current_answered
        run.record_answer(selected_index)
        if item.question_type.is_free_text:
            self.quiz_feedback = item.explanation or FREE_TEXT_RECEIVED
        else:
            self.quiz_feedback = local_feedback(item, run.selected_index)

        if first_answer:
            token = encode_quiz_answer(
                run.item_token_id(), item, selected_index=selected_index, text_answer=text_answer,
            )
            fire_and_forget(self._grade(token), name=f"quiz-grade:{self.session.id}:{run.current_index}")
        return self.quiz_feedback

    async def _grade(self, token: str) -> None:
        turn = LessonTurn.prepare(self.session_content(), [], token)
        await self._completer(turn)
        logger.debug("[Quiz] Background grading done for %s", self.session.id)

    async def next_question(self) -> None:
        """Advance the battery; an exhausted run completes the session."""
        run = self._require_quiz()
        run.advance()
        self.quiz_feedback = None
        if not run.finished:
            self._heartbeat.notify_quiz_index()
            return
        await self._complete(f"Quiz complete! You scored {run.correct_count}/{run.total}.")

    def _require_quiz(self) -> QuizRun:
        self._require_loaded()
        if self.quiz_run is None:
            raise ValueError("This session has no quiz battery")
        return self.quiz_run

    # ── Completion ────────────────────────────────────────────

    async def _complete(self, summary: str | None) -> None:
        if self.completed:
            logger.info("[Session] Ignoring repeated completion of %s", self.session.id)
            return
        self.state = SessionState.COMPLETING
        if summary:
            self.transcript.append(Turn.assistant(summary))
        self._heartbeat.stop()
        score = self.quiz_run.score_pct if self.quiz_run is not None else None
        self.handoff_result = await self._handoff.complete(
            self.course.id,
            self.session.id,
            time_spent_sec=self._heartbeat.elapsed_sec,
            score=score,
            user_id=self.user_id,
        )
        self.state = SessionState.COMPLETED

    # ── Lifecycle ─────────────────────────────────────────────

    def leave(self) -> None:
        """Stop side effects.  An in-flight turn is abandoned, not cancelled."""
        self._heartbeat.stop()
        logger.info("[Session] Left %s/%s", self.course.id, self.session.id)

    def _require_loaded(self) -> None:
        if self.state == SessionState.IDLE:
            raise SessionNotLoadedError(self.course.id, self.session.id)

    def view(self) -> LearningSessionView:
        quiz = None
        if self.quiz_run is not None:
            run = self.quiz_run
            quiz = QuizView(
                items=run.items,
                current_index=run.current_index,
                correct_count=run.correct_count,
                wrong_count=run.wrong_count,
                progress_pct=run.progress_pct,
                finished=run.finished,
                selected_index=run.selected_index,
                last_answer_correct=run.last_answer_correct,
                feedback=self.quiz_feedback,
            )
        handoff = None
        if self.handoff_result is not None:
            handoff = HandoffView(
                next_session_id=self.handoff_result.next_session_id,
                navigate_to=self.handoff_result.navigate_to,
            )
        return LearningSessionView(
            course_id=self.course.id,
            session_id=self.session.id,
            state=self.state.value,
            transcript=self.visible_transcript(),
            quiz=quiz,
            time_progress_pct=self._heartbeat.time_progress_pct(self.session.estimated_duration),
            handoff=handoff,
        )
