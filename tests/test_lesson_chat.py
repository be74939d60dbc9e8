"""Tests for agents/lesson_chat.py — preambles, history assembly and model calls."""

from unittest.mock import patch

import pytest
from pydantic_ai.messages import (
    ModelMessage,
    ModelRequest,
    ModelResponse,
    SystemPromptPart,
    TextPart,
    UserPromptPart,
)
from pydantic_ai.models.function import AgentInfo, FunctionModel
from pydantic_ai.models.test import TestModel

from agents.lesson_chat import (
    SEED_USER_TEXT,
    LessonTurn,
    build_message_history,
    generate_reply,
    stream_reply,
)
from config.prompts.lesson import FIRST_TURN_PREAMBLE
from errors import ModelNotConfiguredError, ModelTransportError
from models.conversation import Turn
from models.quiz import QuestionType, QuizItem
from services.control_tokens import encode_auto_intro, encode_quiz_answer, encode_quiz_block

CONTENT = {"course": {"title": "Python"}, "session": {"title": "Loops"}, "content": "for/while"}


def _item(**overrides) -> QuizItem:
    data = {"id": "q1", "question": "?", "choices": ["a", "b"], "correct_index": 1, "explanation": "b."}
    data.update(overrides)
    return QuizItem(**data)


# ── LessonTurn.prepare ────────────────────────────────────────


def test_first_turn_gets_first_turn_preamble():
    turn = LessonTurn.prepare(CONTENT, [], encode_auto_intro())
    assert turn.first_turn_preamble == FIRST_TURN_PREAMBLE
    assert turn.grading_preamble is None
    assert "First turn behavior" in turn.system_instruction()
    assert '"type":"complete"' in turn.system_instruction()


def test_later_turn_has_no_preamble():
    history = [Turn.assistant("Hi!"), Turn.user("Ready")]
    turn = LessonTurn.prepare(CONTENT, history, "What is a loop?")
    assert turn.first_turn_preamble is None
    assert turn.grading_preamble is None


def test_choice_answer_gets_grading_preamble():
    token = encode_quiz_answer("q1", _item(), selected_index=0)
    turn = LessonTurn.prepare(CONTENT, [Turn.assistant("x")], token)
    assert turn.envelope.is_quiz_answer
    assert "selected option index 0" in turn.grading_preamble
    assert "correct index is 1" in turn.grading_preamble


def test_free_text_answer_gets_semantic_preamble():
    item = _item(question_type=QuestionType.FILL_IN_THE_BLANK)
    token = encode_quiz_answer("q1", item, text_answer="range")
    turn = LessonTurn.prepare(CONTENT, [], token)
    assert '"range"' in turn.grading_preamble
    assert "semantically" in turn.grading_preamble


def test_quiz_answer_on_empty_history_skips_first_turn_preamble():
    token = encode_quiz_answer("q1", _item(), selected_index=1)
    turn = LessonTurn.prepare(CONTENT, [], token)
    assert turn.first_turn_preamble is None


def test_caller_preambles_win():
    turn = LessonTurn.prepare(CONTENT, [], "hi", grading_preamble="G", first_turn_preamble="F")
    assert turn.system_instruction().endswith("GF")


def test_grading_preamble_is_one_shot():
    token = encode_quiz_answer("q1", _item(), selected_index=0)
    graded = LessonTurn.prepare(CONTENT, [Turn.assistant("x")], token)
    history = [Turn.assistant("x"), Turn.user(token), Turn.assistant("Not quite.")]
    following = LessonTurn.prepare(CONTENT, history, "ok")
    assert "Quiz grading context" in graded.system_instruction()
    assert "Quiz grading context" not in following.system_instruction()


def test_auto_intro_prompt_becomes_seed():
    turn = LessonTurn.prepare(CONTENT, [], encode_auto_intro())
    assert turn.model_prompt() == SEED_USER_TEXT


# ── build_message_history ─────────────────────────────────────


def test_history_starts_with_system_prompt():
    messages = build_message_history("SYS", [])
    assert len(messages) == 1
    assert isinstance(messages[0].parts[0], SystemPromptPart)
    assert messages[0].parts[0].content == "SYS"


def test_history_replaces_leading_auto_intro_and_decodes_quiz_blocks():
    block = encode_quiz_block(_item())
    history = [
        Turn.user(encode_auto_intro()),
        Turn.assistant("Welcome"),
        Turn.assistant(block),
        Turn.user("B?"),
    ]
    messages = build_message_history("SYS", history)
    assert isinstance(messages[1], ModelRequest)
    assert messages[1].parts[0].content == SEED_USER_TEXT
    assert isinstance(messages[2], ModelResponse)
    assert [p.content for p in messages[2].parts] == ["Welcome", block[len("QUIZ::"):]]
    assert isinstance(messages[3], ModelRequest)
    assert messages[3].parts[0].content == "B?"


def test_history_keeps_quiz_answer_tokens():
    token = encode_quiz_answer("q1", _item(), selected_index=0)
    messages = build_message_history("SYS", [Turn.assistant("Q"), Turn.user(token)])
    assert messages[-1].parts[0].content == token


# ── generate_reply / stream_reply ─────────────────────────────


@pytest.mark.asyncio
async def test_generate_reply_with_test_model():
    model = TestModel(custom_output_text="Welcome to Loops!")
    with patch("agents.lesson_chat.get_default_model", return_value=model):
        reply = await generate_reply(LessonTurn.prepare(CONTENT, [], encode_auto_intro()))
    assert reply == "Welcome to Loops!"


@pytest.mark.asyncio
async def test_generate_reply_sends_seed_and_system_instruction():
    seen: list[list[ModelMessage]] = []

    def respond(messages: list[ModelMessage], info: AgentInfo) -> ModelResponse:
        seen.append(messages)
        return ModelResponse(parts=[TextPart(content="ok")])

    with patch("agents.lesson_chat.get_default_model", return_value=FunctionModel(respond)):
        await generate_reply(LessonTurn.prepare(CONTENT, [], encode_auto_intro()))

    messages = seen[0]
    system = [p for m in messages for p in m.parts if isinstance(p, SystemPromptPart)]
    users = [p for m in messages for p in m.parts if isinstance(p, UserPromptPart)]
    assert "First turn behavior" in system[0].content
    assert [u.content for u in users] == [SEED_USER_TEXT]


@pytest.mark.asyncio
async def test_generate_reply_wraps_transport_errors():
    def explode(messages, info):
        raise RuntimeError("connection reset")

    with patch("agents.lesson_chat.get_default_model", return_value=FunctionModel(explode)):
        with pytest.raises(ModelTransportError):
            await generate_reply(LessonTurn.prepare(CONTENT, [], "hi"))


@pytest.mark.asyncio
async def test_generate_reply_without_backend():
    with patch("agents.lesson_chat.get_default_model", side_effect=ModelNotConfiguredError()):
        with pytest.raises(ModelNotConfiguredError):
            await generate_reply(LessonTurn.prepare(CONTENT, [], "hi"))


@pytest.mark.asyncio
async def test_stream_reply_yields_deltas():
    async def stream(messages, info):
        for piece in ["Loops ", "repeat ", "code."]:
            yield piece

    with patch("agents.lesson_chat.get_default_model", return_value=FunctionModel(stream_function=stream)):
        deltas = [d async for d in stream_reply(LessonTurn.prepare(CONTENT, [], "hi"))]
    assert "".join(deltas) == "Loops repeat code."
