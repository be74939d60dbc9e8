"""Tests for services/control_tokens.py — encode, classify, hide."""

import json

from models.control import QUIZ_ANSWER_SENTINEL, ControlKind
from models.conversation import Turn
from models.quiz import QuestionType, QuizItem
from services.control_tokens import (
    classify,
    decode_quiz_block,
    encode_auto_intro,
    encode_quiz_answer,
    encode_quiz_block,
    is_control_text,
    visible_transcript,
)


def _item() -> QuizItem:
    return QuizItem(
        id="q1",
        question="2 + 2?",
        choices=["3", "4", "5"],
        correct_index=1,
        explanation="Basic addition.",
    )


# ── classify ──────────────────────────────────────────────────


def test_plain_text():
    env = classify("What is a variable?")
    assert env.kind == ControlKind.PLAIN
    assert not env.is_control
    assert env.payload is None


def test_auto_intro():
    env = classify(encode_auto_intro())
    assert env.is_auto_intro
    assert encode_auto_intro() == "<auto_intro>{}"


def test_auto_intro_with_bad_body_degrades_to_plain():
    env = classify("<auto_intro>{not json")
    assert env.kind == ControlKind.PLAIN


def test_quiz_answer_round_trip():
    item = _item()
    env = classify(encode_quiz_answer("q1", item, selected_index=2))
    assert env.is_quiz_answer
    assert env.payload.id == "q1"
    assert env.payload.selected_index == 2
    assert env.payload.quiz == item
    assert env.payload.intent == "quiz_answer"


def test_quiz_answer_free_text_round_trip():
    item = QuizItem(id="q7", question="Define a loop.", question_type=QuestionType.CASE_BASED)
    env = classify(encode_quiz_answer("q7", item, text_answer="Repeats code"))
    assert env.payload.text_answer == "Repeats code"
    assert env.payload.selected_index is None
    assert env.payload.quiz.question_type == QuestionType.CASE_BASED


def test_quiz_answer_wire_shape_is_camel_case():
    token = encode_quiz_answer("q1", _item(), selected_index=0)
    body = json.loads(token[len(QUIZ_ANSWER_SENTINEL):])
    assert body["selectedIndex"] == 0
    assert body["quiz"]["correctIndex"] == 1
    assert "textAnswer" not in body


def test_quiz_answer_bad_json_degrades_to_plain():
    env = classify('<quiz_answer>{"id": "q1", "selectedIndex": ')
    assert env.kind == ControlKind.PLAIN
    assert env.text.startswith("<quiz_answer>")


def test_quiz_answer_missing_quiz_degrades_to_plain():
    env = classify('<quiz_answer>{"id": "q1", "selectedIndex": 1}')
    assert env.kind == ControlKind.PLAIN


def test_sentinel_must_be_prefix():
    assert classify("hello <auto_intro>{}").kind == ControlKind.PLAIN


# ── Rendering ─────────────────────────────────────────────────


def test_visible_transcript_hides_every_sentinel_turn():
    turns = [
        Turn.user(encode_auto_intro()),
        Turn.assistant("Welcome!"),
        Turn.user("<quiz_answer>{broken"),
        Turn.user(encode_quiz_answer("q1", _item(), selected_index=1)),
        Turn.assistant("Correct!"),
    ]
    visible = visible_transcript(turns)
    assert [t.content for t in visible] == ["Welcome!", "Correct!"]
    assert not any(is_control_text(t.content) for t in visible)


def test_quiz_block_round_trip():
    item = _item()
    block = encode_quiz_block(item)
    assert block.startswith("QUIZ::")
    assert json.loads(block[len("QUIZ::"):])["type"] == "quiz"
    assert decode_quiz_block(block) == item


def test_decode_quiz_block_rejects_other_text():
    assert decode_quiz_block("Just prose") is None
    assert decode_quiz_block("QUIZ::{oops") is None
