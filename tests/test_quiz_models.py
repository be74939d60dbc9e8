"""Tests for models/quiz.py — item validation and the batch quiz run."""

import pytest
from pydantic import ValidationError

from models.quiz import QuestionType, QuizItem, QuizRun, local_feedback
from tests.conftest import make_quiz_items

# ── QuizItem ──────────────────────────────────────────────────


def test_true_false_defaults_choices():
    item = QuizItem.model_validate(
        {"id": "q1", "question": "Python is typed?", "questionType": "true-false", "correctIndex": 0}
    )
    assert item.choices == ["True", "False"]


def test_free_text_drops_answer_key():
    item = QuizItem.model_validate(
        {
            "id": "q2",
            "question": "Fill in: x = __",
            "questionType": "fill-in-the-blank",
            "choices": ["a", "b"],
            "correctIndex": 0,
        }
    )
    assert item.choices is None
    assert item.correct_index is None
    assert item.question_type.is_free_text


@pytest.mark.parametrize("choices", [["only"], ["a", "b", "c", "d", "e"], None])
def test_choice_count_enforced(choices):
    with pytest.raises(ValidationError):
        QuizItem(id="q", question="?", choices=choices, correct_index=0)


def test_correct_index_out_of_range():
    with pytest.raises(ValidationError):
        QuizItem(id="q", question="?", choices=["a", "b"], correct_index=2)


def test_to_block_uses_wire_shape():
    block = make_quiz_items(1)[0].to_block()
    assert block["type"] == "quiz"
    assert block["correctIndex"] == 1
    assert block["questionType"] == "multiple-choice"


def test_local_feedback_texts():
    item = QuizItem(id="q", question="?", choices=["x", "y"], correct_index=1, explanation="Y is right.")
    assert local_feedback(item, 1) == "Correct! Y is right."
    assert local_feedback(item, 0) == "Not quite. Correct answer: y. Y is right."


# ── QuizRun ───────────────────────────────────────────────────


def _assert_invariants(run: QuizRun) -> None:
    assert 0 <= run.current_index <= run.total
    answered_current = 1 if run.current_answered else 0
    assert run.correct_count + run.wrong_count <= run.current_index + answered_current
    assert 0 <= run.progress_pct <= 100


def test_scenario_a_correct_answer_then_next():
    run = QuizRun(items=make_quiz_items(10))
    first = run.current_item
    assert run.record_answer(first.correct_index) is True
    assert (run.correct_count, run.wrong_count) == (1, 0)
    assert run.current_index == 0
    _assert_invariants(run)

    run.advance()
    assert run.current_index == 1
    assert run.selected_index is None
    assert run.last_answer_correct is None
    _assert_invariants(run)


def test_wrong_answer_counts():
    run = QuizRun(items=make_quiz_items(3))
    wrong = (run.current_item.correct_index + 1) % 4
    assert run.record_answer(wrong) is False
    assert (run.correct_count, run.wrong_count) == (0, 1)


def test_item_is_scored_once():
    run = QuizRun(items=make_quiz_items(3))
    correct = run.current_item.correct_index
    run.record_answer(correct)
    assert run.record_answer((correct + 1) % 4) is True
    assert (run.correct_count, run.wrong_count) == (1, 0)


def test_free_text_answer_moves_no_counter():
    run = QuizRun(items=[QuizItem(id="q1", question="Explain.", question_type=QuestionType.CASE_BASED)])
    run.record_answer(None)
    assert (run.correct_count, run.wrong_count) == (0, 0)
    assert run.last_answer_correct is None


def test_full_run_keeps_invariants_and_finishes():
    run = QuizRun(items=make_quiz_items(4))
    for n in range(4):
        item = run.current_item
        run.record_answer(item.correct_index if n % 2 == 0 else (item.correct_index + 1) % 4)
        _assert_invariants(run)
        run.advance()
        _assert_invariants(run)
    assert run.finished
    assert run.current_item is None
    assert run.progress_pct == 100
    assert (run.correct_count, run.wrong_count) == (2, 2)
    assert run.score_pct == 50


def test_advance_is_monotonic_and_bounded():
    run = QuizRun(items=make_quiz_items(2))
    assert run.advance() == 1
    assert run.advance() == 2
    assert run.advance() == 2
    assert run.current_index == run.total


def test_answer_after_finish_raises():
    run = QuizRun(items=make_quiz_items(1))
    run.advance()
    with pytest.raises(ValueError):
        run.record_answer(0)


def test_progress_pct():
    run = QuizRun(items=make_quiz_items(3))
    run.advance()
    assert run.progress_pct == 33
    assert QuizRun(items=[]).progress_pct == 100


def test_item_token_id_falls_back_to_position():
    run = QuizRun(items=make_quiz_items(2))
    assert run.item_token_id() == "q1"
    run.items[1].id = ""
    run.advance()
    assert run.item_token_id() == "q2"
