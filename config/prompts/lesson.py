"""Lesson tutor prompts — standing system prompt plus one-shot preambles.

Preambles are appended to the system prompt for exactly one model call:
- first-turn preamble: session overview + readiness check + completion contract
- grading preamble: how to grade a quiz answer, then continue the lesson
"""

from __future__ import annotations

import json
from typing import Any

from models.control import QuizAnswerPayload

LESSON_SYSTEM_PROMPT = """\
You are an AI learning assistant delivering a micro-learning session.

Session content: {session_content}
Emotion data: {emotion_data}

Guidelines:
- Keep responses concise and engaging
- Adapt tone based on emotion data (if provided)
- Provide encouragement and support
- Ask interactive questions to maintain engagement
- Offer practical examples and applications
- Use simple language for complex concepts
- If you want to ask a multiple-choice question, return STRICT JSON with shape \
{{"type":"quiz","id":"<string>","question":"<string>","choices":["A","B",...],\
"correctIndex":<number>,"questionType":"multiple-choice","explanation":"<string>"}} \
and nothing else. Do not include markdown."""

FIRST_TURN_PREAMBLE = (
    "\n\nFirst turn behavior: Provide a concise overview of this session "
    "(objectives, key topics, estimated duration, and how the session will proceed). "
    "Ask a brief engaging question to confirm readiness."
    "\n\nGuidance and completion: You should guide the user through the session in "
    "3-5 concise, interactive steps. When you determine the session has achieved its "
    "objectives, emit STRICT JSON and nothing else in your final turn: "
    '{"type":"complete","summary":"<2-4 bullet summary of what was learned>"}.'
)

QUIZ_BATTERY_SYSTEM_PROMPT = (
    "You are an expert quiz generator for micro-learning sessions. Output STRICT JSON only."
)

QUIZ_BATTERY_USER_PROMPT = """\
Create a quiz of {count} multiple-choice questions for a session titled "{session_title}" \
in the course "{course_title}". Base questions ONLY on this content: {session_content}. \
Each question should be concise and unambiguous.

Return a JSON array of objects with this exact shape per item:
{{
  "type": "quiz",
  "id": "q<number>",
  "question": "<string>",
  "choices": ["<string>", "<string>", "<string>", "<string>"],
  "correctIndex": <0-3>,
  "questionType": "multiple-choice",
  "explanation": "<short explanation>"
}}

No preface or markdown."""


def build_lesson_system_prompt(session_content: Any, emotion_data: Any = None) -> str:
    """Build the standing lesson system prompt.

    Args:
        session_content: Rich session payload (course, session, content).
        emotion_data: Optional learner affect signal; ``None`` renders as "None".

    Returns:
        The system prompt string, without any one-shot preamble.
    """
    return LESSON_SYSTEM_PROMPT.format(
        session_content=json.dumps(session_content, ensure_ascii=False, default=str),
        emotion_data=(
            json.dumps(emotion_data, ensure_ascii=False, default=str)
            if emotion_data is not None else "None"
        ),
    )


def build_grading_preamble(answer: QuizAnswerPayload) -> str:
    """Grading instructions for one quiz answer."""
    quiz = answer.quiz
    explanation = quiz.explanation or "N/A"
    if quiz.question_type.is_free_text:
        return (
            "\n\nQuiz grading context\n"
            f"The user provided the following free-text answer for quiz id {answer.id}: "
            f'"{answer.text_answer or ""}". Evaluate whether the answer is semantically '
            "correct for the question and reply with a concise verdict and explanation, "
            "then continue the lesson. "
            f"If helpful, use this explanation: {explanation}"
        )
    return (
        "\n\nQuiz grading context\n"
        f"The user selected option index {answer.selected_index} for quiz id {answer.id}. "
        f"The correct index is {quiz.correct_index}. "
        'If correct, reply with "Correct!" and a short explanation; otherwise reply with '
        '"Not quite" and the correct answer with a short explanation. '
        "Continue the lesson afterwards. "
        f"If helpful, use this explanation: {explanation}"
    )


def build_quiz_battery_prompt(
    *,
    count: int,
    session_title: str,
    course_title: str,
    session_content: Any,
) -> str:
    """User prompt requesting a battery of *count* multiple-choice items."""
    return QUIZ_BATTERY_USER_PROMPT.format(
        count=count,
        session_title=session_title,
        course_title=course_title,
        session_content=json.dumps(session_content, ensure_ascii=False, default=str),
    )
