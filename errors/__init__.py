"""Custom exception hierarchy for the learning-session service."""

from errors.exceptions import (
    CollaboratorError,
    LessonAgentError,
    ModelNotConfiguredError,
    ModelTransportError,
    QuizGenerationError,
    SessionNotFoundError,
    SessionNotLoadedError,
    TurnInFlightError,
)

__all__ = [
    "CollaboratorError",
    "LessonAgentError",
    "ModelNotConfiguredError",
    "ModelTransportError",
    "QuizGenerationError",
    "SessionNotFoundError",
    "SessionNotLoadedError",
    "TurnInFlightError",
]
