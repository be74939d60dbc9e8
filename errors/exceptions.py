"""Domain-specific exceptions for the learning-session service.

These exceptions let the orchestrator, the streaming layer and the API
routes distinguish failures that are recovered locally (transport, malformed
model output) from failures that must be loud (missing configuration).
"""

from __future__ import annotations


class LessonAgentError(Exception):
    """Base class for all learning-session errors."""


class ModelNotConfiguredError(LessonAgentError):
    """No model backend is configured (neither xAI nor OpenAI key present).

    Not recoverable locally — there is nothing to fall back to, so the API
    surfaces it to the caller as a hard error.
    """

    def __init__(self, message: str = "No LLM configured.") -> None:
        super().__init__(message)


class ModelTransportError(LessonAgentError):
    """The model call failed or timed out."""

    def __init__(self, message: str, *, cause: BaseException | None = None) -> None:
        self.cause = cause
        super().__init__(message)


class QuizGenerationError(LessonAgentError):
    """The quiz battery could not be generated or was not a valid item list."""


class CollaboratorError(LessonAgentError):
    """An external course/progress collaborator call failed.

    Carries enough context for callers to decide whether to degrade.
    """

    def __init__(self, operation: str, detail: str, status_code: int | None = None) -> None:
        self.operation = operation
        self.detail = detail
        self.status_code = status_code
        suffix = f" (HTTP {status_code})" if status_code is not None else ""
        super().__init__(f"{operation} failed: {detail}{suffix}")


class SessionNotLoadedError(LessonAgentError):
    """An orchestrator operation was invoked before the session was loaded."""

    def __init__(self, course_id: str, session_id: str) -> None:
        self.course_id = course_id
        self.session_id = session_id
        super().__init__(f"Session '{session_id}' of course '{course_id}' is not loaded")


class TurnInFlightError(LessonAgentError):
    """A learner turn was submitted while the previous reply is still pending."""


class SessionNotFoundError(LessonAgentError):
    """The course store has no such course or session."""

    def __init__(self, course_id: str, session_id: str) -> None:
        self.course_id = course_id
        self.session_id = session_id
        super().__init__(f"Session '{session_id}' of course '{course_id}' not found")
