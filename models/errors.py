"""Structured error codes for HTTP bodies and SSE ``errorText``.

Conversational failures are deliberately generic for the learner; the codes
here are what operators and the frontend see in logs and error events.

SSE stream errors follow the format::

    {ERROR_CODE}: {human_readable_detail}
"""

from __future__ import annotations

import re
from enum import Enum

# Learner-facing fallback when a conversational turn fails.
CONVERSATION_FALLBACK_TEXT = "Sorry, something went wrong."

# Learner-facing text for a failed streaming turn.
STREAM_FALLBACK_TEXT = "Oops, an error occurred!"


class ErrorCode(str, Enum):
    """Canonical error codes shared with the frontend."""

    INVALID_REQUEST = "INVALID_REQUEST"
    MODEL_NOT_CONFIGURED = "MODEL_NOT_CONFIGURED"
    LLM_PROVIDER_ERROR = "LLM_PROVIDER_ERROR"
    QUIZ_GENERATION_FAILED = "QUIZ_GENERATION_FAILED"
    SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
    TURN_IN_FLIGHT = "TURN_IN_FLIGHT"
    INTERNAL_ERROR = "INTERNAL_ERROR"


def format_error(code: ErrorCode, detail: str) -> str:
    """Format an error as ``{ERROR_CODE}: {detail}``."""
    return f"{code.value}: {detail}"


def format_llm_error(detail: str) -> str:
    """Format a model provider error as ``LLM_PROVIDER_ERROR: {detail}``."""
    return format_error(ErrorCode.LLM_PROVIDER_ERROR, detail)


# Configuration problems (missing keys, unknown provider).
_CONFIG_RE = re.compile(r"no llm configured|api key|api_key|unknown provider", re.IGNORECASE)

# Provider problems (timeout, connection, context-length, rate limits, safety).
_LLM_PROVIDER_RE = re.compile(
    r"timeout|timed out|connection|context length|token|rate limit|content filter|safety",
    re.IGNORECASE,
)


def classify_stream_error(error_text: str) -> str:
    """Classify a raw exception string into an SSE ``errorText``.

    Classification order (first match wins):
        1. Configuration — missing model backend / keys.
        2. LLM provider — timeout / connection / context length / rate limit / safety.
        3. Fallback — ``INTERNAL_ERROR``.
    """
    if _CONFIG_RE.search(error_text):
        return format_error(ErrorCode.MODEL_NOT_CONFIGURED, error_text)

    err_lower = error_text.lower()
    if "content filter" in err_lower or "safety" in err_lower:
        return format_llm_error("Content filtered by safety policy")
    if "context length" in err_lower or "token" in err_lower:
        return format_llm_error(f"Context length exceeded — {error_text}")
    if _LLM_PROVIDER_RE.search(error_text):
        return format_llm_error(error_text)

    return format_error(ErrorCode.INTERNAL_ERROR, error_text)
