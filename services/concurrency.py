"""Concurrency controls for model calls and model-heavy endpoints.

Two per-worker semaphores:
- the LLM slot semaphore caps concurrent outbound model calls;
- the heavy-endpoint semaphore rejects new turn/stream requests with 503
  when the worker is already saturated, instead of queueing forever.

The middleware is pure ASGI (not BaseHTTPMiddleware) so SSE responses
keep streaming.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from starlette.types import ASGIApp, Receive, Scope, Send

from config.settings import get_settings

logger = logging.getLogger(__name__)

_llm_semaphore: asyncio.Semaphore | None = None
_heavy_semaphore: asyncio.Semaphore | None = None


def _get_llm_semaphore() -> asyncio.Semaphore:
    """Lazy-init so the semaphore binds to the running event loop."""
    global _llm_semaphore
    if _llm_semaphore is None:
        limit = get_settings().max_concurrent_llm
        _llm_semaphore = asyncio.Semaphore(limit)
        logger.info("LLM concurrency semaphore initialized (max=%d)", limit)
    return _llm_semaphore


def _get_heavy_semaphore() -> asyncio.Semaphore:
    global _heavy_semaphore
    if _heavy_semaphore is None:
        limit = get_settings().max_concurrent_streams
        _heavy_semaphore = asyncio.Semaphore(limit)
        logger.info("Heavy endpoint semaphore initialized (max=%d)", limit)
    return _heavy_semaphore


@asynccontextmanager
async def llm_slot() -> AsyncIterator[None]:
    """Hold one outbound model-call slot for the duration of the block.

    Usage::

        async with llm_slot():
            result = await agent.run(...)
    """
    async with _get_llm_semaphore():
        yield


# ── Heavy endpoint concurrency middleware (pure ASGI) ─────────

# POST endpoints that trigger a model call.
_HEAVY_PATTERNS = (
    re.compile(r"^/api/chat$"),
    re.compile(r"^/api/sessions/(chat|quiz)$"),
    re.compile(r"^/api/learning/[^/]+/[^/]+/(load|messages|quiz/answer)$"),
)


def is_heavy_request(method: str, path: str) -> bool:
    return method == "POST" and any(p.match(path) for p in _HEAVY_PATTERNS)


class ConcurrencyLimitMiddleware:
    """Reject heavy requests with 503 + ``Retry-After`` when at capacity.

    Lightweight endpoints (health, progress, transcript reads) pass through.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or not is_heavy_request(
            scope.get("method", ""), scope.get("path", "")
        ):
            await self.app(scope, receive, send)
            return

        sem = _get_heavy_semaphore()
        if sem.locked():
            logger.warning("Concurrency limit reached for %s — returning 503", scope.get("path"))
            body = json.dumps(
                {"error": "Server busy — too many concurrent requests. Please retry."}
            ).encode()
            await send({
                "type": "http.response.start",
                "status": 503,
                "headers": [
                    (b"content-type", b"application/json"),
                    (b"retry-after", b"5"),
                ],
            })
            await send({"type": "http.response.body", "body": body})
            return

        async with sem:
            await self.app(scope, receive, send)
