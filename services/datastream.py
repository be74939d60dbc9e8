"""Data Stream Protocol encoder — Vercel AI SDK UI Message Stream v1.

Each method returns one SSE chunk: ``"data: {json}\\n\\n"``.  A lesson
turn streams as::

    start → data-stream {streamId, conversationId} → text-start
          → text-delta* → text-end → data-reply {kind, ...} → finish [DONE]

Required response header: ``x-vercel-ai-ui-message-stream: v1``
"""

from __future__ import annotations

import json
import uuid
from typing import Any

STREAM_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
    "x-vercel-ai-ui-message-stream": "v1",
}

KEEPALIVE = ": keepalive\n\n"
DONE = "data: [DONE]\n\n"


class DataStreamEncoder:
    """Encode lesson-turn events as Data Stream Protocol SSE chunks."""

    @staticmethod
    def _sse(payload: dict[str, Any]) -> str:
        return f"data: {json.dumps(payload, ensure_ascii=False, default=str)}\n\n"

    @staticmethod
    def new_id() -> str:
        return uuid.uuid4().hex[:8]

    # ── Message Control ──────────────────────────────────────────

    def start(self, message_id: str | None = None) -> str:
        return self._sse({"type": "start", "messageId": message_id or self.new_id()})

    def finish(self) -> str:
        return self._sse({"type": "finish"}) + DONE

    # ── Text ─────────────────────────────────────────────────────

    def text_start(self, text_id: str) -> str:
        return self._sse({"type": "text-start", "id": text_id})

    def text_delta(self, text_id: str, delta: str) -> str:
        return self._sse({"type": "text-delta", "id": text_id, "delta": delta})

    def text_end(self, text_id: str) -> str:
        return self._sse({"type": "text-end", "id": text_id})

    # ── Custom Data ──────────────────────────────────────────────

    def data(self, name: str, payload: Any) -> str:
        return self._sse({"type": f"data-{name}", "data": payload})

    def stream_handle(self, stream_id: str, conversation_id: str) -> str:
        return self.data("stream", {"streamId": stream_id, "conversationId": conversation_id})

    def reply(self, payload: dict[str, Any]) -> str:
        return self.data("reply", payload)

    # ── Error ────────────────────────────────────────────────────

    def error(self, text: str) -> str:
        return self._sse({"type": "error", "errorText": text})


def is_terminal(chunk: str) -> bool:
    """True for the chunk that closes a stream."""
    return chunk.endswith(DONE)
