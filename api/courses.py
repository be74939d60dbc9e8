"""Course event feed — SSE stream of cross-view notifications for one course."""

from __future__ import annotations

import logging
from typing import AsyncGenerator

from fastapi import APIRouter, Depends
from sse_starlette.sse import EventSourceResponse

from services.broadcast import ProgressBroadcaster
from services.container import ServiceContainer, get_container

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/courses", tags=["courses"])


async def course_event_stream(
    broadcaster: ProgressBroadcaster,
    course_id: str,
) -> AsyncGenerator[str, None]:
    """Yield each ``session_completed`` event of *course_id* as a JSON string."""
    async with broadcaster.subscription(course_id) as queue:
        logger.info("[Handoff] Course view subscribed to %s", course_id)
        while True:
            event = await queue.get()
            yield event.model_dump_json(by_alias=True)


@router.get("/{course_id}/events")
async def course_events(
    course_id: str,
    container: ServiceContainer = Depends(get_container),
):
    """Open course views listen here to refresh when a session completes."""
    return EventSourceResponse(
        course_event_stream(container.broadcaster, course_id),
        media_type="text/event-stream",
        ping=int(container.settings.sse_keepalive_interval),
    )
