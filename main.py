"""FastAPI entry point for the learning-session service."""

import asyncio
import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config.settings import get_settings
from models.errors import ErrorCode, format_error
from services.concurrency import ConcurrencyLimitMiddleware
from services.container import build_container
from services.conversation_store import periodic_cleanup
from services.middleware import RequestIdLogFilter, RequestIdMiddleware
from services.session_registry import periodic_eviction

settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s [%(request_id)s] %(name)s: %(message)s",
)
for _handler in logging.getLogger().handlers:
    _handler.addFilter(RequestIdLogFilter())

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle — start/stop shared resources."""
    container = getattr(app.state, "container", None)
    if container is None:
        container = build_container(settings)
        app.state.container = container
    await container.start()

    cleanup_task = asyncio.create_task(periodic_cleanup(container.conversation_store, interval_seconds=300))
    eviction_task = asyncio.create_task(
        periodic_eviction(container.sessions, interval_seconds=settings.session_eviction_interval)
    )
    logger.info(
        "Service ready (conversations=%s, resumable=%s, courses=%s)",
        settings.conversation_store_type,
        container.stream_manager.resumable,
        settings.course_store_type,
    )

    yield

    for task in (cleanup_task, eviction_task):
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    await container.close()


app = FastAPI(
    title="Lesson Agent",
    description="Learning-session conversations, quizzes and resumable streaming",
    version="0.1.0",
    lifespan=lifespan,
)

# ── Middleware stack (outermost first) ─────────────────────────
# CORS → RequestId → ConcurrencyLimit → route handler
app.add_middleware(ConcurrencyLimitMiddleware)
app.add_middleware(RequestIdMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Malformed bodies answer 400 ``{error}`` like missing fields do."""
    logger.info("Invalid request to %s: %s", request.url.path, exc.errors())
    return JSONResponse(
        status_code=400,
        content={"error": format_error(ErrorCode.INVALID_REQUEST, "Invalid request body")},
    )


# ── Register routers ────────────────────────────────────────
from api.chat_stream import router as chat_stream_router  # noqa: E402
from api.courses import router as courses_router  # noqa: E402
from api.health import router as health_router  # noqa: E402
from api.learning import router as learning_router  # noqa: E402
from api.sessions import router as sessions_router  # noqa: E402

app.include_router(health_router)
app.include_router(sessions_router)
app.include_router(chat_stream_router)
app.include_router(learning_router)
app.include_router(courses_router)


if __name__ == "__main__":
    if settings.debug:
        uvicorn.run(
            "main:app",
            host="0.0.0.0",
            port=settings.service_port,
            reload=True,
        )
    else:
        # Production: gunicorn main:app -c deploy/gunicorn.conf.py
        uvicorn.run(
            "main:app",
            host="0.0.0.0",
            port=settings.service_port,
            workers=4,
            timeout_keep_alive=120,
        )
