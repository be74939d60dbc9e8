"""Pydantic Settings — typed configuration with .env auto-loading."""

from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

from config.llm_config import LLMConfig


class Settings(BaseSettings):
    """Application configuration loaded from environment / .env file."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # ── Service ──────────────────────────────────────────────
    service_port: int = 5000
    cors_origins: list[str] = ["*"]
    debug: bool = False
    log_level: str = "INFO"

    # ── Model backend ────────────────────────────────────────
    # Provider pick: xAI key wins over OpenAI key; neither → hard config error.
    xai_api_key: str = ""
    xai_base_url: str = "https://api.x.ai/v1"
    xai_model: str = "xai/grok-3"
    openai_api_key: str = ""
    openai_model: str = "openai/gpt-4o"
    model_request_timeout: int = 60  # seconds, per model HTTP call

    # Lesson turn generation
    chat_max_tokens: int = 300
    chat_temperature: float = 0.7

    # Quiz battery generation
    quiz_max_tokens: int = 1200
    quiz_temperature: float = 0.4
    quiz_battery_size: int = 10

    # ── Concurrency ──────────────────────────────────────────
    max_concurrent_llm: int = 10  # per worker
    max_concurrent_streams: int = 15  # per worker

    # ── Conversation persistence ─────────────────────────────
    conversation_store_type: str = "memory"  # "memory" or "redis"
    conversation_ttl: int = 86400  # seconds
    redis_url: str = ""  # e.g. redis://:password@host:6379/0

    # ── Resumable streams ────────────────────────────────────
    resumable_stream_backend: str = "memory"  # "memory", "redis" or "none"
    resumable_stream_ttl: int = 600  # seconds a finished stream stays replayable
    stream_poll_interval: float = 0.05  # seconds, redis follower poll
    sse_keepalive_interval: float = 15.0  # seconds

    # ── Progress heartbeat ───────────────────────────────────
    heartbeat_interval: float = 15.0
    heartbeat_tick: float = 1.0

    # ── Learning session registry ────────────────────────────
    session_idle_ttl: float = 1800.0  # seconds without a request before eviction
    completed_session_ttl: float = 300.0  # same, once the session has completed
    session_eviction_interval: float = 60.0  # seconds

    # ── Course / progress store ──────────────────────────────
    course_store_type: str = "memory"  # "memory" or "http"
    course_service_base_url: str = "http://localhost:8080"
    course_service_api_prefix: str = "/api"
    course_service_token: str = ""
    course_service_timeout: int = 15  # seconds

    # ── Helpers ───────────────────────────────────────────────

    def get_chat_llm_config(self) -> LLMConfig:
        """Generation parameters for lesson turns."""
        return LLMConfig(
            max_tokens=self.chat_max_tokens,
            temperature=self.chat_temperature,
        )

    def get_quiz_llm_config(self) -> LLMConfig:
        """Generation parameters for quiz battery generation."""
        return LLMConfig(
            max_tokens=self.quiz_max_tokens,
            temperature=self.quiz_temperature,
        )


@lru_cache
def get_settings() -> Settings:
    """Singleton accessor for application settings."""
    return Settings()
