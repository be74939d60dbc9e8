"""Reusable LLM generation parameters.

LLMConfig is a standalone Pydantic model that can be:
- derived from Settings as the per-concern default (lesson turns, quiz battery),
- passed per-call for one-off overrides.

Priority chain (low → high):
    .env defaults  →  concern-level LLMConfig  →  per-call overrides
"""

from __future__ import annotations

from pydantic import BaseModel, Field
from pydantic_ai.settings import ModelSettings


class LLMConfig(BaseModel):
    """LLM generation parameters.

    All fields are optional.  ``None`` means "use the model's default".
    """

    model: str | None = Field(default=None, description="Model identifier, 'provider/model'")
    max_tokens: int | None = Field(default=None, ge=1, description="Max tokens to generate")
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    top_p: float | None = Field(default=None, ge=0.0, le=1.0)
    seed: int | None = Field(default=None, description="Random seed for reproducibility")
    timeout: float | None = Field(default=None, gt=0, description="Per-request timeout (s)")

    def merge(self, overrides: LLMConfig) -> LLMConfig:
        """Return a new LLMConfig: *self* as base, *overrides* wins on non-None fields."""
        base = self.model_dump(exclude_none=True)
        base.update(overrides.model_dump(exclude_none=True))
        return LLMConfig(**base)

    def to_model_settings(self) -> ModelSettings:
        """Convert to pydantic-ai ``ModelSettings`` (drops unset fields)."""
        settings: ModelSettings = {}
        if self.max_tokens is not None:
            settings["max_tokens"] = self.max_tokens
        if self.temperature is not None:
            settings["temperature"] = self.temperature
        if self.top_p is not None:
            settings["top_p"] = self.top_p
        if self.seed is not None:
            settings["seed"] = self.seed
        if self.timeout is not None:
            settings["timeout"] = self.timeout
        return settings
