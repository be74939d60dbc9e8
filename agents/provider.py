"""Agent provider — model selection and construction for PydanticAI agents.

Two OpenAI-compatible backends are supported, picked by which API key is
configured (xAI first, then OpenAI).  With neither key present every model
call fails loudly with :class:`ModelNotConfiguredError`.
"""

from __future__ import annotations

import logging

import httpx
from pydantic_ai.models.openai import OpenAIChatModel
from pydantic_ai.providers.openai import OpenAIProvider

from config.settings import Settings, get_settings
from errors import ModelNotConfiguredError

logger = logging.getLogger(__name__)

# Provider prefix → (settings attr for base_url or None, settings attr for api key)
_PROVIDER_MAP: dict[str, tuple[str | None, str]] = {
    "xai": ("xai_base_url", "xai_api_key"),
    "openai": (None, "openai_api_key"),
}


def resolve_model_name(settings: Settings | None = None) -> str:
    """Pick the configured backend.

    Returns:
        Model name in ``"provider/model"`` format.

    Raises:
        ModelNotConfiguredError: Neither ``XAI_API_KEY`` nor ``OPENAI_API_KEY`` is set.
    """
    settings = settings or get_settings()
    if settings.xai_api_key:
        return settings.xai_model
    if settings.openai_api_key:
        return settings.openai_model
    logger.error("No LLM configured: set XAI_API_KEY or OPENAI_API_KEY")
    raise ModelNotConfiguredError()


def is_model_configured(settings: Settings | None = None) -> bool:
    settings = settings or get_settings()
    return bool(settings.xai_api_key or settings.openai_api_key)


def create_model(model_name: str | None = None, settings: Settings | None = None) -> OpenAIChatModel:
    """Build a PydanticAI model instance.

    Parses the ``"provider/model"`` format (e.g. ``"xai/grok-3"``,
    ``"openai/gpt-4o"``).  A bare name is treated as an OpenAI model.

    Args:
        model_name: Model identifier.  Defaults to :func:`resolve_model_name`.
        settings: Settings override (tests).

    Returns:
        A PydanticAI model ready for ``agent.run(model=...)``.

    Raises:
        ModelNotConfiguredError: No name given and no backend configured, or
            the chosen provider has no API key.
    """
    settings = settings or get_settings()
    name = model_name or resolve_model_name(settings)

    prefix, model_id = name.split("/", 1) if "/" in name else ("openai", name)
    if prefix not in _PROVIDER_MAP:
        raise ModelNotConfiguredError(f"Unknown provider '{prefix}' in model '{name}'")

    base_url_attr, key_attr = _PROVIDER_MAP[prefix]
    api_key = getattr(settings, key_attr, "")
    if not api_key:
        raise ModelNotConfiguredError(f"No API key configured for provider '{prefix}'")

    http_client = httpx.AsyncClient(timeout=settings.model_request_timeout)
    provider = OpenAIProvider(
        api_key=api_key,
        base_url=getattr(settings, base_url_attr) if base_url_attr else None,
        http_client=http_client,
    )
    return OpenAIChatModel(model_id, provider=provider)


_MODEL_CACHE: dict[str, OpenAIChatModel] = {}


def get_default_model() -> OpenAIChatModel:
    """Model for the configured backend, built once per model name."""
    name = resolve_model_name()
    model = _MODEL_CACHE.get(name)
    if model is None:
        model = _MODEL_CACHE[name] = create_model(name)
        logger.info("Model %s created", name)
    return model
