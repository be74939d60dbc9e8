"""Tests for config.llm_config and the settings-derived generation defaults."""

import pytest

from config.llm_config import LLMConfig
from config.settings import Settings

# ── Construction & validation ─────────────────────────────────


def test_default_all_none():
    cfg = LLMConfig()
    assert cfg.model is None
    assert cfg.temperature is None
    assert cfg.max_tokens is None


def test_validation_temperature_range():
    with pytest.raises(ValueError):
        LLMConfig(temperature=3.0)


def test_validation_max_tokens_positive():
    with pytest.raises(ValueError):
        LLMConfig(max_tokens=0)


# ── merge ─────────────────────────────────────────────────────


def test_merge_override_non_none():
    base = LLMConfig(model="xai/grok-3", temperature=0.7, max_tokens=300)
    merged = base.merge(LLMConfig(temperature=0.2))

    assert merged.model == "xai/grok-3"
    assert merged.temperature == 0.2
    assert merged.max_tokens == 300


def test_merge_does_not_mutate():
    base = LLMConfig(temperature=0.7)
    base.merge(LLMConfig(temperature=0.2))
    assert base.temperature == 0.7


# ── to_model_settings ─────────────────────────────────────────


def test_model_settings_drop_unset_fields():
    settings = LLMConfig(max_tokens=300, temperature=0.7).to_model_settings()
    assert settings == {"max_tokens": 300, "temperature": 0.7}


def test_model_settings_all_fields():
    settings = LLMConfig(max_tokens=10, temperature=0.1, top_p=0.5, seed=7, timeout=30).to_model_settings()
    assert settings["top_p"] == 0.5
    assert settings["seed"] == 7
    assert settings["timeout"] == 30


# ── Settings helpers ──────────────────────────────────────────


def test_chat_and_quiz_defaults():
    s = Settings(_env_file=None)
    assert s.get_chat_llm_config().to_model_settings() == {"max_tokens": 300, "temperature": 0.7}
    assert s.get_quiz_llm_config().max_tokens == 1200
    assert s.quiz_battery_size == 10
