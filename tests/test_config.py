"""Tests for environment-driven configuration."""

import pytest

from cohort.config import CONTEXT_WINDOW_SIZES, DEFAULT_CONTEXT_WINDOW_SIZE, Config


def test_context_window_from_known_model(monkeypatch):
    monkeypatch.setattr(Config, "CONTEXT_WINDOW_SIZE", None)

    assert Config.context_window_size("gpt-4") == CONTEXT_WINDOW_SIZES["gpt-4"]
    assert Config.context_window_size("some-local-model") == DEFAULT_CONTEXT_WINDOW_SIZE


def test_context_window_override_wins(monkeypatch):
    monkeypatch.setattr(Config, "CONTEXT_WINDOW_SIZE", 2048)

    assert Config.context_window_size("gpt-4o") == 2048


def test_validate_requires_provider_key(monkeypatch):
    monkeypatch.setattr(Config, "LLM_PROVIDER", "openai")
    monkeypatch.setattr(Config, "OPENAI_API_KEY", None)

    with pytest.raises(ValueError, match="OPENAI_API_KEY"):
        Config.validate()


def test_validate_rejects_non_positive_intervals(monkeypatch):
    monkeypatch.setattr(Config, "LLM_PROVIDER", "ollama")
    monkeypatch.setattr(Config, "TICK_INTERVAL_SECONDS", 0.0)

    with pytest.raises(ValueError, match="intervals"):
        Config.validate()


def test_validate_accepts_local_provider(monkeypatch):
    monkeypatch.setattr(Config, "LLM_PROVIDER", "ollama")
    monkeypatch.setattr(Config, "TICK_INTERVAL_SECONDS", 1.0)
    monkeypatch.setattr(Config, "HEARTBEAT_INTERVAL_SECONDS", 60.0)

    Config.validate()
    assert "LLM Provider: ollama" in Config.display()
