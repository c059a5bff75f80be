"""Tests for configuration loading."""

from __future__ import annotations

import importlib

import pytest

import self_improving_agent.config as config


@pytest.fixture
def reload_config(monkeypatch):
    """Reload config under a patched environment, restoring it afterwards."""
    # Keep a stray .env from leaking values into the reload
    monkeypatch.setattr("dotenv.load_dotenv", lambda *a, **k: False)
    yield lambda: importlib.reload(config)
    monkeypatch.undo()
    importlib.reload(config)


class TestConfig:
    def test_missing_voice_agent_key_fails_fast(self, monkeypatch, reload_config):
        monkeypatch.delenv("ELEVENLABS_API_KEY", raising=False)
        with pytest.raises(OSError, match="ELEVENLABS_API_KEY"):
            reload_config()

    def test_placeholder_agent_id_is_rejected(self, monkeypatch, reload_config):
        monkeypatch.setenv("ELEVENLABS_AGENT_ID", "your_agent_id")
        with pytest.raises(OSError, match="ELEVENLABS_AGENT_ID"):
            reload_config()

    def test_defaults(self, monkeypatch, reload_config):
        for name in ("POLL_MAX_ATTEMPTS", "POLL_DELAY_SECONDS", "PROMPT_MAX_CHARS", "SERVER_PORT"):
            monkeypatch.delenv(name, raising=False)
        reloaded = reload_config()
        assert reloaded.POLL_MAX_ATTEMPTS == 15
        assert reloaded.POLL_DELAY_SECONDS == 3.0
        assert reloaded.PROMPT_MAX_CHARS == 10_000
        assert reloaded.SERVER_PORT == 3001

    def test_anthropic_key_is_optional(self, monkeypatch, reload_config):
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        assert reload_config().ANTHROPIC_API_KEY is None
