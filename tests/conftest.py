"""Shared test fixtures for the self-improving agent test suite."""

from __future__ import annotations

import os
from unittest.mock import MagicMock

import pytest

TEST_AGENT_ID = "agent-test-123"


def pytest_configure(config):
    """Set test environment variables BEFORE collection starts.

    This runs before any imports, so config.py won't fail on module load.
    """
    os.environ.setdefault("ELEVENLABS_API_KEY", "test-elevenlabs-key-123")
    os.environ.setdefault("ELEVENLABS_AGENT_ID", TEST_AGENT_ID)
    os.environ.setdefault("METRICS_ENABLED", "false")


@pytest.fixture
def mock_response():
    """Factory fixture for creating mock ElevenLabs API responses."""

    def _make(data: dict, status_code: int = 200):
        mock = MagicMock()
        mock.status_code = status_code
        mock.json.return_value = data
        mock.text = str(data)
        return mock

    return _make


@pytest.fixture
def make_conversation():
    """Factory for conversation list entries that pass the readiness check."""

    def _make(conversation_id: str = "conv-1", **overrides):
        conv = {
            "conversation_id": conversation_id,
            "agent_id": TEST_AGENT_ID,
            "status": "done",
            "call_successful": "success",
            "call_duration_secs": 42,
            "message_count": 6,
            "start_time_unix_secs": 1_700_000_000,
        }
        conv.update(overrides)
        return conv

    return _make


@pytest.fixture
def transcript():
    return [
        {"role": "agent", "message": "Hi, I'm Mira. How are you feeling today?"},
        {"role": "user", "message": "honestly pretty stressed about work deadlines."},
        {"role": "agent", "message": "That sounds hard. What part weighs on you most?"},
        {"role": "user", "message": "ok"},
        {"role": "user", "message": "I can't sleep because I keep replaying meetings in my head."},
        {"role": "agent", "message": "Let's try a short wind-down routine tonight."},
    ]


@pytest.fixture
def conversation_details(transcript):
    return {
        "conversation_id": "conv-1",
        "agent_id": TEST_AGENT_ID,
        "status": "done",
        "transcript": transcript,
        "metadata": {"call_duration_secs": 42},
    }
