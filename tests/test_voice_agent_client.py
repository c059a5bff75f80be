"""Tests for the ElevenLabs VoiceAgentClient service."""

from __future__ import annotations

import threading
from unittest.mock import patch

import httpx
import pytest

from self_improving_agent.services.voice_agent_client import (
    VoiceAgentAPIError,
    VoiceAgentClient,
    extract_base_prompt,
    is_conversation_ready,
)

TEST_AGENT_ID = "agent-test-123"


def _client() -> VoiceAgentClient:
    return VoiceAgentClient(api_key="test-key", agent_id=TEST_AGENT_ID)


# ── Tests: is_conversation_ready ─────────────────────────────────────


class TestIsConversationReady:
    def test_complete_conversation_is_ready(self, make_conversation):
        assert is_conversation_ready(make_conversation()) is True

    def test_status_other_than_done_is_not_ready(self, make_conversation):
        assert is_conversation_ready(make_conversation(status="processing")) is False

    def test_missing_status_is_allowed(self, make_conversation):
        conv = make_conversation()
        del conv["status"]
        assert is_conversation_ready(conv) is True

    def test_failed_call_is_not_ready(self, make_conversation):
        assert is_conversation_ready(make_conversation(call_successful="failure")) is False

    def test_sub_second_call_is_not_ready(self, make_conversation):
        assert is_conversation_ready(make_conversation(call_duration_secs=0.5)) is False

    def test_missing_duration_is_not_ready(self, make_conversation):
        conv = make_conversation()
        del conv["call_duration_secs"]
        assert is_conversation_ready(conv) is False

    def test_zero_messages_is_not_ready(self, make_conversation):
        assert is_conversation_ready(make_conversation(message_count=0)) is False


# ── Tests: simple endpoints ──────────────────────────────────────────


class TestGetSignedUrl:
    def test_returns_signed_url_and_sends_agent_id(self, mock_response):
        client = _client()
        with patch.object(
            client._client, "request",
            return_value=mock_response({"signed_url": "wss://example/signed"}),
        ) as mock_req:
            assert client.get_signed_url() == "wss://example/signed"
            args, kwargs = mock_req.call_args
            assert args == ("GET", "/convai/conversation/get-signed-url")
            assert kwargs["params"] == {"agent_id": TEST_AGENT_ID}

    def test_wraps_api_error_with_operation_name(self, mock_response):
        client = _client()
        with patch.object(
            client._client, "request",
            return_value=mock_response({"detail": "invalid key"}, 401),
        ):
            with pytest.raises(VoiceAgentAPIError) as exc_info:
                client.get_signed_url()
        message = str(exc_info.value)
        assert message.startswith("Failed to get signed URL")
        assert "401" in message
        assert exc_info.value.status_code == 401

    def test_wraps_transport_errors(self):
        client = _client()
        with patch.object(
            client._client, "request", side_effect=httpx.ConnectError("refused"),
        ):
            with pytest.raises(VoiceAgentAPIError, match="Failed to get signed URL"):
                client.get_signed_url()

    def test_sends_api_key_header(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["key"] = request.headers.get("xi-api-key")
            return httpx.Response(200, json={"signed_url": "wss://x"})

        client = VoiceAgentClient(
            api_key="secret", agent_id=TEST_AGENT_ID,
            transport=httpx.MockTransport(handler),
        )
        client.get_signed_url()
        assert seen["key"] == "secret"


class TestAgentInfo:
    def test_get_base_prompt_reads_nested_prompt(self, mock_response):
        client = _client()
        agent = {"conversation_config": {"agent": {"prompt": {"prompt": "You are Mira."}}}}
        with patch.object(client._client, "request", return_value=mock_response(agent)):
            assert client.get_base_prompt(default="fallback") == "You are Mira."

    def test_get_base_prompt_falls_back_to_default(self, mock_response):
        client = _client()
        with patch.object(client._client, "request", return_value=mock_response({})):
            assert client.get_base_prompt(default="fallback") == "fallback"

    def test_extract_base_prompt_handles_null_config(self):
        assert extract_base_prompt({"conversation_config": None}) is None


# ── Tests: get_latest_conversation ───────────────────────────────────


class TestGetLatestConversation:
    def test_returns_newest_ready_conversation_for_agent(self, mock_response, make_conversation):
        client = _client()
        listing = {
            "conversations": [
                make_conversation("old", start_time_unix_secs=100),
                make_conversation("newest", start_time_unix_secs=300),
                make_conversation("other-agent", agent_id="someone-else", start_time_unix_secs=900),
                make_conversation("middle", start_time_unix_secs=200),
            ]
        }
        with patch.object(client._client, "request", return_value=mock_response(listing)):
            latest = client.get_latest_conversation()
        assert latest["conversation_id"] == "newest"

    def test_returns_none_when_agent_has_no_conversations(self, mock_response, make_conversation):
        client = _client()
        listing = {"conversations": [make_conversation(agent_id="someone-else")]}
        with patch.object(client._client, "request", return_value=mock_response(listing)):
            assert client.get_latest_conversation() is None

    def test_returns_none_when_listing_key_missing(self, mock_response):
        client = _client()
        with patch.object(client._client, "request", return_value=mock_response({})):
            assert client.get_latest_conversation() is None

    def test_returns_none_when_newest_is_not_ready(self, mock_response, make_conversation):
        """An older, finished conversation must not be picked over a newer one in flight."""
        client = _client()
        listing = {
            "conversations": [
                make_conversation("finished", start_time_unix_secs=100),
                make_conversation("in-flight", status="in-progress", start_time_unix_secs=200),
            ]
        }
        with patch.object(client._client, "request", return_value=mock_response(listing)):
            assert client.get_latest_conversation() is None

    def test_falls_back_to_created_at_for_ordering(self, mock_response, make_conversation):
        client = _client()
        a = make_conversation("a", created_at="2026-01-01T10:00:00Z")
        b = make_conversation("b", created_at="2026-01-02T10:00:00Z")
        del a["start_time_unix_secs"], b["start_time_unix_secs"]
        with patch.object(
            client._client, "request", return_value=mock_response({"conversations": [a, b]}),
        ):
            assert client.get_latest_conversation()["conversation_id"] == "b"


# ── Tests: wait_for_latest_conversation ──────────────────────────────


class TestWaitForLatestConversation:
    @patch("self_improving_agent.services.voice_agent_client.time.sleep")
    def test_returns_none_after_exhausting_attempts(self, mock_sleep):
        client = _client()
        with patch.object(client, "get_latest_conversation", return_value=None) as mock_get:
            result = client.wait_for_latest_conversation(max_attempts=4, delay_seconds=2.5)
        assert result is None
        assert mock_get.call_count == 4
        # No sleep after the final attempt
        assert mock_sleep.call_count == 3
        mock_sleep.assert_called_with(2.5)

    @patch("self_improving_agent.services.voice_agent_client.time.sleep")
    def test_returns_conversation_as_soon_as_ready(self, mock_sleep, make_conversation):
        client = _client()
        conv = make_conversation()
        with patch.object(client, "get_latest_conversation", side_effect=[None, None, conv]):
            result = client.wait_for_latest_conversation(max_attempts=15, delay_seconds=3)
        assert result == conv
        assert mock_sleep.call_count == 2

    @patch("self_improving_agent.services.voice_agent_client.time.sleep")
    def test_errors_count_as_misses(self, mock_sleep, make_conversation):
        client = _client()
        conv = make_conversation()
        with patch.object(
            client, "get_latest_conversation",
            side_effect=[VoiceAgentAPIError("boom"), conv],
        ):
            assert client.wait_for_latest_conversation(max_attempts=3, delay_seconds=1) == conv
        mock_sleep.assert_called_once_with(1)

    def test_cancel_event_stops_polling(self):
        client = _client()
        cancel = threading.Event()
        cancel.set()
        with patch.object(client, "get_latest_conversation") as mock_get:
            result = client.wait_for_latest_conversation(
                max_attempts=5, delay_seconds=10, cancel_event=cancel,
            )
        assert result is None
        mock_get.assert_not_called()

    def test_cancel_during_delay_returns_none(self):
        client = _client()
        cancel = threading.Event()

        def miss_then_cancel():
            cancel.set()
            return None

        with patch.object(client, "get_latest_conversation", side_effect=miss_then_cancel) as mock_get:
            result = client.wait_for_latest_conversation(
                max_attempts=5, delay_seconds=10, cancel_event=cancel,
            )
        assert result is None
        assert mock_get.call_count == 1
