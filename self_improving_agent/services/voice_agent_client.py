"""HTTP client for the ElevenLabs Conversational AI REST API.

ElevenLabs API docs: https://elevenlabs.io/docs/api-reference
All requests carry the account API key in the ``xi-api-key`` header.

Individual requests are **not** retried.  The only retry in the system is
:meth:`VoiceAgentClient.wait_for_latest_conversation`, a bounded linear
poll that waits for the vendor to finish processing a conversation.
"""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime
from typing import Any

import httpx

from self_improving_agent.config import (
    ELEVENLABS_AGENT_ID,
    ELEVENLABS_API_KEY,
    ELEVENLABS_BASE_URL,
    POLL_DELAY_SECONDS,
    POLL_MAX_ATTEMPTS,
)
from self_improving_agent.services.metrics import metrics

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT_SECONDS = 15.0
SERVICE_NAME = "elevenlabs"


class VoiceAgentAPIError(Exception):
    """Raised when a call to the voice-agent platform fails."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


# ── Readiness ────────────────────────────────────────────────────────


def is_conversation_ready(conversation: dict[str, Any]) -> bool:
    """Return ``True`` if *conversation* looks complete enough to analyse.

    A conversation is still processing (or not worth analysing) when its
    status is set to anything other than ``done``, the call was flagged as
    a failure, it lasted under one second, or it has no messages.
    """
    status = conversation.get("status")
    if status and status != "done":
        logger.debug("Conversation status is %r, not 'done'", status)
        return False

    if conversation.get("call_successful") == "failure":
        logger.debug("Conversation failed, skipping analysis")
        return False

    duration = conversation.get("call_duration_secs") or 0
    if duration < 1:
        logger.debug("Conversation too short (%ss), likely incomplete", duration)
        return False

    # One agent line plus one user line is enough for a prototype
    message_count = conversation.get("message_count") or 0
    if message_count < 1:
        logger.debug("Too few messages (%d), likely incomplete", message_count)
        return False

    return True


def _conversation_timestamp(conversation: dict[str, Any]) -> float:
    """Sort key: ``start_time_unix_secs``, falling back to ``created_at``."""
    started = conversation.get("start_time_unix_secs")
    if started:
        return float(started)
    created = conversation.get("created_at")
    if isinstance(created, (int, float)):
        return float(created)
    if isinstance(created, str):
        try:
            return datetime.fromisoformat(created.replace("Z", "+00:00")).timestamp()
        except ValueError:
            return 0.0
    return 0.0


def extract_base_prompt(agent_info: dict[str, Any]) -> str | None:
    """Pull ``conversation_config.agent.prompt.prompt`` out of an agent payload."""
    prompt = (
        (agent_info.get("conversation_config") or {})
        .get("agent", {})
        .get("prompt", {})
        .get("prompt")
    )
    return prompt or None


# ── Client ───────────────────────────────────────────────────────────


class VoiceAgentClient:
    """Thin wrapper around the ElevenLabs Conversational AI endpoints used
    by the feedback loop, scoped to a single agent.

    Every public method logs failures and re-raises them as
    :class:`VoiceAgentAPIError` with a ``"Failed to <operation>: ..."``
    message that is safe to show to an operator.
    """

    def __init__(
        self,
        api_key: str | None = None,
        agent_id: str | None = None,
        base_url: str | None = None,
        *,
        transport: httpx.BaseTransport | None = None,
    ):
        self._api_key = api_key or ELEVENLABS_API_KEY
        self.agent_id = agent_id or ELEVENLABS_AGENT_ID
        self._base_url = base_url or ELEVENLABS_BASE_URL
        self._client = httpx.Client(
            base_url=self._base_url,
            headers={
                "xi-api-key": self._api_key,
                "Content-Type": "application/json",
            },
            timeout=REQUEST_TIMEOUT_SECONDS,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    # ── Internal helpers ─────────────────────────────────────────────

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Execute a single HTTP request and decode the JSON body."""
        response = self._client.request(method, path, params=params)
        if response.status_code >= 400:
            raise VoiceAgentAPIError(
                f"ElevenLabs API error ({response.status_code}): {response.text}",
                status_code=response.status_code,
            )
        return response.json()

    def _call(
        self,
        operation: str,
        failure: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Run a GET, recording metrics and normalising every failure."""
        try:
            with metrics.timed(SERVICE_NAME, operation):
                return self._request("GET", path, params=params)
        except (VoiceAgentAPIError, httpx.HTTPError, ValueError) as exc:
            logger.error("ElevenLabs %s failed: %s", operation, exc)
            raise VoiceAgentAPIError(
                f"Failed to {failure}: {exc}",
                status_code=getattr(exc, "status_code", None),
            ) from exc

    # ── Public API methods ───────────────────────────────────────────

    def get_signed_url(self) -> str:
        """Return a short-lived signed URL for starting a session with the agent."""
        data = self._call(
            "get_signed_url",
            "get signed URL",
            "/convai/conversation/get-signed-url",
            params={"agent_id": self.agent_id},
        )
        signed_url = data.get("signed_url")
        if not signed_url:
            raise VoiceAgentAPIError("Failed to get signed URL: response had no signed_url")
        return signed_url

    def list_conversations(self) -> list[dict[str, Any]]:
        """List recent conversations across the account."""
        data = self._call(
            "list_conversations", "list conversations", "/convai/conversations",
        )
        return data.get("conversations") or []

    def get_latest_conversation(self) -> dict[str, Any] | None:
        """Return the newest conversation for this agent if it is ready.

        Returns ``None`` when the agent has no conversations yet or when the
        newest one is still being processed by the platform.
        """
        conversations = [
            conv for conv in self.list_conversations()
            if conv.get("agent_id") == self.agent_id
        ]
        logger.debug(
            "Found %d conversations for agent %s", len(conversations), self.agent_id,
        )
        if not conversations:
            logger.info("No conversations found yet, will retry")
            return None

        latest = max(conversations, key=_conversation_timestamp)
        if not is_conversation_ready(latest):
            logger.info(
                "Conversation %s found but not ready yet, will retry",
                latest.get("conversation_id"),
            )
            return None
        return latest

    def get_conversation_details(self, conversation_id: str) -> dict[str, Any]:
        """Fetch a conversation including its transcript and metadata."""
        data = self._call(
            "get_conversation_details",
            "get conversation details",
            f"/convai/conversations/{conversation_id}",
        )
        transcript = data.get("transcript")
        if transcript is not None:
            logger.info(
                "Retrieved conversation %s with %d messages, %s seconds",
                conversation_id,
                len(transcript),
                (data.get("metadata") or {}).get("call_duration_secs", "unknown"),
            )
        return data

    def get_agent_info(self) -> dict[str, Any]:
        """Fetch the agent's configuration."""
        return self._call(
            "get_agent_info", "get agent info", f"/convai/agents/{self.agent_id}",
        )

    def get_base_prompt(self, default: str | None = None) -> str | None:
        """Return the agent's configured system prompt, or *default*."""
        return extract_base_prompt(self.get_agent_info()) or default

    def wait_for_latest_conversation(
        self,
        max_attempts: int = POLL_MAX_ATTEMPTS,
        delay_seconds: float = POLL_DELAY_SECONDS,
        *,
        cancel_event: threading.Event | None = None,
    ) -> dict[str, Any] | None:
        """Poll until the latest conversation is ready.

        Fixed attempt count and fixed delay.  Errors on an attempt are
        logged and count as a miss.  Returns ``None`` on exhaustion or when
        *cancel_event* is set.
        """
        logger.info("Waiting for conversation to be available…")
        for attempt in range(1, max_attempts + 1):
            if cancel_event is not None and cancel_event.is_set():
                logger.info("Conversation polling cancelled")
                return None

            logger.debug("Polling attempt %d/%d", attempt, max_attempts)
            try:
                conversation = self.get_latest_conversation()
            except VoiceAgentAPIError as exc:
                logger.warning("Polling attempt %d failed: %s", attempt, exc)
                conversation = None

            if conversation is not None:
                logger.info("Found conversation after %d attempt(s)", attempt)
                metrics.record_event("FeedbackLoop/PollAttempts", attempt)
                return conversation

            if attempt < max_attempts:
                if cancel_event is not None:
                    if cancel_event.wait(delay_seconds):
                        logger.info("Conversation polling cancelled")
                        return None
                else:
                    time.sleep(delay_seconds)

        logger.warning("No conversation found after %d attempts", max_attempts)
        metrics.record_event("FeedbackLoop/PollAttempts", max_attempts)
        return None


# ── Module-level singleton (thread-safe) ────────────────────────────
_client: VoiceAgentClient | None = None
_client_lock = threading.Lock()


def get_voice_agent_client() -> VoiceAgentClient:
    """Return a module-level VoiceAgentClient singleton."""
    global _client
    if _client is None:
        with _client_lock:
            if _client is None:
                _client = VoiceAgentClient()
    return _client
