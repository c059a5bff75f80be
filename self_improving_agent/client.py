"""Session client for the self-improving agent backend.

Drives one user's sessions the way the browser front end does:

    ready ──start──▶ connecting ──signed URL──▶ connected
      ▲                  │ (error)                 │ end
      └──────────────────┴──── processing ◀────────┘
                         (poll /api/agent-status until ready)

The audio session itself belongs to the vendor SDK, so the controller takes
a *session starter*: a callable that receives the session config (signed URL
plus prompt overrides) and returns an object with an ``end_session()``
method.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Literal, Protocol

import httpx

from self_improving_agent.config import BACKEND_URL

logger = logging.getLogger(__name__)

SessionState = Literal["ready", "connecting", "connected", "processing"]

STATUS_POLL_ATTEMPTS = 30
STATUS_POLL_INTERVAL_SECONDS = 1.0
REQUEST_TIMEOUT_SECONDS = 10.0


class BackendError(Exception):
    """Raised when the backend cannot be reached or answers with an error."""


class VoiceSession(Protocol):
    def end_session(self) -> None: ...


SessionStarter = Callable[[dict[str, Any]], VoiceSession]


class SessionController:
    """Client-side state machine around the backend's HTTP API."""

    def __init__(
        self,
        session_starter: SessionStarter,
        base_url: str = BACKEND_URL,
        *,
        transport: httpx.BaseTransport | None = None,
        poll_attempts: int = STATUS_POLL_ATTEMPTS,
        poll_interval: float = STATUS_POLL_INTERVAL_SECONDS,
    ):
        self._start_session = session_starter
        self._http = httpx.Client(
            base_url=base_url, timeout=REQUEST_TIMEOUT_SECONDS, transport=transport,
        )
        self._poll_attempts = poll_attempts
        self._poll_interval = poll_interval
        self._session: VoiceSession | None = None

        self.state: SessionState = "ready"
        self.completed_conversations = 0
        self.evolved_prompt: str | None = None
        self.version_details: str | None = None

    def close(self) -> None:
        self._http.close()

    # ── Backend calls ────────────────────────────────────────────────

    def _get(self, path: str) -> dict[str, Any]:
        try:
            response = self._http.get(path)
            response.raise_for_status()
            return response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise BackendError(f"GET {path} failed: {exc}") from exc

    def _post(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        try:
            response = self._http.post(path, json=body)
            response.raise_for_status()
            return response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise BackendError(f"POST {path} failed: {exc}") from exc

    def get_signed_url(self) -> str:
        return self._get("/api/get-signed-url")["signedUrl"]

    # ── Session lifecycle ────────────────────────────────────────────

    def build_session_config(self, signed_url: str) -> dict[str, Any]:
        """Session config for the vendor SDK, overriding the prompt once evolved."""
        config: dict[str, Any] = {"signedUrl": signed_url}
        if self.evolved_prompt:
            logger.info("Using evolved prompt (%d characters)", len(self.evolved_prompt))
            config["overrides"] = {"agent": {"prompt": {"prompt": self.evolved_prompt}}}
        else:
            logger.info("Using default agent prompt for first conversation")
        return config

    def start_conversation(self) -> dict[str, Any]:
        """Connect a new session.  Returns the config handed to the session starter."""
        if self.state != "ready":
            raise BackendError(f"Cannot start a conversation while {self.state}")

        self.state = "connecting"
        try:
            config = self.build_session_config(self.get_signed_url())
            self._session = self._start_session(config)
        except Exception:
            logger.exception("Failed to start conversation")
            self.state = "ready"
            raise
        self.state = "connected"
        return config

    def end_conversation(self) -> bool:
        """End the live session and run the feedback round-trip.

        Returns ``True`` if the backend reported a new agent state.
        """
        if self.state != "connected":
            return False
        if self._session is not None:
            self._session.end_session()
            self._session = None
        return self.handle_conversation_end()

    def handle_conversation_end(self) -> bool:
        """Notify the backend and wait for the improved agent."""
        self.state = "processing"
        body: dict[str, Any] = {}
        if self.evolved_prompt:
            body["currentPrompt"] = self.evolved_prompt
        try:
            self._post("/api/conversation-ended", body)
            self.poll_for_agent_ready()
            return True
        except BackendError as exc:
            logger.error("Error in feedback loop: %s", exc)
            return False
        finally:
            self.state = "ready"

    def poll_for_agent_ready(self) -> dict[str, Any]:
        """Poll the agent status until it is ``ready`` and adopt its prompt."""
        for attempt in range(1, self._poll_attempts + 1):
            data = self._get("/api/agent-status")
            if data.get("status") == "ready":
                self.completed_conversations += 1
                self._apply_status(data)
                return data
            if attempt < self._poll_attempts:
                time.sleep(self._poll_interval)
        raise BackendError("Timeout waiting for agent to be ready")

    def load_initial_status(self) -> dict[str, Any]:
        """Pick up version info and any evolved prompt from a previous session."""
        data = self._get("/api/agent-status")
        self._apply_status(data)
        return data

    def _apply_status(self, data: dict[str, Any]) -> None:
        self.version_details = f"Version {data.get('version')} - {data.get('description')}"
        if data.get("fullPrompt"):
            self.evolved_prompt = data["fullPrompt"]
            logger.info("Received evolved prompt (%d characters)", len(self.evolved_prompt))
        else:
            logger.info("No evolved prompt received")

    # ── Debug helpers ────────────────────────────────────────────────

    def clear_evolved_prompt(self) -> None:
        self.evolved_prompt = None

    def prompt_stats(self) -> dict[str, Any]:
        return {
            "hasEvolvedPrompt": bool(self.evolved_prompt),
            "promptLength": len(self.evolved_prompt or ""),
            "conversationsCompleted": self.completed_conversations,
        }
