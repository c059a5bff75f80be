"""Thread-safe in-memory store for the agent's evolving state.

One store lives on the FastAPI app (see ``server.py``) and is shared by the
routes and the feedback runner.  State is purely ephemeral: it is lost on
process restart.

Reads return a *copy* (:meth:`AgentStateStore.snapshot`) so callers never
hold a reference into the live state; every write goes through a named
transition method.
"""

from __future__ import annotations

import logging
import threading
from typing import Literal

from pydantic import BaseModel

logger = logging.getLogger(__name__)

AgentStatus = Literal["ready", "processing"]

INITIAL_VERSION = "1.0"
INITIAL_DESCRIPTION = "Initial agent configuration"
PROCESSING_DESCRIPTION = "Analyzing conversation and improving..."
FAILED_DESCRIPTION = "Processing failed, using previous version"


class AgentState(BaseModel):
    status: AgentStatus = "ready"
    version: str = INITIAL_VERSION
    description: str = INITIAL_DESCRIPTION
    conversations_completed: int = 0
    full_prompt: str | None = None


class AgentStateStore:
    """Holds a single :class:`AgentState` plus the version counter."""

    def __init__(self, initial: AgentState | None = None) -> None:
        self._state = initial.model_copy() if initial else AgentState()
        self._version_number = 1
        self._lock = threading.Lock()

    # ── Reads ────────────────────────────────────────────────────────

    def snapshot(self) -> AgentState:
        """Return a copy of the current state."""
        with self._lock:
            return self._state.model_copy()

    @property
    def status(self) -> AgentStatus:
        return self._state.status

    # ── Transitions ──────────────────────────────────────────────────

    def mark_processing(self) -> None:
        """Enter ``processing`` and clear the evolved prompt until a new one lands."""
        with self._lock:
            self._state.status = "processing"
            self._state.description = PROCESSING_DESCRIPTION
            self._state.full_prompt = None

    def mark_completed(self, *, version: str, description: str, full_prompt: str) -> None:
        """Publish a newly evolved prompt."""
        with self._lock:
            self._state.status = "ready"
            self._state.version = version
            self._state.description = description
            self._state.conversations_completed += 1
            self._state.full_prompt = full_prompt
        logger.info("Agent updated to version %s (%d chars)", version, len(full_prompt))

    def mark_failed(self, fallback_prompt: str | None) -> None:
        """Return to ``ready`` keeping *fallback_prompt* as the evolved prompt."""
        with self._lock:
            self._state.status = "ready"
            self._state.description = FAILED_DESCRIPTION
            self._state.full_prompt = fallback_prompt

    def ensure_ready(self) -> None:
        with self._lock:
            if self._state.status != "ready":
                self._state.status = "ready"

    def reserve_version_number(self) -> int:
        """Advance the version counter and return the new value (first call: 2)."""
        with self._lock:
            self._version_number += 1
            return self._version_number

    def reset(self) -> None:
        """Drop all state, as a process restart would."""
        with self._lock:
            self._state = AgentState()
            self._version_number = 1
