"""Single-flight background runner for the feedback loop.

``POST /api/conversation-ended`` must answer immediately, so the blocking
pipeline (HTTP polling + LLM call) runs in the default thread pool behind an
``asyncio.Task``.  At most one run is in flight; a trigger that arrives
while one is running is rejected instead of racing on the shared state.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Protocol

from self_improving_agent.services.metrics import metrics
from self_improving_agent.services.state_store import AgentStateStore

logger = logging.getLogger(__name__)


class _Pipeline(Protocol):
    def run(self, current_prompt: str | None = None, *, cancel_event: threading.Event | None = None): ...


class FeedbackRunner:
    """Owns the in-flight feedback task and its effect on the state store."""

    def __init__(self, pipeline: _Pipeline, store: AgentStateStore) -> None:
        self._pipeline = pipeline
        self._store = store
        self._task: asyncio.Task | None = None
        self._cancel_event: threading.Event | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def trigger(self, current_prompt: str | None = None) -> bool:
        """Start a run unless one is already in flight.

        Must be called from the event loop.  Returns ``False`` (and leaves
        the state untouched) when a run is already in progress.
        """
        if self.is_running:
            logger.info("Feedback loop already running, ignoring trigger")
            return False

        self._store.mark_processing()
        self._cancel_event = threading.Event()
        self._task = asyncio.get_running_loop().create_task(
            self._run(current_prompt, self._cancel_event),
            name="feedback-loop",
        )
        return True

    async def _run(self, current_prompt: str | None, cancel_event: threading.Event) -> None:
        try:
            result = await asyncio.to_thread(
                self._pipeline.run, current_prompt, cancel_event=cancel_event,
            )
            self._store.mark_completed(
                version=result.version,
                description=result.description,
                full_prompt=result.full_prompt,
            )
            metrics.record_event("FeedbackLoop/Completed")
        except asyncio.CancelledError:
            logger.info("Feedback loop cancelled")
            self._store.mark_failed(current_prompt)
            raise
        except Exception:
            logger.exception("Feedback loop failed")
            # Falls back to the caller-supplied prompt, not the last evolved one
            self._store.mark_failed(current_prompt)
            metrics.record_event("FeedbackLoop/Failed")
        finally:
            self._store.ensure_ready()

    async def wait(self) -> None:
        """Wait for the in-flight run (if any) to finish."""
        if self._task is not None:
            await asyncio.gather(self._task, return_exceptions=True)

    async def cancel(self) -> None:
        """Cancel the in-flight run and wait for it to unwind."""
        if not self.is_running:
            return
        if self._cancel_event is not None:
            self._cancel_event.set()
        self._task.cancel()
        await self.wait()
