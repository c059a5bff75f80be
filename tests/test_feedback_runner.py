"""Tests for the single-flight feedback runner."""

from __future__ import annotations

import asyncio
import threading
from unittest.mock import MagicMock

from self_improving_agent.feedback import FeedbackError, FeedbackResult
from self_improving_agent.services.feedback_runner import FeedbackRunner
from self_improving_agent.services.state_store import AgentStateStore


def _result(prompt: str = "evolved prompt") -> FeedbackResult:
    return FeedbackResult(
        version="v2",
        conversation_analyzed="conv-1",
        timestamp="2026-01-01T00:00:00+00:00",
        full_prompt=prompt,
    )


class TestFeedbackRunner:
    def test_success_publishes_result(self):
        store = AgentStateStore()
        pipeline = MagicMock()
        pipeline.run.return_value = _result()
        runner = FeedbackRunner(pipeline, store)

        async def scenario():
            assert runner.trigger("old prompt") is True
            assert store.snapshot().status == "processing"
            await runner.wait()

        asyncio.run(scenario())

        state = store.snapshot()
        assert state.status == "ready"
        assert state.version == "v2"
        assert state.conversations_completed == 1
        assert state.full_prompt == "evolved prompt"
        args, kwargs = pipeline.run.call_args
        assert args == ("old prompt",)
        assert isinstance(kwargs["cancel_event"], threading.Event)

    def test_failure_falls_back_to_supplied_prompt(self):
        store = AgentStateStore()
        pipeline = MagicMock()
        pipeline.run.side_effect = FeedbackError("No conversation found to analyze")
        runner = FeedbackRunner(pipeline, store)

        async def scenario():
            runner.trigger("caller prompt")
            await runner.wait()

        asyncio.run(scenario())

        state = store.snapshot()
        assert state.status == "ready"
        assert state.full_prompt == "caller prompt"
        assert state.description == "Processing failed, using previous version"
        assert state.conversations_completed == 0

    def test_second_trigger_is_rejected_while_running(self):
        store = AgentStateStore()
        release = threading.Event()
        pipeline = MagicMock()

        def slow_run(current_prompt=None, *, cancel_event=None):
            release.wait(5)
            return _result()

        pipeline.run.side_effect = slow_run
        runner = FeedbackRunner(pipeline, store)

        async def scenario():
            assert runner.trigger("first") is True
            assert runner.is_running
            assert runner.trigger("second") is False
            release.set()
            await runner.wait()
            assert not runner.is_running

        asyncio.run(scenario())
        assert pipeline.run.call_count == 1
        assert store.snapshot().conversations_completed == 1

    def test_cancel_sets_event_and_resets_state(self):
        store = AgentStateStore()
        seen = {}
        pipeline = MagicMock()

        def blocking_run(current_prompt=None, *, cancel_event=None):
            seen["event"] = cancel_event
            cancel_event.wait(5)
            return _result()

        pipeline.run.side_effect = blocking_run
        runner = FeedbackRunner(pipeline, store)

        async def scenario():
            runner.trigger("prompt")
            await asyncio.sleep(0.05)
            await runner.cancel()

        asyncio.run(scenario())
        assert seen["event"].is_set()
        assert not runner.is_running
        state = store.snapshot()
        assert state.status == "ready"
        assert state.full_prompt == "prompt"

    def test_cancel_without_run_is_a_no_op(self):
        runner = FeedbackRunner(MagicMock(), AgentStateStore())
        asyncio.run(runner.cancel())
