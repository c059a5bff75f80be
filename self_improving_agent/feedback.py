"""Feedback loop that rewrites the agent's system prompt after a conversation.

Architecture:
  The loop is a linear LangGraph StateGraph with five nodes:

    1. **fetch_conversation** — polls the voice-agent API until the latest
                                conversation for the agent is ready
    2. **fetch_details**      — downloads its transcript and metadata
    3. **resolve_prompt**     — picks the prompt to improve: the caller's,
                                else the agent's configured base prompt
    4. **summarize**          — asks the LLM for theme / emotion / next step
    5. **compose**            — reserves a version number and renders the
                                new prompt with exactly one version block

  fetch_conversation → fetch_details → resolve_prompt → summarize → compose → END

  Any node may raise; the caller (``FeedbackRunner``) decides how failures
  affect the published agent state.
"""

from __future__ import annotations

import logging
import threading
from datetime import UTC, datetime
from typing import Any

from langchain_core.runnables import RunnableConfig
from langgraph.graph import END, StateGraph
from pydantic import BaseModel
from typing_extensions import TypedDict

from self_improving_agent.config import (
    AGENT_DISPLAY_NAME,
    DEFAULT_BASE_PROMPT,
    POLL_DELAY_SECONDS,
    POLL_MAX_ATTEMPTS,
    PROMPT_MAX_CHARS,
)
from self_improving_agent.services.prompt_versions import (
    ConversationStats,
    SessionSummary,
    compose_prompt,
)
from self_improving_agent.services.state_store import AgentStateStore
from self_improving_agent.services.summarizer import SessionSummarizer
from self_improving_agent.services.voice_agent_client import VoiceAgentClient

logger = logging.getLogger(__name__)

RESULT_DESCRIPTION = "Enhanced based on conversation analysis"


class FeedbackError(Exception):
    """Raised when the feedback loop cannot produce a new prompt."""


class FeedbackResult(BaseModel):
    version: str
    description: str = RESULT_DESCRIPTION
    conversation_analyzed: str
    timestamp: str
    full_prompt: str


# ── State schema ─────────────────────────────────────────────────────


class FeedbackState(TypedDict, total=False):
    """Values accumulated as the graph runs.

    Only ``current_prompt`` is supplied by the caller; each node fills in
    the keys the next one needs.
    """

    current_prompt: str | None
    conversation: dict[str, Any]
    details: dict[str, Any]
    transcript: list[dict[str, Any]]
    stats: ConversationStats
    summary: SessionSummary
    version_number: int
    full_prompt: str


class FeedbackPipeline:
    """Compiled feedback graph bound to its collaborators."""

    def __init__(
        self,
        client: VoiceAgentClient,
        summarizer: SessionSummarizer,
        store: AgentStateStore,
        *,
        max_attempts: int = POLL_MAX_ATTEMPTS,
        delay_seconds: float = POLL_DELAY_SECONDS,
        max_chars: int = PROMPT_MAX_CHARS,
        default_prompt: str = DEFAULT_BASE_PROMPT,
        agent_name: str = AGENT_DISPLAY_NAME,
    ):
        self._client = client
        self._summarizer = summarizer
        self._store = store
        self._max_attempts = max_attempts
        self._delay_seconds = delay_seconds
        self._max_chars = max_chars
        self._default_prompt = default_prompt
        self._agent_name = agent_name
        self._graph = self._build_graph()

    # ── Nodes ────────────────────────────────────────────────────────

    def _fetch_conversation(self, state: FeedbackState, config: RunnableConfig) -> dict:
        cancel_event = config.get("configurable", {}).get("cancel_event")
        conversation = self._client.wait_for_latest_conversation(
            self._max_attempts, self._delay_seconds, cancel_event=cancel_event,
        )
        if not conversation:
            raise FeedbackError("No conversation found to analyze")
        logger.info("Found conversation: %s", conversation.get("conversation_id"))
        return {"conversation": conversation}

    def _fetch_details(self, state: FeedbackState) -> dict:
        conversation_id = state["conversation"]["conversation_id"]
        details = self._client.get_conversation_details(conversation_id)
        transcript = details.get("transcript") or []
        stats = ConversationStats.from_details(conversation_id, details)
        logger.info(
            "Conversation analyzed - %d messages, %d user, %d agent",
            len(transcript), stats.user_message_count, stats.agent_message_count,
        )
        return {"details": details, "transcript": transcript, "stats": stats}

    def _resolve_prompt(self, state: FeedbackState) -> dict:
        current = state.get("current_prompt")
        if current:
            return {"current_prompt": current}
        base = self._client.get_base_prompt(default=self._default_prompt)
        logger.info("No prompt supplied, starting from the agent's base prompt")
        return {"current_prompt": base}

    def _summarize(self, state: FeedbackState) -> dict:
        return {"summary": self._summarizer.summarize(state["transcript"])}

    def _compose(self, state: FeedbackState) -> dict:
        version_number = self._store.reserve_version_number()
        full_prompt = compose_prompt(
            state["current_prompt"],
            state["transcript"],
            state["stats"],
            state["summary"],
            version_number,
            max_chars=self._max_chars,
            agent_name=self._agent_name,
        )
        return {"version_number": version_number, "full_prompt": full_prompt}

    # ── Graph assembly ───────────────────────────────────────────────

    def _build_graph(self):
        graph = StateGraph(FeedbackState)

        graph.add_node("fetch_conversation", self._fetch_conversation)
        graph.add_node("fetch_details", self._fetch_details)
        graph.add_node("resolve_prompt", self._resolve_prompt)
        graph.add_node("summarize", self._summarize)
        graph.add_node("compose", self._compose)

        graph.set_entry_point("fetch_conversation")
        graph.add_edge("fetch_conversation", "fetch_details")
        graph.add_edge("fetch_details", "resolve_prompt")
        graph.add_edge("resolve_prompt", "summarize")
        graph.add_edge("summarize", "compose")
        graph.add_edge("compose", END)

        return graph.compile()

    # ── Entry point ──────────────────────────────────────────────────

    def run(
        self,
        current_prompt: str | None = None,
        *,
        cancel_event: threading.Event | None = None,
    ) -> FeedbackResult:
        """Run one pass of the feedback loop (blocking)."""
        logger.info("Starting feedback loop processing")
        final = self._graph.invoke(
            {"current_prompt": current_prompt},
            config={"configurable": {"cancel_event": cancel_event}},
        )
        result = FeedbackResult(
            version=f"v{final['version_number']}",
            conversation_analyzed=final["conversation"]["conversation_id"],
            timestamp=datetime.now(UTC).isoformat(),
            full_prompt=final["full_prompt"],
        )
        logger.info(
            "Feedback loop completed: conversation %s → %s (%d chars)",
            result.conversation_analyzed, result.version, len(result.full_prompt),
        )
        return result
