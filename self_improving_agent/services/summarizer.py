"""LLM session summarizer.

Collapses a transcript into plain text and asks a small Claude model for a
three-field JSON digest (theme, emotion, next step).  Summaries are
best-effort: any failure yields the default :class:`SessionSummary` so that
prompt composition always completes.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from langchain_anthropic import ChatAnthropic
from langchain_core.messages import HumanMessage, SystemMessage

from self_improving_agent.config import (
    AGENT_DISPLAY_NAME,
    ANTHROPIC_API_KEY,
    SUMMARY_MODEL_NAME,
)
from self_improving_agent.prompts import SUMMARY_SYSTEM_PROMPT
from self_improving_agent.services.metrics import metrics
from self_improving_agent.services.prompt_versions import SessionSummary

logger = logging.getLogger(__name__)

SUMMARY_FIELDS = ("theme", "emotion", "next_step")


def format_transcript(transcript: list[dict[str, Any]], agent_name: str = AGENT_DISPLAY_NAME) -> str:
    """Render the transcript as ``User: …`` / ``<agent>: …`` lines."""
    return "\n".join(
        f"{'User' if m.get('role') == 'user' else agent_name}: {m.get('message') or ''}"
        for m in transcript
    )


def _build_summary_llm() -> ChatAnthropic:
    """Build the Claude model used for session summaries (no tools)."""
    if not ANTHROPIC_API_KEY:
        raise RuntimeError("ANTHROPIC_API_KEY is not configured")
    return ChatAnthropic(
        model=SUMMARY_MODEL_NAME,
        api_key=ANTHROPIC_API_KEY,
        temperature=0.4,
        max_tokens=120,
    )


def parse_summary(raw: str) -> SessionSummary:
    """Parse the model's one-line JSON reply.

    Raises ``ValueError`` when the reply is not a JSON object carrying all
    three string fields.
    """
    text = raw.strip()
    # Tolerate a fenced reply even though the instruction forbids markdown
    if text.startswith("```"):
        text = text.strip("`").removeprefix("json").strip()
    data = json.loads(text)
    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object, got {type(data).__name__}")
    missing = [f for f in SUMMARY_FIELDS if not isinstance(data.get(f), str)]
    if missing:
        raise ValueError(f"Summary is missing fields: {', '.join(missing)}")
    return SessionSummary(**{f: data[f] for f in SUMMARY_FIELDS})


class SessionSummarizer:
    """Summarise a conversation transcript, falling back to defaults on error."""

    def __init__(self, llm: Any | None = None, agent_name: str = AGENT_DISPLAY_NAME):
        # Built lazily so a missing API key only surfaces as a fallback
        self._llm = llm
        self.agent_name = agent_name

    def _get_llm(self):
        if self._llm is None:
            self._llm = _build_summary_llm()
        return self._llm

    def summarize(self, transcript: list[dict[str, Any]]) -> SessionSummary:
        convo_text = format_transcript(transcript, self.agent_name)
        try:
            llm = self._get_llm()
            with metrics.timed("anthropic", "summarize_session"):
                response = llm.invoke(
                    [
                        SystemMessage(content=SUMMARY_SYSTEM_PROMPT),
                        HumanMessage(content=convo_text),
                    ]
                )
            summary = parse_summary(_content_text(response))
            logger.debug("Session summary: %s", summary.model_dump())
            return summary
        except Exception as exc:
            logger.warning("LLM summary failed, using defaults: %s", exc)
            return SessionSummary()


def _content_text(response: Any) -> str:
    """Extract plain text from a chat model response."""
    content = response.content if hasattr(response, "content") else response
    if isinstance(content, list):
        # Anthropic can return a list of content blocks
        return "".join(
            block.get("text", "") if isinstance(block, dict) else str(block)
            for block in content
        )
    return str(content)
