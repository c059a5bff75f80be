"""Structured, bounded prompt versioning.

The evolved prompt is modelled as a :class:`PromptDocument`: the agent's
base prompt plus a list of :class:`VersionRecord` blocks.  Text coming back
from the client is parsed into a document (any previous version block is
recognised and dropped), one new record is attached, and the document is
rendered under a character ceiling.

Invariant: a composed prompt contains exactly one version block and is never
longer than ``max_chars``.
"""

from __future__ import annotations

import logging
import re
from typing import Any

from pydantic import BaseModel, Field

from self_improving_agent.prompts import (
    FOLLOW_UP_TEMPLATE,
    METADATA_TEMPLATE,
    NO_QUOTES_PLACEHOLDER,
    QUOTES_TEMPLATE,
    SNAPSHOT_HEADING,
    SNAPSHOT_TEMPLATE,
    VERSION_MARKER_TEMPLATE,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_CHARS = 10_000
MIN_QUOTE_LENGTH = 12

# Any inline marker, e.g. "[Version 3]" or "[Version 3 - tuned]"
_MARKER_RE = re.compile(r"\[Version \d+[^\]\n]*\]")
# The line that opens a version block (or a legacy snapshot without marker)
_BLOCK_START_RE = re.compile(
    rf"^(?:\[Version (\d+)\][^\n]*|{re.escape(SNAPSHOT_HEADING)})[ \t]*$",
    re.MULTILINE,
)


class SessionSummary(BaseModel):
    """Three-field digest of a conversation produced by the LLM."""

    theme: str = "general wellbeing"
    emotion: str = "neutral"
    next_step: str = "none"


class ConversationStats(BaseModel):
    """Counts and identifiers shown in the dev-only metadata line."""

    duration_secs: float = 0
    user_message_count: int = 0
    agent_message_count: int = 0
    conversation_id: str = "unknown"

    @classmethod
    def from_details(
        cls, conversation_id: str, details: dict[str, Any],
    ) -> ConversationStats:
        transcript = details.get("transcript") or []
        return cls(
            duration_secs=(details.get("metadata") or {}).get("call_duration_secs") or 0,
            user_message_count=sum(1 for m in transcript if m.get("role") == "user"),
            agent_message_count=sum(1 for m in transcript if m.get("role") == "agent"),
            conversation_id=conversation_id,
        )


class VersionRecord(BaseModel):
    """One version block appended to the base prompt."""

    number: int = Field(..., ge=1)
    summary: SessionSummary = Field(default_factory=SessionSummary)
    quotes: list[str] = Field(default_factory=list)
    stats: ConversationStats = Field(default_factory=ConversationStats)
    agent_name: str = "Mira"
    include_snapshot: bool = True

    def render(self) -> str:
        header = VERSION_MARKER_TEMPLATE.format(number=self.number)
        if self.include_snapshot:
            header += "\n" + SNAPSHOT_TEMPLATE.format(**self.summary.model_dump())
        sections = [
            header,
            QUOTES_TEMPLATE.format(quotes="\n".join(self.quotes) or NO_QUOTES_PLACEHOLDER),
            FOLLOW_UP_TEMPLATE.format(agent_name=self.agent_name),
            METADATA_TEMPLATE.format(
                duration_secs=_format_duration(self.stats.duration_secs),
                user_message_count=self.stats.user_message_count,
                agent_message_count=self.stats.agent_message_count,
                conversation_id=self.stats.conversation_id,
            ),
        ]
        return "\n\n".join(sections)


class PromptDocument(BaseModel):
    """Base prompt text plus the version blocks rendered after it."""

    base: str = ""
    versions: list[VersionRecord] = Field(default_factory=list)
    # Highest version number seen in the text this document was parsed from
    previous_version: int | None = None

    @classmethod
    def parse(cls, text: str) -> PromptDocument:
        """Split *text* into its base prompt and discard prior version blocks."""
        numbers = [int(n) for n in _BLOCK_START_RE.findall(text) if n]
        match = _BLOCK_START_RE.search(text)
        base = text[: match.start()] if match else text
        return cls(
            base=strip_version_markers(base),
            previous_version=max(numbers) if numbers else None,
        )

    def render(self) -> str:
        parts = [self.base] if self.base else []
        parts.extend(v.render() for v in self.versions)
        return "\n\n".join(parts)

    def render_bounded(self, max_chars: int = DEFAULT_MAX_CHARS) -> str:
        """Render, shrinking the document until it fits in *max_chars*.

        Oldest version blocks are evicted first (only hand-built documents
        carry more than one), then the snapshot section is dropped from the
        remaining blocks, then the base text is clipped.
        """
        text = self.render()
        while len(text) > max_chars and len(self.versions) > 1:
            evicted = self.versions.pop(0)
            logger.info("Prompt over %d chars, evicted version %d", max_chars, evicted.number)
            text = self.render()

        if len(text) > max_chars and any(v.include_snapshot for v in self.versions):
            for version in self.versions:
                version.include_snapshot = False
            logger.info("Prompt over %d chars, dropped session snapshot", max_chars)
            text = self.render()

        if len(text) > max_chars:
            blocks = "\n\n".join(v.render() for v in self.versions)
            room = max_chars - len(blocks) - 2
            if room > 0:
                self.base = self.base[:room].rstrip()
                text = self.render()
            else:
                self.base = ""
                text = blocks[:max_chars]
            logger.warning("Prompt still over %d chars, clipped base prompt", max_chars)

        return text


# ── Helpers ──────────────────────────────────────────────────────────


def _format_duration(seconds: float) -> str:
    """Whole seconds print as an integer, anything else as a plain float."""
    if float(seconds).is_integer():
        return str(int(seconds))
    return str(float(seconds))


def strip_version_markers(text: str) -> str:
    """Remove every ``[Version N…]`` marker and surrounding whitespace."""
    return _MARKER_RE.sub("", text).strip()


def pick_top_quotes(transcript: list[dict[str, Any]], n: int = 2) -> list[str]:
    """Pick the *n* longest meaningful user utterances, formatted for the block.

    Utterances of 12 characters or fewer ("ok", "yeah") are skipped.
    """
    candidates = [
        (m.get("message") or "").strip()
        for m in transcript
        if m.get("role") == "user"
    ]
    candidates = [text for text in candidates if len(text) > MIN_QUOTE_LENGTH]
    candidates.sort(key=len, reverse=True)

    labels = ("**Top concern:** ", "**Second:** ")
    quotes = []
    for idx, quote in enumerate(candidates[:n]):
        quote = quote[0].upper() + quote[1:]
        quote = quote.removesuffix(".")
        label = labels[idx] if idx < len(labels) else ""
        quotes.append(f"{label}“{quote}.”")
    return quotes


def compose_prompt(
    current_prompt: str,
    transcript: list[dict[str, Any]],
    stats: ConversationStats,
    summary: SessionSummary,
    version_number: int,
    *,
    max_chars: int = DEFAULT_MAX_CHARS,
    agent_name: str = "Mira",
) -> str:
    """Replace the prior version block of *current_prompt* with a new one."""
    document = PromptDocument.parse(current_prompt)
    if document.previous_version is not None and version_number <= document.previous_version:
        logger.warning(
            "Version %d does not advance on version %d found in the current prompt",
            version_number, document.previous_version,
        )
    document.versions = [
        VersionRecord(
            number=version_number,
            summary=summary,
            quotes=pick_top_quotes(transcript),
            stats=stats,
            agent_name=agent_name,
        )
    ]
    text = document.render_bounded(max_chars)
    logger.debug("Composed prompt version %d (%d chars)", version_number, len(text))
    return text
