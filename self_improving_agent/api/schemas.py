"""Pydantic schemas for the FastAPI endpoints.

The browser client speaks camelCase JSON, so every schema serialises by
alias while still accepting snake_case field names in Python.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ConversationEndedRequest(CamelModel):
    """Optional prompt the client wants improved (its current evolved prompt)."""

    current_prompt: str | None = Field(
        default=None,
        description="Prompt to improve; omitted on the first conversation",
    )


class FeedbackStartedResponse(CamelModel):
    message: str
    status: str


class SignedUrlResponse(CamelModel):
    signed_url: str


class AgentStatusResponse(CamelModel):
    status: str
    version: str
    description: str
    conversations_completed: int
    full_prompt: str | None = None


class PromptLength(CamelModel):
    base: int
    evolved: int


class CurrentPromptResponse(CamelModel):
    base_prompt: str
    evolved_prompt: str | None = None
    prompt_length: PromptLength


class HealthResponse(CamelModel):
    status: str = "healthy"
    timestamp: str
    agent_status: str


class ErrorResponse(CamelModel):
    error: str
    message: str
