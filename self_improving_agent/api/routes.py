"""FastAPI route definitions for the self-improving agent API."""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse

from self_improving_agent.api.schemas import (
    AgentStatusResponse,
    ConversationEndedRequest,
    CurrentPromptResponse,
    ErrorResponse,
    FeedbackStartedResponse,
    HealthResponse,
    PromptLength,
    SignedUrlResponse,
)
from self_improving_agent.services.feedback_runner import FeedbackRunner
from self_improving_agent.services.state_store import AgentStateStore
from self_improving_agent.services.voice_agent_client import (
    VoiceAgentAPIError,
    VoiceAgentClient,
    extract_base_prompt,
)

logger = logging.getLogger(__name__)

router = APIRouter()

AVAILABLE_ENDPOINTS = [
    "GET /api/get-signed-url",
    "POST /api/conversation-ended",
    "GET /api/agent-status",
    "GET /api/current-prompt",
    "GET /api/health",
]

NO_PROMPT_FOUND = "No prompt found"


def _from_state(request: Request, name: str):
    """Retrieve a shared resource initialised by the lifespan (see ``server.py``)."""
    value = getattr(request.app.state, name, None)
    if value is None:
        raise HTTPException(
            status_code=503,
            detail="The service is still starting up. Please try again in a moment.",
        )
    return value


def _get_store(request: Request) -> AgentStateStore:
    return _from_state(request, "store")


def _get_client(request: Request) -> VoiceAgentClient:
    return _from_state(request, "voice_client")


def _get_runner(request: Request) -> FeedbackRunner:
    return _from_state(request, "runner")


def _error(error: str, exc: Exception) -> JSONResponse:
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(error=error, message=str(exc)).model_dump(by_alias=True),
    )


# ── Endpoints ────────────────────────────────────────────────────────


@router.get("/get-signed-url", response_model=SignedUrlResponse)
async def get_signed_url(request: Request):
    """Return a signed URL for starting a conversation with the agent."""
    client = _get_client(request)
    try:
        signed_url = await asyncio.to_thread(client.get_signed_url)
    except VoiceAgentAPIError as exc:
        logger.error("[%s] Error getting signed URL: %s", _request_id(request), exc)
        return _error("Failed to generate signed URL", exc)
    return SignedUrlResponse(signed_url=signed_url)


@router.post("/conversation-ended", response_model=FeedbackStartedResponse)
async def conversation_ended(
    request: Request, body: ConversationEndedRequest | None = None,
):
    """Acknowledge the end of a conversation and start the feedback loop.

    The loop runs in the background; clients poll ``/api/agent-status``
    until ``status`` is back to ``ready``.
    """
    runner = _get_runner(request)
    store = _get_store(request)
    current_prompt = body.current_prompt if body else None
    logger.info(
        "[%s] Conversation ended, starting feedback loop (%s)",
        _request_id(request),
        "with current prompt" if current_prompt else "first conversation",
    )

    try:
        started = runner.trigger(current_prompt)
    except Exception as exc:
        logger.exception("[%s] Error starting feedback loop", _request_id(request))
        store.ensure_ready()
        return _error("Failed to start feedback loop", exc)

    if not started:
        return FeedbackStartedResponse(
            message="Feedback loop already in progress", status=store.status,
        )
    return FeedbackStartedResponse(message="Feedback loop started", status=store.status)


@router.get("/agent-status", response_model=AgentStatusResponse)
async def agent_status(request: Request):
    """Return the agent status, version info and evolved prompt."""
    state = _get_store(request).snapshot()
    return AgentStatusResponse(**state.model_dump())


@router.get("/current-prompt", response_model=CurrentPromptResponse)
async def current_prompt(request: Request):
    """Debug endpoint: the agent's configured base prompt next to the evolved one."""
    client = _get_client(request)
    state = _get_store(request).snapshot()
    try:
        agent_info = await asyncio.to_thread(client.get_agent_info)
    except VoiceAgentAPIError as exc:
        logger.error("[%s] Error getting current prompt: %s", _request_id(request), exc)
        return _error("Failed to get current prompt", exc)

    base_prompt = extract_base_prompt(agent_info) or NO_PROMPT_FOUND
    evolved = state.full_prompt
    return CurrentPromptResponse(
        base_prompt=base_prompt,
        evolved_prompt=evolved,
        prompt_length=PromptLength(base=len(base_prompt), evolved=len(evolved or "")),
    )


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request):
    """Health check endpoint."""
    return HealthResponse(
        timestamp=datetime.now(UTC).isoformat(),
        agent_status=_get_store(request).status,
    )


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "?")
