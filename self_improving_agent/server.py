"""FastAPI server for the self-improving voice agent.

Run with:
    uv run uvicorn self_improving_agent.server:app --reload --port 3001
"""

from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from self_improving_agent.api.routes import AVAILABLE_ENDPOINTS, router
from self_improving_agent.config import APP_ENV, CORS_ORIGINS, SERVER_HOST, SERVER_PORT
from self_improving_agent.feedback import FeedbackPipeline
from self_improving_agent.services.feedback_runner import FeedbackRunner
from self_improving_agent.services.state_store import AgentStateStore
from self_improving_agent.services.summarizer import SessionSummarizer
from self_improving_agent.services.voice_agent_client import get_voice_agent_client

# ── Logging ──────────────────────────────────────────────────────────
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
)
logger = logging.getLogger(__name__)


# ── Lifespan: initialise / tear-down shared resources ────────────────
@asynccontextmanager
async def lifespan(application: FastAPI):
    """Start-up: wire the client, state store and feedback runner into app state.

    Shutdown: cancel any in-flight feedback run so polling does not outlive
    the process.
    """
    store = AgentStateStore()
    client = get_voice_agent_client()
    pipeline = FeedbackPipeline(client, SessionSummarizer(), store)

    application.state.store = store
    application.state.voice_client = client
    application.state.runner = FeedbackRunner(pipeline, store)
    logger.info("Self-improving agent backend ready (agent %s)", client.agent_id)
    yield
    logger.info("Shutting down gracefully…")
    await application.state.runner.cancel()


# ── FastAPI application ──────────────────────────────────────────────
app = FastAPI(
    title="Self-Improving Voice Agent",
    description=(
        "Rewrites a voice agent's system prompt after every conversation "
        "using an LLM summary of the transcript."
    ),
    version="1.0.0",
    lifespan=lifespan,
)

# ── CORS (needed for the browser client) ────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── Request-ID middleware ────────────────────────────────────────────
@app.middleware("http")
async def add_request_id(request: Request, call_next) -> Response:
    """Attach a unique request ID to every request for log correlation."""
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
    request.state.request_id = request_id
    logger.info("[%s] %s %s", request_id, request.method, request.url.path)
    try:
        response = await call_next(request)
    except Exception as exc:
        response = await unhandled_exception_handler(request, exc)
    response.headers["X-Request-ID"] = request_id
    return response


# ── Error handlers ───────────────────────────────────────────────────


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """List the valid endpoints for unknown routes and wrong methods.

    Other codes keep FastAPI's ``{"detail": ...}`` shape.
    """
    if exc.status_code in (404, 405):
        return JSONResponse(
            status_code=404,
            content={
                "error": "Endpoint not found",
                "availableEndpoints": AVAILABLE_ENDPOINTS,
            },
        )
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    """Log the traceback; only echo the message back in development.

    Normally reached through the request-ID middleware; the header is also
    set here for errors raised outside it.
    """
    request_id = getattr(request.state, "request_id", None)
    logger.exception("[%s] Unhandled error", request_id or "?")
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "message": str(exc) if APP_ENV == "development" else "Something went wrong",
        },
        headers={"X-Request-ID": request_id} if request_id else None,
    )


# ── Register routes ──────────────────────────────────────────────────
app.include_router(router, prefix="/api")


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "service": "Self-Improving Voice Agent",
        "version": "1.0.0",
        "docs": "/docs",
        "endpoints": AVAILABLE_ENDPOINTS,
    }


# ── CLI entry point ──────────────────────────────────────────────────

if __name__ == "__main__":
    logger.info("Starting self-improving agent backend on %s:%d", SERVER_HOST, SERVER_PORT)
    uvicorn.run(
        "self_improving_agent.server:app",
        host=SERVER_HOST,
        port=SERVER_PORT,
        reload=True,
    )
