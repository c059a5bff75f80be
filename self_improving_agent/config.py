"""Centralized configuration for the self-improving voice agent backend.

Secret resolution order (per variable):
  1. Environment variable / ``.env`` file  (local dev)
  2. AWS SSM Parameter Store SecureString  (when ``AWS_EXECUTION_ENV`` is set)

The SSM paths follow the convention ``/self-improving-agent/<VARIABLE_NAME>``.

The voice-agent credentials are resolved at import time, so a missing
``ELEVENLABS_API_KEY`` or ``ELEVENLABS_AGENT_ID`` stops the process before
the server starts listening.
"""

from __future__ import annotations

import logging
import os

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

SSM_PREFIX = "/self-improving-agent"

# ── Feature flag: running on AWS? ────────────────────────────────────
_ON_AWS = bool(os.getenv("AWS_EXECUTION_ENV"))


# ── Secret resolution ────────────────────────────────────────────────

def _get_ssm_parameter(name: str) -> str | None:
    """Fetch a SecureString from SSM Parameter Store.

    Returns ``None`` if the parameter does not exist or boto3 is
    unavailable.  Errors are logged but never raised so that local-dev
    fallback still works.
    """
    try:
        import boto3  # noqa: PLC0415

        ssm = boto3.client("ssm")
        resp = ssm.get_parameter(Name=f"{SSM_PREFIX}/{name}", WithDecryption=True)
        return resp["Parameter"]["Value"]
    except Exception:
        logger.debug("SSM lookup for %s failed (expected locally)", name)
        return None


def _resolve(name: str) -> str | None:
    """Return a config value from env-var or SSM, or ``None`` if unset."""
    value = os.getenv(name)
    if value and not value.startswith("your_"):
        return value
    if _ON_AWS:
        return _get_ssm_parameter(name)
    return None


def _require_env(name: str) -> str:
    """Return a config value from env-var or SSM, or raise a clear error."""
    value = _resolve(name)
    if value:
        return value
    raise OSError(
        f"Missing required configuration: {name}. "
        f"Set it in .env (local) or SSM Parameter Store {SSM_PREFIX}/{name} (AWS)."
    )


# ── Voice agent platform (ElevenLabs) ───────────────────────────────
ELEVENLABS_API_KEY: str = _require_env("ELEVENLABS_API_KEY")
ELEVENLABS_AGENT_ID: str = _require_env("ELEVENLABS_AGENT_ID")
ELEVENLABS_BASE_URL: str = os.getenv("ELEVENLABS_BASE_URL", "https://api.elevenlabs.io/v1")

# ── LLM ─────────────────────────────────────────────────────────────
# Optional: without a key the summarizer falls back to default fields.
ANTHROPIC_API_KEY: str | None = _resolve("ANTHROPIC_API_KEY")
SUMMARY_MODEL_NAME: str = os.getenv("SUMMARY_MODEL_NAME", "claude-haiku-4-5")

# ── Feedback loop ───────────────────────────────────────────────────
AGENT_DISPLAY_NAME: str = os.getenv("AGENT_DISPLAY_NAME", "Mira")
DEFAULT_BASE_PROMPT: str = os.getenv("DEFAULT_BASE_PROMPT", "You are a helpful assistant.")
POLL_MAX_ATTEMPTS: int = int(os.getenv("POLL_MAX_ATTEMPTS", "15"))
POLL_DELAY_SECONDS: float = float(os.getenv("POLL_DELAY_SECONDS", "3.0"))
PROMPT_MAX_CHARS: int = int(os.getenv("PROMPT_MAX_CHARS", "10000"))

# ── Server ──────────────────────────────────────────────────────────
APP_ENV: str = os.getenv("APP_ENV", "production")
SERVER_HOST: str = os.getenv("SERVER_HOST", "0.0.0.0")
SERVER_PORT: int = int(os.getenv("SERVER_PORT", "3001"))
CORS_ORIGINS: list[str] = os.getenv(
    "CORS_ORIGINS",
    "http://localhost:5173,http://localhost:3000",
).split(",")

# ── Session client ──────────────────────────────────────────────────
BACKEND_URL: str = os.getenv("BACKEND_URL", f"http://localhost:{SERVER_PORT}")
