"""Self-improving voice agent — rewrites an ElevenLabs agent's system prompt
after every conversation.

Architecture Overview
=====================

When the browser client reports that a conversation ended, the backend runs
a **feedback loop** in the background:

1. **poll** the ElevenLabs API until the agent's latest conversation is
   processed and ready (bounded linear retry)
2. **fetch** its transcript and metadata
3. **summarize** the transcript with Claude (theme, emotion, next step),
   falling back to default fields if the LLM is unavailable
4. **compose** a new prompt: the base prompt plus exactly one version block,
   capped at a fixed character ceiling

The result is published through an in-memory state store that the client
polls; the client passes the evolved prompt back as a session override on
the next conversation.

Key Design Decisions
--------------------
- **Single-flight runner**: one feedback run at a time, cancellable on
  shutdown, instead of an unguarded fire-and-forget task.
- **Structured versions**: prompts are parsed into a base plus version
  records and re-rendered, not edited in place.
- **No persistence**: state lives for the lifetime of the process.

Package Structure
-----------------
- ``self_improving_agent/config.py`` — configuration from env / SSM
- ``self_improving_agent/prompts.py`` — summarizer instruction and version block text
- ``self_improving_agent/feedback.py`` — LangGraph feedback pipeline
- ``self_improving_agent/server.py`` — FastAPI application
- ``self_improving_agent/client.py`` — session state machine for clients
- ``self_improving_agent/main.py`` — terminal session driver
- ``self_improving_agent/services/`` — ElevenLabs client, summarizer, prompt
  versions, state store, feedback runner, metrics
- ``self_improving_agent/api/`` — FastAPI routes and Pydantic schemas
"""
