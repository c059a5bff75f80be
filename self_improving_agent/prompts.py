"""Prompt text used by the feedback loop.

Two kinds of text live here: the instruction sent to the LLM when
summarising a session, and the template of the version block appended to
the agent's system prompt after each conversation.  Customise both freely;
the composition rules in ``services/prompt_versions.py`` only rely on the
``[Version N]`` marker and the ``### Session Snapshot`` heading.
"""

SUMMARY_SYSTEM_PROMPT = (
    "Return ONE line of valid JSON with exactly these keys: "
    '{"theme":"<≤7 words>","emotion":"<one word>","next_step":"<1 sentence>"} '
    "No markdown, no extra keys, keep it on one line."
)

VERSION_MARKER_TEMPLATE = "[Version {number}] - Improved from latest session"

SNAPSHOT_HEADING = "### Session Snapshot"

SNAPSHOT_TEMPLATE = """### Session Snapshot
-> Main theme: {theme}
-> Dominant emotion: {emotion}
-> Therapeutic next step: {next_step}"""

QUOTES_TEMPLATE = """=> Key user quotes
{quotes}"""

FOLLOW_UP_TEMPLATE = """=> {agent_name}’s follow‑up cue
Ask how often the user practised the next step and what felt helpful."""

METADATA_TEMPLATE = """=> Metadata (dev‑only)
Duration {duration_secs}s · {user_message_count} user msgs / {agent_message_count} agent msgs · ID {conversation_id}"""

NO_QUOTES_PLACEHOLDER = "**No salient quotes captured.**"
