"""CLI driver for the self-improving agent backend.

A terminal stand-in for the browser client: it walks the same session
state machine against a running backend.  The voice session itself is
opened elsewhere (e.g. the vendor's web widget) using the printed signed
URL and overrides.

Usage:
    uv run python -m self_improving_agent.main            # normal mode (quiet)
    uv run python -m self_improving_agent.main --debug    # debug mode (shows HTTP calls)
"""

from __future__ import annotations

import argparse
import json
import logging
from typing import Any

from dotenv import load_dotenv

from self_improving_agent.client import BackendError, SessionController

logger = logging.getLogger(__name__)

HELP = "Commands: 'start', 'end', 'status', 'prompt', 'clear', 'quit'."


def _configure_logging(debug: bool = False) -> None:
    """Set up logging: WARNING by default, DEBUG when --debug is passed."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    )

    if not debug:
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)

    logging.getLogger("self_improving_agent").setLevel(logging.DEBUG if debug else logging.INFO)


class ExternalSession:
    """Session opened outside this process; ending it is the user's job."""

    def __init__(self, config: dict[str, Any]):
        self.config = config
        print("\n>> Signed URL:", config["signedUrl"])
        if "overrides" in config:
            print(">> Overrides:", json.dumps(config["overrides"])[:200], "…")
        print(">> Connect with the voice SDK, then type 'end' when the call is over.\n")

    def end_session(self) -> None:
        print(">> Session ended.")


def main():
    """Run the interactive session loop."""
    parser = argparse.ArgumentParser(description="Self-improving agent session CLI")
    parser.add_argument(
        "--debug", action="store_true",
        help="Show all log messages including HTTP requests",
    )
    parser.add_argument("--backend", default=None, help="Backend base URL")
    args = parser.parse_args()

    load_dotenv()
    _configure_logging(debug=args.debug)

    kwargs = {"base_url": args.backend} if args.backend else {}
    controller = SessionController(ExternalSession, **kwargs)

    print("\n" + "=" * 60)
    print("  Self-Improving Voice Agent - Session CLI")
    print("=" * 60)
    print("  " + HELP)
    print("=" * 60 + "\n")

    try:
        controller.load_initial_status()
        print(controller.version_details)
    except BackendError as e:
        logger.warning("Failed to load initial agent status: %s", e)

    while True:
        try:
            command = input(f"[{controller.state}] > ").strip().lower()
        except (KeyboardInterrupt, EOFError):
            print("\n\nGoodbye!")
            break

        if not command:
            continue

        if command in ("exit", "quit", "q"):
            print("\nGoodbye!")
            break

        try:
            if command == "start":
                controller.start_conversation()
            elif command == "end":
                print("Improving agent…")
                if controller.end_conversation():
                    print(f"\n{controller.version_details}")
                    print(f"Conversations completed: {controller.completed_conversations}\n")
                else:
                    print("\nNo new version (see log for details).\n")
            elif command == "status":
                print(json.dumps(controller.load_initial_status(), indent=2))
            elif command == "prompt":
                print(controller.evolved_prompt or "No evolved prompt available yet")
                print(controller.prompt_stats())
            elif command == "clear":
                controller.clear_evolved_prompt()
                print("Evolved prompt cleared")
            else:
                print(HELP)
        except KeyboardInterrupt:
            print("\n\nGoodbye!")
            break
        except Exception as e:
            logger.exception("Error handling command %r", command)
            print(f"\nSomething went wrong: {e}\n")

    controller.close()


if __name__ == "__main__":
    main()
