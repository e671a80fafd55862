"""Interactive read-print loop and console entry point."""

from __future__ import annotations

import sys
from typing import TextIO

import structlog

from nutribot.agent.planner import ChatAgent
from nutribot.app import build_application
from nutribot.config import load_config
from nutribot.errors import ModelProviderError, NutribotError, ToolLoopExceeded
from nutribot.obs.logging import setup_logging

logger = structlog.get_logger(__name__)

TOOL_LOOP_APOLOGY = (
    "Sorry, I got stuck calling tools while working on that. "
    "Could you rephrase the question?"
)


def run_loop(agent: ChatAgent, stdin: TextIO, stdout: TextIO, *, banner: str = "") -> int:
    """Read one line at a time and print the agent's answer until end of input."""

    if banner:
        stdout.write(f"\n{banner}\n")
    while True:
        stdout.write("\nUSER: ")
        stdout.flush()
        line = stdin.readline()
        if not line:
            stdout.write("\n")
            return 0

        user_text = line.rstrip("\r\n")
        try:
            text = agent.respond(user_text).text
        except ToolLoopExceeded as exc:
            logger.warning("turn_failed", error=str(exc))
            text = TOOL_LOOP_APOLOGY
        except ModelProviderError as exc:
            logger.warning("turn_failed", error=str(exc))
            text = f"Sorry, I could not reach the language model ({exc})."
        stdout.write(f"\nASSISTANT: {text}\n")
        stdout.flush()


def main() -> int:
    try:
        config = load_config()
    except NutribotError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    setup_logging(config.logging.level, config.logging.format)

    try:
        application = build_application(config)
    except NutribotError as exc:
        logger.error("startup_failed", error=str(exc))
        print(f"error: {exc}", file=sys.stderr)
        return 1

    try:
        return run_loop(application.agent, sys.stdin, sys.stdout, banner=config.banner)
    except KeyboardInterrupt:
        return 130
    finally:
        application.close()


if __name__ == "__main__":
    raise SystemExit(main())
