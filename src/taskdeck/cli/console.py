# src/taskdeck/cli/console.py

from __future__ import annotations

import asyncio
import logging
from datetime import datetime

from .bootstrap import AppState
from .commands import registry as command_registry

logger = logging.getLogger(__name__)


def _ts_local() -> str:
    return datetime.now().astimezone().strftime("%Y-%m-%d %H:%M:%S")


def _print_ts(text: str) -> None:
    print(f"[{_ts_local()}] {text}")


async def run_console_loop(state: AppState) -> None:
    """Read commands from stdin without blocking the event loop."""
    logger.info("Console started (board=%s).", state.session.board_id if state.session else None)
    _print_ts("[CONSOLE] Type /help for commands. Use /exit to quit.\n")

    while True:
        try:
            line = (await asyncio.to_thread(input, "taskdeck> ")).strip()
        except (EOFError, KeyboardInterrupt):
            print()
            break

        if not line:
            continue
        if line in ("/exit", "/quit"):
            break
        if not line.startswith("/"):
            print("Commands start with '/'. Try /help.")
            continue

        try:
            reply = await command_registry.handle(state, line)
        except Exception:
            logger.exception("Command failed: %s", line)
            reply = "Unexpected error (see log)."
        if reply:
            print(reply)

    logger.info("Console stopped.")
