# src/taskdeck/cli/main.py

"""
CLI entrypoint.

Initializes logging, builds AppState, opens the most recent board (if any),
then runs the console REPL on the event loop.
"""

from __future__ import annotations

import asyncio
import logging

from ..config import get_settings
from ..logging_setup import setup_logging
from .bootstrap import AppState, create_initial_state, open_board
from .console import run_console_loop

logger = logging.getLogger(__name__)


async def _run(state: AppState) -> None:
    if await state.catalog.load() and state.catalog.boards:
        await open_board(state, state.catalog.boards[0].id)

    if state.settings.console_enabled:
        await run_console_loop(state)
    else:
        logger.info("Console disabled; nothing to do.")


def main() -> None:
    settings = get_settings()

    # choose console log level from settings.log_level
    level_name = str(getattr(settings, "log_level", "INFO")).upper()
    console_level = getattr(logging, level_name, logging.INFO)
    setup_logging(log_dir=settings.log_dir, console_level=console_level)

    logger.info("Starting %s...", settings.app_name)
    state = create_initial_state(settings=settings)

    try:
        asyncio.run(_run(state))
    except KeyboardInterrupt:
        logger.info("Interrupted.")
    finally:
        logger.info("Bye.")


if __name__ == "__main__":
    main()
