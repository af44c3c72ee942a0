# src/taskdeck/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- wires concrete implementations (SQLite persistence, local file storage,
  notice log) into AppState.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from ..board.catalog import BoardCatalog
from ..board.models import FilterRule
from ..board.mutations import BoardSession
from ..config import get_settings
from ..core.state import NoticeLog
from ..persistence.file_storage import LocalFileStorage
from ..persistence.sqlite_service import SqliteBoardService

logger = logging.getLogger(__name__)


@dataclass
class AppState:
    settings: Any
    service: SqliteBoardService
    files: LocalFileStorage
    notices: NoticeLog
    catalog: BoardCatalog
    user_ref: str

    session: BoardSession | None = None
    rules: list[FilterRule] = field(default_factory=list)
    search: str = ""
    page_size: int = 25


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.db_path.parent.mkdir(parents=True, exist_ok=True)
    settings.attachments_dir.mkdir(parents=True, exist_ok=True)


def create_initial_state(*, settings=None) -> AppState:
    """
    Create AppState from the provided settings.

    Keeping settings injectable makes the app easier to test and avoids hidden global config reads.
    If settings is None, falls back to get_settings().
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    service = SqliteBoardService(settings.db_path)
    notices = NoticeLog()
    user_ref = service.add_profile(settings.user_email)

    return AppState(
        settings=settings,
        service=service,
        files=LocalFileStorage(settings.attachments_dir, max_bytes=settings.max_upload_bytes),
        notices=notices,
        catalog=BoardCatalog(service, notifier=notices),
        user_ref=user_ref,
        page_size=int(getattr(settings, "page_size", 25)),
    )


async def open_board(state: AppState, board_id: str) -> BoardSession:
    """Create a session for a board, load it and make it current."""
    session = BoardSession(
        board_id,
        state.service,
        notifier=state.notices,
        file_storage=state.files,
        user_directory=state.service,
    )
    await session.load()
    state.session = session
    state.rules = []
    state.search = ""
    state.page_size = int(getattr(state.settings, "page_size", 25))
    logger.info("Opened board %s", board_id)
    return session
