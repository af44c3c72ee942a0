# src/taskdeck/board/catalog.py

"""
Board catalog: the list of boards visible to the user.

Creating a board also creates its default columns and the owner membership.
Updates and deletes are optimistic with rollback, like every other mutation.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from dataclasses import replace
from typing import Any

from ..core.errors import NotFoundError, RemoteFailure, ValidationError, friendly_failure_message
from ..core.ports import Notifier, Persistence
from ..core.state import NoticeLog
from .models import Board, Role, now_iso
from .schema import default_board_columns

logger = logging.getLogger(__name__)

BOARD_COLORS: dict[str, str] = {
    "blue": "#2383e2",
    "purple": "#9d68d3",
    "pink": "#d15796",
    "red": "#df5452",
    "orange": "#cc7d24",
    "green": "#529e72",
    "gray": "#8b8b8b",
    "teal": "#4ecdc4",
}
DEFAULT_COLOR = BOARD_COLORS["blue"]


def _color(raw: str | None) -> str:
    if not raw:
        return DEFAULT_COLOR
    return BOARD_COLORS.get(raw.strip().lower(), raw.strip())


class BoardCatalog:
    def __init__(self, persistence: Persistence, *, notifier: Notifier | None = None) -> None:
        self._boards_repo = persistence.collection("boards")
        self._columns_repo = persistence.collection("columns")
        self._members_repo = persistence.collection("members")
        self.notifier: Notifier = notifier or NoticeLog()
        self._boards: tuple[Board, ...] = ()

    @property
    def boards(self) -> tuple[Board, ...]:
        return self._boards

    def get(self, board_id: str) -> Board:
        for b in self._boards:
            if b.id == board_id:
                return b
        raise NotFoundError(f"Board not found: {board_id}")

    def _report(self, failure: RemoteFailure) -> None:
        logger.warning("Remote failure: %s", failure, exc_info=failure.cause)
        self.notifier.notify(friendly_failure_message(failure), level="error")

    async def load(self) -> bool:
        """Boards newest first."""
        try:
            rows = await self._boards_repo.list(order_by="created_at")
        except Exception as exc:
            self._report(RemoteFailure("load_boards", None, exc))
            return False
        boards = [Board.from_dict(r) for r in rows]
        boards.sort(key=lambda b: b.created_at, reverse=True)
        self._boards = tuple(boards)
        return True

    async def create_board(self, name: str, owner_ref: str, color: str | None = None) -> Board | None:
        """
        Create a board with the default columns and its owner membership.

        A failure while creating columns or the membership is reported but keeps
        the board (it can be fixed from the board itself).
        """
        clean = (name or "").strip()
        if not clean:
            raise ValidationError("Board name is required")
        if not owner_ref:
            raise ValidationError("Board owner is required")

        try:
            created = Board.from_dict(
                await self._boards_repo.insert({"name": clean, "owner_ref": owner_ref, "color": _color(color)})
            )
        except Exception as exc:
            self._report(RemoteFailure("create_board", None, exc))
            return None

        results = await asyncio.gather(
            *(self._columns_repo.insert(col) for col in default_board_columns(created.id)),
            self._members_repo.insert({"board_id": created.id, "user_ref": owner_ref, "role": Role.OWNER.value}),
            return_exceptions=True,
        )
        errors = [r for r in results if isinstance(r, Exception)]
        if errors:
            self._report(RemoteFailure("create_board_defaults", created.id, errors[0]))

        self._boards = (created, *self._boards)
        logger.info("Board created id=%s name=%s", created.id, created.name)
        return created

    async def update_board(self, board_id: str, changes: Mapping[str, Any]) -> bool:
        before = self._boards
        board = self.get(board_id)
        fields: dict[str, Any] = {}
        if "name" in changes:
            name = str(changes["name"] or "").strip()
            if not name:
                raise ValidationError("Board name is required")
            fields["name"] = name
        if "color" in changes:
            fields["color"] = _color(changes["color"])
        if not fields:
            return True

        updated = replace(board, updated_at=now_iso(), **fields)
        self._boards = tuple(updated if b.id == board_id else b for b in before)
        try:
            await self._boards_repo.update(board_id, fields)
        except Exception as exc:
            self._boards = before
            self._report(RemoteFailure("update_board", board_id, exc))
            return False
        return True

    async def delete_board(self, board_id: str) -> bool:
        before = self._boards
        self.get(board_id)
        self._boards = tuple(b for b in before if b.id != board_id)
        try:
            await self._boards_repo.delete(board_id)
        except Exception as exc:
            self._boards = before
            self._report(RemoteFailure("delete_board", board_id, exc))
            return False
        return True
