# src/taskdeck/core/state.py

"""
Observable in-memory board state.

Holds immutable tuples of entities. Every write replaces a whole tuple, so a
previously taken tuple is a valid rollback snapshot and restoring it is a
pointer-level assignment. Subscribers are notified only when something actually
changed, which makes repeated identical rollbacks no-ops.
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from ..board.models import Column, Member, Record

logger = logging.getLogger(__name__)

Listener = Callable[["BoardSnapshot"], None]


@dataclass(frozen=True, slots=True)
class BoardSnapshot:
    board_id: str
    columns: tuple[Column, ...]
    records: tuple[Record, ...]
    members: tuple[Member, ...]


class BoardState:
    def __init__(self, board_id: str) -> None:
        self.board_id = board_id
        self._columns: tuple[Column, ...] = ()
        self._records: tuple[Record, ...] = ()
        self._members: tuple[Member, ...] = ()
        self._listeners: list[Listener] = []

    # ---- reads ----

    @property
    def columns(self) -> tuple[Column, ...]:
        return self._columns

    @property
    def records(self) -> tuple[Record, ...]:
        return self._records

    @property
    def members(self) -> tuple[Member, ...]:
        return self._members

    def snapshot(self) -> BoardSnapshot:
        return BoardSnapshot(self.board_id, self._columns, self._records, self._members)

    # ---- writes ----

    def set_columns(self, columns: tuple[Column, ...]) -> None:
        if columns is self._columns:
            return
        self._columns = columns
        self._emit()

    def set_records(self, records: tuple[Record, ...]) -> None:
        if records is self._records:
            return
        self._records = records
        self._emit()

    def set_members(self, members: tuple[Member, ...]) -> None:
        if members is self._members:
            return
        self._members = members
        self._emit()

    # ---- subscriptions ----

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self) -> None:
        snap = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snap)
            except Exception:
                logger.exception("Board state listener failed")


@dataclass(frozen=True, slots=True)
class Notice:
    level: str
    message: str
    at: str


class NoticeLog:
    """Default Notifier: keeps the latest notices for the presentation layer."""

    def __init__(self, max_items: int = 50) -> None:
        self._items: deque[Notice] = deque(maxlen=max(1, int(max_items)))

    def notify(self, message: str, *, level: str = "error") -> None:
        self._items.append(Notice(level=level, message=message, at=datetime.now().astimezone().isoformat()))
        log = logger.warning if level in ("error", "warning") else logger.info
        log("Notice [%s]: %s", level, message)

    def items(self) -> list[Notice]:
        return list(self._items)

    def drain(self) -> list[Notice]:
        out = list(self._items)
        self._items.clear()
        return out
