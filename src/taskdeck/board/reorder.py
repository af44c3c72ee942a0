# src/taskdeck/board/reorder.py

"""
Reorder protocol.

Moving an item = remove it from the position-ordered sequence, reinsert it at the
target index, then rewrite every position to its dense index 0..n-1.

For columns the primary column (index 0) is pinned: it cannot be dragged and
nothing can be dropped at index 0.

Drag gestures are local until drop: ColumnDrag previews the new order without
touching the store and dispatches exactly one reorder when the gesture ends.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import replace
from enum import Enum
from typing import TypeVar

from ..core.errors import NotFoundError, ValidationError
from .models import Column, Record

logger = logging.getLogger(__name__)

T = TypeVar("T", Column, Record)


def move_item(
    items: Sequence[T],
    item_id: str,
    new_index: int,
    *,
    pinned_head: bool = False,
    by_position: bool = True,
) -> tuple[T, ...]:
    """
    Return the items in their new order with dense positions.

    Items are taken in position order (or as given when by_position is False).
    When new_index equals the current index the order is kept and only the
    positions are re-densified.
    """
    ordered = sorted(items, key=lambda i: i.position) if by_position else list(items)
    index = next((n for n, i in enumerate(ordered) if i.id == item_id), None)
    if index is None:
        raise NotFoundError(f"Item not found: {item_id}")
    if not 0 <= new_index < len(ordered):
        raise ValidationError(f"Position {new_index} is out of range 0..{len(ordered) - 1}")
    if pinned_head and (index == 0 or new_index == 0):
        raise ValidationError("The primary column stays at position 0")

    if index != new_index:
        moving = ordered.pop(index)
        ordered.insert(new_index, moving)
    return tuple(i if i.position == n else replace(i, position=n) for n, i in enumerate(ordered))


def changed_positions(before: Sequence[T], after: Sequence[T]) -> dict[str, int]:
    """id -> new position for every item whose position changed."""
    old = {i.id: i.position for i in before}
    return {i.id: i.position for i in after if old.get(i.id) != i.position}


def positions_are_dense(items: Sequence[Column | Record]) -> bool:
    return sorted(i.position for i in items) == list(range(len(items)))


class DragPhase(Enum):
    IDLE = "idle"
    DRAGGING = "dragging"
    SETTLING = "settling"


ReorderFn = Callable[[str, int], Awaitable[bool]]


class ColumnDrag:
    """
    Drag-and-drop state machine for column headers.

    idle --start--> dragging --drop--> settling --(reorder finished)--> idle
    dragging --cancel--> idle
    """

    def __init__(self, columns: Callable[[], Sequence[Column]], reorder: ReorderFn) -> None:
        self._columns = columns
        self._reorder = reorder
        self.phase = DragPhase.IDLE
        self.active_id: str | None = None
        self.over_id: str | None = None

    def start(self, column_id: str) -> bool:
        if self.phase != DragPhase.IDLE:
            return False
        col = next((c for c in self._columns() if c.id == column_id), None)
        if col is None or col.is_primary:
            return False
        self.phase = DragPhase.DRAGGING
        self.active_id = column_id
        self.over_id = None
        return True

    def move(self, over_id: str | None) -> None:
        if self.phase == DragPhase.DRAGGING:
            self.over_id = over_id

    def _target_index(self) -> int | None:
        if self.active_id is None or self.over_id is None or self.over_id == self.active_id:
            return None
        ordered = sorted(self._columns(), key=lambda c: c.position)
        index = next((n for n, c in enumerate(ordered) if c.id == self.over_id), None)
        if index is None or index == 0:
            return None
        return index

    def preview(self) -> tuple[Column, ...]:
        """Order to display while dragging. The store is not touched."""
        cols = tuple(sorted(self._columns(), key=lambda c: c.position))
        target = self._target_index()
        if self.phase != DragPhase.DRAGGING or target is None or self.active_id is None:
            return cols
        return move_item(cols, self.active_id, target, pinned_head=True)

    def cancel(self) -> None:
        if self.phase == DragPhase.DRAGGING:
            self._reset()

    async def drop(self) -> bool:
        """End the gesture; dispatches a single reorder if the column moved."""
        if self.phase != DragPhase.DRAGGING or self.active_id is None:
            return False
        target = self._target_index()
        if target is None:
            self._reset()
            return False

        self.phase = DragPhase.SETTLING
        try:
            return await self._reorder(self.active_id, target)
        finally:
            self._reset()

    def _reset(self) -> None:
        self.phase = DragPhase.IDLE
        self.active_id = None
        self.over_id = None
