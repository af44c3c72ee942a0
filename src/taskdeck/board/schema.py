# src/taskdeck/board/schema.py

"""
Schema model: column definitions and their option payloads.

Pure functions over tuples of Column. The mutation engine applies them locally
and mirrors the result to persistence.

Changing a column's type never touches stored record values. A column switched
from status to text keeps showing the old labels as plain strings; values that no
longer fit the type are surfaced as RAW by read_property().
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import replace
from typing import Any

from ..core.errors import NotFoundError, ValidationError
from .models import Column, ColumnOption, ColumnType, NumberFormat, slugify

logger = logging.getLogger(__name__)

OPTION_PALETTE = ("gray", "blue", "yellow", "green", "red", "purple", "pink", "orange", "teal")

DEFAULT_WORKFLOW = ("Backlog", "To Do", "In Progress", "Done", "Blocked")

_UPDATABLE = {"name", "type", "choices", "number_format", "options"}


def palette_color(index: int) -> str:
    return OPTION_PALETTE[index % len(OPTION_PALETTE)]


def default_choices(labels: Iterable[str] = DEFAULT_WORKFLOW) -> tuple[ColumnOption, ...]:
    return tuple(
        ColumnOption(id=slugify(label), label=label, color=palette_color(i)) for i, label in enumerate(labels)
    )


def parse_column_type(raw: Any) -> ColumnType:
    try:
        return ColumnType(str(raw).strip().lower())
    except ValueError:
        raise ValidationError(f"Unknown column type: {raw!r}") from None


def clean_name(name: Any) -> str:
    s = str(name or "").strip()
    if not s:
        raise ValidationError("Column name is required")
    return s


def normalize_choices(raw: Any) -> tuple[ColumnOption, ...]:
    """
    Accept options as ColumnOption objects, dicts or bare labels.

    Options without a color get one from the palette.
    """
    out: list[ColumnOption] = []
    for i, item in enumerate(raw or ()):
        if isinstance(item, ColumnOption):
            opt = item
        elif isinstance(item, Mapping):
            opt = ColumnOption.from_dict(dict(item))
            if not item.get("color"):
                opt = replace(opt, color=palette_color(i))
        else:
            label = str(item).strip()
            if not label:
                continue
            opt = ColumnOption(id=slugify(label), label=label, color=palette_color(i))
        out.append(opt)
    return tuple(out)


def build_column(
    *,
    column_id: str,
    board_id: str,
    name: str,
    col_type: ColumnType | str,
    position: int,
    options: Any = None,
) -> Column:
    """
    Create a column definition.

    `options` is type dependent: a list of options for status/select/multiselect
    (defaults to the baseline workflow when omitted), a number format for numbers.
    """
    ctype = col_type if isinstance(col_type, ColumnType) else parse_column_type(col_type)
    choices: tuple[ColumnOption, ...] = ()
    number_format: NumberFormat | None = None

    if ctype.has_choices:
        choices = normalize_choices(options) if options else default_choices()
    elif ctype == ColumnType.NUMBER:
        number_format = NumberFormat.parse(options) if options else NumberFormat.NUMBER

    return Column(
        id=column_id,
        board_id=board_id,
        name=clean_name(name),
        type=ctype,
        position=position,
        choices=choices,
        number_format=number_format,
    )


def find_column(columns: Iterable[Column], column_id: str) -> Column:
    for col in columns:
        if col.id == column_id:
            return col
    raise NotFoundError(f"Column not found: {column_id}")


def apply_column_update(column: Column, changes: Mapping[str, Any]) -> Column:
    """
    Return a new Column with a partial update applied.

    Accepted keys: name, type, choices (or options), number_format.
    The primary column (position 0) keeps its type.
    """
    unknown = set(changes) - _UPDATABLE
    if unknown:
        raise ValidationError(f"Cannot update column fields: {', '.join(sorted(unknown))}")

    updated = column
    if "name" in changes:
        updated = replace(updated, name=clean_name(changes["name"]))

    if "type" in changes:
        new_type = parse_column_type(changes["type"])
        if new_type != column.type:
            if column.is_primary:
                raise ValidationError("The primary column type cannot be changed")
            logger.debug("Column %s type %s -> %s (values kept as stored)", column.id, column.type, new_type)
            updated = replace(updated, type=new_type)
            if new_type.has_choices and not updated.choices:
                updated = replace(updated, choices=default_choices())
            if new_type == ColumnType.NUMBER and updated.number_format is None:
                updated = replace(updated, number_format=NumberFormat.NUMBER)

    raw_choices = changes.get("choices", changes.get("options"))
    if raw_choices is not None and updated.type.has_choices:
        updated = replace(updated, choices=normalize_choices(raw_choices))

    if "number_format" in changes and updated.type == ColumnType.NUMBER:
        updated = replace(updated, number_format=NumberFormat.parse(changes["number_format"]))

    return updated


def column_update_payload(column: Column) -> dict[str, Any]:
    return {"name": column.name, "type": column.type.value, "options": column.options_payload()}


def replace_column(columns: tuple[Column, ...], column: Column) -> tuple[Column, ...]:
    return tuple(column if c.id == column.id else c for c in columns)


def remove_column(columns: tuple[Column, ...], column_id: str) -> tuple[Column, ...]:
    """
    Drop a column and close the gap in positions.

    Record values stored under the column id are left in place as extension data.
    """
    target = find_column(columns, column_id)
    if target.is_primary:
        raise ValidationError("The primary column cannot be deleted")
    kept = sorted((c for c in columns if c.id != column_id), key=lambda c: c.position)
    return tuple(c if c.position == i else replace(c, position=i) for i, c in enumerate(kept))


def status_column(columns: Iterable[Column]) -> Column | None:
    """First column of type status, by position."""
    for col in sorted(columns, key=lambda c: c.position):
        if col.type == ColumnType.STATUS:
            return col
    return None


def date_column(columns: Iterable[Column]) -> Column | None:
    for col in sorted(columns, key=lambda c: c.position):
        if col.type == ColumnType.DATE:
            return col
    return None


def primary_column(columns: Iterable[Column]) -> Column | None:
    for col in columns:
        if col.position == 0:
            return col
    return None


DEFAULT_BOARD_COLUMNS: tuple[tuple[str, ColumnType], ...] = (
    ("Title", ColumnType.TEXT),
    ("Status", ColumnType.STATUS),
    ("Assignee", ColumnType.PERSON),
    ("Due date", ColumnType.DATE),
)


def default_board_columns(board_id: str) -> list[dict[str, Any]]:
    """Column entities inserted for a freshly created board (ids assigned by the server)."""
    out: list[dict[str, Any]] = []
    for pos, (name, ctype) in enumerate(DEFAULT_BOARD_COLUMNS):
        options = default_choices(DEFAULT_WORKFLOW[:4]) if ctype == ColumnType.STATUS else None
        col = build_column(column_id="", board_id=board_id, name=name, col_type=ctype, position=pos, options=options)
        data = col.to_dict()
        data.pop("id")
        out.append(data)
    return out
