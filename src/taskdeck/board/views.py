# src/taskdeck/board/views.py

"""
View projector.

Stateless functions over (columns, records, rules[, search]) that derive what each
view shows. No view keeps its own copy of the records.
"""

from __future__ import annotations

import calendar
import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import date
from typing import Any

from .filters import as_text, filter_records
from .models import (
    Column,
    ColumnType,
    FilterRule,
    NumberFormat,
    PropertyValue,
    Record,
    parse_date,
    read_property,
)
from .schema import date_column, find_column, status_column

logger = logging.getLogger(__name__)

# Fallback lane key. Option labels are strings, so no label can collide with it.
NO_STATUS_KEY = None
NO_STATUS_LABEL = "No status"
NO_VALUE_LABEL = "(no value)"
COUNT = "count"


def ordered_columns(columns: Iterable[Column]) -> list[Column]:
    return sorted(columns, key=lambda c: c.position)


# ---- table ----


@dataclass(frozen=True, slots=True)
class TableRow:
    record: Record
    cells: tuple[PropertyValue, ...]


@dataclass(frozen=True, slots=True)
class TablePage:
    columns: tuple[Column, ...]
    rows: tuple[TableRow, ...]
    total: int
    page_size: int

    @property
    def has_more(self) -> bool:
        return self.total > len(self.rows)


def table_view(
    columns: Sequence[Column],
    records: Sequence[Record],
    rules: Sequence[FilterRule] = (),
    *,
    search: str | None = None,
    page_size: int = 25,
) -> TablePage:
    """Filtered records in store order, truncated to page_size."""
    cols = tuple(ordered_columns(columns))
    matched = filter_records(records, rules, search)
    size = max(0, int(page_size))
    rows = tuple(
        TableRow(record=r, cells=tuple(read_property(c, r.properties.get(c.id)) for c in cols))
        for r in matched[:size]
    )
    return TablePage(columns=cols, rows=rows, total=len(matched), page_size=size)


def grow_page(page_size: int, step: int = 25) -> int:
    """Show more rows: the table grows its page instead of paging with tokens."""
    return max(0, int(page_size)) + max(1, int(step))


# ---- kanban ----


@dataclass(frozen=True, slots=True)
class Lane:
    key: str | None
    label: str
    color: str
    records: tuple[Record, ...]

    @property
    def is_fallback(self) -> bool:
        return self.key is NO_STATUS_KEY


@dataclass(frozen=True, slots=True)
class KanbanBoard:
    status_column: Column | None
    lanes: tuple[Lane, ...]

    def lane(self, key: str | None) -> Lane | None:
        for lane in self.lanes:
            if lane.key == key:
                return lane
        return None


def kanban_view(
    columns: Sequence[Column],
    records: Sequence[Record],
    rules: Sequence[FilterRule] = (),
    *,
    search: str | None = None,
) -> KanbanBoard:
    """
    Partition filtered records into one lane per status option plus a fallback lane.

    Lane keys are option labels (that is what records store). A record whose value
    is empty or not a declared label goes to the fallback lane, so every record
    lands in exactly one lane.
    """
    status = status_column(columns)
    matched = filter_records(records, rules, search)

    buckets: dict[str, list[Record]] = {}
    meta: list[tuple[str, str]] = []
    if status is not None:
        for opt in status.choices:
            if opt.label in buckets:
                continue
            buckets[opt.label] = []
            meta.append((opt.label, opt.color))
    fallback: list[Record] = []

    for rec in matched:
        value = rec.properties.get(status.id) if status is not None else None
        if isinstance(value, str) and value in buckets:
            buckets[value].append(rec)
        else:
            fallback.append(rec)

    lanes = [Lane(key=label, label=label, color=color, records=tuple(buckets[label])) for label, color in meta]
    lanes.append(Lane(key=NO_STATUS_KEY, label=NO_STATUS_LABEL, color="gray", records=tuple(fallback)))
    return KanbanBoard(status_column=status, lanes=tuple(lanes))


def lane_patch(board: KanbanBoard, record: Record, lane_key: str | None) -> dict[str, Any] | None:
    """
    Property patch that moves a record into a lane, or None when nothing changes.
    """
    status = board.status_column
    if status is None or board.lane(lane_key) is None:
        return None
    new_value = "" if lane_key is NO_STATUS_KEY else lane_key
    current = record.properties.get(status.id) or ""
    if current == new_value:
        return None
    return {status.id: new_value}


# ---- calendar ----


def day_of(raw: Any) -> date | None:
    """
    Calendar day of a stored date value.

    Date-only strings become plain dates, never midnight timestamps, so no
    timezone conversion can move them to a neighbouring day. Timestamps keep the
    wall-clock date of their own offset.
    """
    return parse_date(raw)


def calendar_view(
    columns: Sequence[Column],
    records: Sequence[Record],
    rules: Sequence[FilterRule] = (),
    *,
    search: str | None = None,
    date_column_id: str | None = None,
) -> dict[date, tuple[Record, ...]]:
    """
    Bucket filtered records by day of the board's date column.

    Records without a (parseable) date are left out.
    """
    col = find_column(columns, date_column_id) if date_column_id else date_column(columns)
    if col is None:
        return {}

    buckets: dict[date, list[Record]] = {}
    for rec in filter_records(records, rules, search):
        raw = rec.properties.get(col.id)
        day = day_of(raw)
        if day is None:
            if raw:
                logger.debug("Record %s has unparseable date %r; not shown on calendar", rec.id, raw)
            continue
        buckets.setdefault(day, []).append(rec)
    return {d: tuple(recs) for d, recs in sorted(buckets.items())}


def month_grid(year: int, month: int, *, first_weekday: int = calendar.SUNDAY) -> list[list[date]]:
    """Full weeks covering the month (leading/trailing days from adjacent months)."""
    cal = calendar.Calendar(firstweekday=first_weekday)
    return cal.monthdatescalendar(year, month)


# ---- statistics ----


@dataclass(frozen=True, slots=True)
class StatGroup:
    label: str
    value: float
    percentage: float


@dataclass(frozen=True, slots=True)
class StatsResult:
    category_column: Column | None
    value_column: Column | None
    groups: tuple[StatGroup, ...]
    total: float


def default_category_column(columns: Sequence[Column]) -> Column | None:
    status = status_column(columns)
    if status is not None:
        return status
    ordered = ordered_columns(columns)
    return ordered[0] if ordered else None


def _amount(raw: Any) -> float:
    if isinstance(raw, bool):
        return 0.0
    try:
        return float(raw)
    except (TypeError, ValueError):
        return 0.0


def stats_view(
    columns: Sequence[Column],
    records: Sequence[Record],
    rules: Sequence[FilterRule] = (),
    *,
    category_column_id: str,
    value_column_id: str = COUNT,
    search: str | None = None,
) -> StatsResult:
    """
    Group filtered records by a category column and aggregate count or sum.

    Summing is only done over number columns; any other value column counts.
    Non-numeric values add 0. Percentages are of the aggregate total.
    """
    cat = next((c for c in columns if c.id == category_column_id), None)
    if cat is None:
        return StatsResult(None, None, (), 0.0)

    val = None
    if value_column_id != COUNT:
        val = next((c for c in columns if c.id == value_column_id and c.type == ColumnType.NUMBER), None)

    groups: dict[str, float] = {}
    total = 0.0
    for rec in filter_records(records, rules, search):
        raw_cat = rec.properties.get(cat.id)
        label = as_text(raw_cat) if raw_cat else NO_VALUE_LABEL
        amount = _amount(rec.properties.get(val.id)) if val is not None else 1.0
        groups[label] = groups.get(label, 0.0) + amount
        total += amount

    out = tuple(
        StatGroup(label=label, value=value, percentage=round(value * 100 / total, 1) if total else 0.0)
        for label, value in groups.items()
    )
    return StatsResult(category_column=cat, value_column=val, groups=out, total=total)


# ---- number formatting ----


def _grouped(value: float, decimals: int, thousands: str, point: str) -> str:
    s = f"{value:,.{decimals}f}"
    return s.replace(",", "\0").replace(".", point).replace("\0", thousands)


def format_number(value: Any, fmt: NumberFormat | str | None = None) -> str:
    if value is None or value == "":
        return ""
    try:
        num = float(value)
    except (TypeError, ValueError):
        return str(value)

    f = NumberFormat.parse(fmt) if fmt is not None else NumberFormat.NUMBER
    if f == NumberFormat.CURRENCY_USD:
        sign = "-" if num < 0 else ""
        return f"{sign}${_grouped(abs(num), 2, ',', '.')}"
    if f == NumberFormat.CURRENCY_BRL:
        sign = "-" if num < 0 else ""
        return f"{sign}R$ {_grouped(abs(num), 2, '.', ',')}"
    if f == NumberFormat.DECIMAL:
        return _grouped(num, 2, ",", ".")
    if f == NumberFormat.PERCENT:
        return f"{num:g}%"
    return f"{int(num):,}" if num.is_integer() else f"{num:,g}"


def cell_text(column: Column, value: PropertyValue) -> str:
    """Plain-text rendering of a table cell."""
    if value.is_empty:
        return ""
    if column.type == ColumnType.NUMBER and isinstance(value.value, float):
        return format_number(value.value, column.number_format)
    if isinstance(value.value, date):
        return value.value.isoformat()
    return as_text(value.value)
