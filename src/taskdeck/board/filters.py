# src/taskdeck/board/filters.py

"""
Filter engine.

Rules are ANDed; an empty rule list matches everything. The free-text search is an
OR over every property value of a record and is ANDed with the rules.
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Sequence
from typing import Any

from .models import FilterOperator, FilterRule, Record


def as_text(value: Any) -> str:
    """Comparable string form of a stored value."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (list, tuple)):
        return ", ".join(as_text(v) for v in value)
    if isinstance(value, dict):
        return json.dumps(value, ensure_ascii=False, sort_keys=True)
    return str(value)


def is_empty_value(value: Any) -> bool:
    # Raw test: falsy or absent counts as empty.
    return not value


def rule_matches(record: Record, rule: FilterRule) -> bool:
    raw = record.properties.get(rule.column_id)
    op = rule.operator

    if op == FilterOperator.IS_EMPTY:
        return is_empty_value(raw)
    if op == FilterOperator.IS_NOT_EMPTY:
        return not is_empty_value(raw)

    current = as_text(raw).lower()
    target = (rule.value or "").lower()
    if op == FilterOperator.CONTAINS:
        return target in current
    if op == FilterOperator.EQUALS:
        return current == target
    if op == FilterOperator.NOT_EQUALS:
        return current != target
    return True


def evaluate(record: Record, rules: Sequence[FilterRule]) -> bool:
    return all(rule_matches(record, rule) for rule in rules)


def matches_search(record: Record, query: str | None) -> bool:
    q = (query or "").strip().lower()
    if not q:
        return True
    return any(q in as_text(v).lower() for v in record.properties.values())


def filter_records(
    records: Iterable[Record],
    rules: Sequence[FilterRule] = (),
    search: str | None = None,
) -> list[Record]:
    """Records passing both the search and the rules, in store order."""
    return [r for r in records if matches_search(r, search) and evaluate(r, rules)]
