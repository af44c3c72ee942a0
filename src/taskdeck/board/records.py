# src/taskdeck/board/records.py

"""
Record store: collection operations over tuples of Record.

Records carry a schema-less property bag keyed by column id. Keys that do not
belong to any column (checklist, attachments, description, orphaned column ids)
are kept as-is.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable, Mapping
from dataclasses import replace
from typing import Any

from ..core.errors import NotFoundError
from .models import Record, now_iso

TEMP_PREFIX = "tmp-"


def temp_id() -> str:
    return f"{TEMP_PREFIX}{uuid.uuid4().hex}"


def is_temp_id(entity_id: str) -> bool:
    return entity_id.startswith(TEMP_PREFIX)


def new_record(board_id: str, properties: Mapping[str, Any], *, record_id: str | None = None) -> Record:
    ts = now_iso()
    return Record(
        id=record_id or temp_id(),
        board_id=board_id,
        position=0,
        created_at=ts,
        updated_at=ts,
        properties=dict(properties),
    )


def find_record(records: Iterable[Record], record_id: str) -> Record:
    for rec in records:
        if rec.id == record_id:
            return rec
    raise NotFoundError(f"Record not found: {record_id}")


def prepend(records: tuple[Record, ...], record: Record) -> tuple[Record, ...]:
    """Newest first."""
    return (record, *records)


def merge_properties(base: Mapping[str, Any], patch: Mapping[str, Any]) -> dict[str, Any]:
    """Shallow merge: keys in patch win, untouched keys are kept."""
    merged = dict(base)
    merged.update(patch)
    return merged


def patch_record(records: tuple[Record, ...], record_id: str, patch: Mapping[str, Any]) -> tuple[Record, ...]:
    current = find_record(records, record_id)
    updated = replace(current, properties=merge_properties(current.properties, patch), updated_at=now_iso())
    return tuple(updated if r.id == record_id else r for r in records)


def swap_record(records: tuple[Record, ...], old_id: str, record: Record) -> tuple[Record, ...] | None:
    """Replace the entry with id old_id by record, wherever it is now. None if absent."""
    if not any(r.id == old_id for r in records):
        return None
    return tuple(record if r.id == old_id else r for r in records)


def remove_record(records: tuple[Record, ...], record_id: str) -> tuple[Record, ...]:
    find_record(records, record_id)
    return tuple(r for r in records if r.id != record_id)


# ---- extension properties ----


def checklist_progress(record: Record) -> int:
    """Percentage (0..100) of completed checklist items."""
    items = record.get("checklist") or []
    if not isinstance(items, list) or not items:
        return 0
    done = sum(1 for i in items if isinstance(i, dict) and i.get("completed"))
    return round(done * 100 / len(items))


def checklist_with_item(record: Record, text: str) -> list[dict[str, Any]]:
    items = list(record.get("checklist") or [])
    items.append({"id": uuid.uuid4().hex, "text": text, "completed": False})
    return items


def checklist_toggled(record: Record, item_id: str) -> list[dict[str, Any]]:
    items = record.get("checklist") or []
    if not any(isinstance(i, dict) and i.get("id") == item_id for i in items):
        raise NotFoundError(f"Checklist item not found: {item_id}")
    return [
        {**i, "completed": not i.get("completed")} if isinstance(i, dict) and i.get("id") == item_id else i
        for i in items
    ]


def attachments_with(record: Record, *, name: str, url: str, size: int) -> list[dict[str, Any]]:
    items = list(record.get("attachments") or [])
    items.append({"id": uuid.uuid4().hex, "name": name, "url": url, "size": size, "uploaded_at": now_iso()})
    return items
