# src/taskdeck/board/models.py

"""
Board entities.

Every entity is a frozen dataclass so that a tuple of them can be used as an
immutable rollback snapshot. Mutations always build new objects (dataclasses.replace)
and new property dicts; nothing is edited in place.

Wire form is a plain JSON-serializable dict (to_dict / from_dict).
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import StrEnum
from typing import Any


class ColumnType(StrEnum):
    TEXT = "text"
    NUMBER = "number"
    STATUS = "status"
    SELECT = "select"
    MULTISELECT = "multiselect"
    DATE = "date"
    BOOLEAN = "boolean"
    PERSON = "person"

    @property
    def has_choices(self) -> bool:
        return self in (ColumnType.STATUS, ColumnType.SELECT, ColumnType.MULTISELECT)


class NumberFormat(StrEnum):
    NUMBER = "number"
    DECIMAL = "decimal"
    PERCENT = "percent"
    CURRENCY_USD = "currency_usd"
    CURRENCY_BRL = "currency_brl"

    @classmethod
    def parse(cls, raw: Any) -> NumberFormat:
        try:
            return cls(str(raw))
        except ValueError:
            return cls.NUMBER


class Role(StrEnum):
    OWNER = "owner"
    EDITOR = "editor"
    VIEWER = "viewer"


class FilterOperator(StrEnum):
    EQUALS = "equals"
    CONTAINS = "contains"
    NOT_EQUALS = "not_equals"
    IS_EMPTY = "is_empty"
    IS_NOT_EMPTY = "is_not_empty"


def now_iso() -> str:
    return datetime.now().astimezone().isoformat()


@dataclass(frozen=True, slots=True)
class ColumnOption:
    id: str
    label: str
    color: str

    def to_dict(self) -> dict[str, str]:
        return {"id": self.id, "label": self.label, "color": self.color}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ColumnOption:
        label = str(data.get("label", ""))
        return cls(
            id=str(data.get("id") or slugify(label)),
            label=label,
            color=str(data.get("color") or "gray"),
        )


@dataclass(frozen=True, slots=True)
class Column:
    id: str
    board_id: str
    name: str
    type: ColumnType
    position: int
    choices: tuple[ColumnOption, ...] = ()
    number_format: NumberFormat | None = None

    @property
    def is_primary(self) -> bool:
        return self.position == 0

    def option_labels(self) -> list[str]:
        return [o.label for o in self.choices]

    def options_payload(self) -> dict[str, Any]:
        """Type-dependent options payload as stored remotely."""
        if self.type.has_choices:
            return {"choices": [o.to_dict() for o in self.choices]}
        if self.type == ColumnType.NUMBER:
            return {"format": (self.number_format or NumberFormat.NUMBER).value}
        return {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "board_id": self.board_id,
            "name": self.name,
            "type": self.type.value,
            "position": self.position,
            "options": self.options_payload(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Column:
        options = data.get("options") or {}
        if not isinstance(options, dict):
            options = {}
        try:
            col_type = ColumnType(str(data.get("type", "text")))
        except ValueError:
            col_type = ColumnType.TEXT
        choices = tuple(
            ColumnOption.from_dict(o) for o in options.get("choices") or [] if isinstance(o, dict)
        )
        number_format = None
        if col_type == ColumnType.NUMBER:
            number_format = NumberFormat.parse(options.get("format", "number"))
        return cls(
            id=str(data["id"]),
            board_id=str(data.get("board_id", "")),
            name=str(data.get("name", "")),
            type=col_type,
            position=int(data.get("position") or 0),
            choices=choices,
            number_format=number_format,
        )


@dataclass(frozen=True, slots=True)
class Record:
    id: str
    board_id: str
    position: int
    created_at: str
    updated_at: str
    properties: dict[str, Any] = field(default_factory=dict)

    def get(self, key: str, default: Any = None) -> Any:
        return self.properties.get(key, default)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "board_id": self.board_id,
            "position": self.position,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "properties": dict(self.properties),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Record:
        props = data.get("properties") or {}
        return cls(
            id=str(data["id"]),
            board_id=str(data.get("board_id", "")),
            position=int(data.get("position") or 0),
            created_at=str(data.get("created_at") or ""),
            updated_at=str(data.get("updated_at") or ""),
            properties=dict(props) if isinstance(props, dict) else {},
        )


@dataclass(frozen=True, slots=True)
class Member:
    id: str
    board_id: str
    user_ref: str
    role: Role
    email: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "board_id": self.board_id,
            "user_ref": self.user_ref,
            "role": self.role.value,
            "email": self.email,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Member:
        try:
            role = Role(str(data.get("role", "editor")))
        except ValueError:
            role = Role.VIEWER
        return cls(
            id=str(data["id"]),
            board_id=str(data.get("board_id", "")),
            user_ref=str(data.get("user_ref", "")),
            role=role,
            email=str(data.get("email") or ""),
        )


@dataclass(frozen=True, slots=True)
class Board:
    id: str
    name: str
    owner_ref: str
    color: str
    created_at: str = ""
    updated_at: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "owner_ref": self.owner_ref,
            "color": self.color,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Board:
        return cls(
            id=str(data["id"]),
            name=str(data.get("name", "")),
            owner_ref=str(data.get("owner_ref", "")),
            color=str(data.get("color") or ""),
            created_at=str(data.get("created_at") or ""),
            updated_at=str(data.get("updated_at") or ""),
        )


@dataclass(frozen=True, slots=True)
class FilterRule:
    id: str
    column_id: str
    operator: FilterOperator
    value: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FilterRule:
        return cls(
            id=str(data.get("id", "")),
            column_id=str(data.get("column_id", "")),
            operator=FilterOperator(str(data.get("operator", "contains"))),
            value=str(data.get("value") or ""),
        )


# ---- property values (validated only when read) ----


class PropertyKind(StrEnum):
    EMPTY = "empty"
    TEXT = "text"
    NUMBER = "number"
    OPTION = "option"
    OPTION_LIST = "option_list"
    DATE = "date"
    BOOLEAN = "boolean"
    PERSON = "person"
    RAW = "raw"


@dataclass(frozen=True, slots=True)
class PropertyValue:
    kind: PropertyKind
    value: Any = None

    @property
    def is_empty(self) -> bool:
        return self.kind == PropertyKind.EMPTY


EMPTY = PropertyValue(PropertyKind.EMPTY)


def parse_date(raw: Any) -> date | None:
    """Parse an ISO date or datetime string. Date-only values have no time component."""
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    if not isinstance(raw, str) or not raw.strip():
        return None
    s = raw.strip()
    try:
        if len(s) == 10:
            return date.fromisoformat(s)
        return datetime.fromisoformat(s.replace("Z", "+00:00")).date()
    except ValueError:
        return None


def _as_number(raw: Any) -> float | None:
    if isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        return float(raw)
    if isinstance(raw, str) and raw.strip():
        try:
            return float(raw.strip())
        except ValueError:
            return None
    return None


def read_property(column: Column, raw: Any) -> PropertyValue:
    """
    Interpret a stored value through the column's declared type.

    Values that do not fit the current type (e.g. left over after a type change)
    are returned as RAW instead of being coerced.
    """
    if raw is None or raw == "" or raw == []:
        return EMPTY

    t = column.type
    if t == ColumnType.TEXT:
        return PropertyValue(PropertyKind.TEXT, raw) if isinstance(raw, str) else PropertyValue(PropertyKind.RAW, raw)

    if t == ColumnType.NUMBER:
        num = _as_number(raw)
        return PropertyValue(PropertyKind.NUMBER, num) if num is not None else PropertyValue(PropertyKind.RAW, raw)

    if t in (ColumnType.STATUS, ColumnType.SELECT):
        if isinstance(raw, str) and raw in column.option_labels():
            return PropertyValue(PropertyKind.OPTION, raw)
        return PropertyValue(PropertyKind.RAW, raw)

    if t == ColumnType.MULTISELECT:
        labels = column.option_labels()
        if isinstance(raw, list) and all(isinstance(v, str) and v in labels for v in raw):
            return PropertyValue(PropertyKind.OPTION_LIST, tuple(raw))
        return PropertyValue(PropertyKind.RAW, raw)

    if t == ColumnType.DATE:
        d = parse_date(raw)
        return PropertyValue(PropertyKind.DATE, d) if d is not None else PropertyValue(PropertyKind.RAW, raw)

    if t == ColumnType.BOOLEAN:
        return PropertyValue(PropertyKind.BOOLEAN, raw) if isinstance(raw, bool) else PropertyValue(PropertyKind.RAW, raw)

    if t == ColumnType.PERSON:
        return PropertyValue(PropertyKind.PERSON, raw) if isinstance(raw, str) else PropertyValue(PropertyKind.RAW, raw)

    return PropertyValue(PropertyKind.RAW, raw)


_SLUG_RE = re.compile(r"[^a-z0-9]+")


def slugify(text: str) -> str:
    return _SLUG_RE.sub("_", (text or "").strip().lower()).strip("_") or "option"
