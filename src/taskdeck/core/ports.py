# src/taskdeck/core/ports.py

"""
Ports (interfaces) used by the board data layer.

The data layer depends on Protocols instead of concrete implementations.
This keeps persistence/storage/notification swappable and makes testing easier.
"""

from __future__ import annotations

from typing import Any, Protocol

Entity = dict[str, Any]
# JSON-serializable entity keyed by a stable string "id".

COLLECTIONS = ("boards", "columns", "records", "members")


class Collection(Protocol):
    """
    One remote collection (boards / columns / records / members).

    Any exception raised by these calls is treated as a remote failure, except
    ConflictError which the caller may surface as-is.
    """

    async def list(self, *, board_id: str | None = None, order_by: str = "position") -> list[Entity]: ...

    async def insert(self, entity: Entity) -> Entity:
        """Persist a new entity. The server assigns id, created_at and updated_at."""
        ...

    async def update(self, entity_id: str, fields: Entity) -> None: ...
    async def delete(self, entity_id: str) -> None: ...


class Persistence(Protocol):
    def collection(self, name: str) -> Collection: ...


class FileStorage(Protocol):
    async def upload(self, data: bytes, suggested_name: str) -> str:
        """Store bytes and return a retrievable reference (URL/URI)."""
        ...


class UserDirectory(Protocol):
    async def find_user_by_email(self, email: str) -> str | None: ...


class Notifier(Protocol):
    """User-visible notification channel (toasts in a UI, lines in the console)."""

    def notify(self, message: str, *, level: str = "error") -> None: ...
