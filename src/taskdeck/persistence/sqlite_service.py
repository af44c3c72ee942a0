# src/taskdeck/persistence/sqlite_service.py

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import sqlite3
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any

from ..core.errors import ConflictError, NotFoundError, ValidationError
from ..core.ports import COLLECTIONS, Entity

logger = logging.getLogger(__name__)

_META_FIELDS = ("id", "board_id", "position", "created_at", "updated_at")
_ORDER_BY = {"position": "position ASC, created_at ASC", "created_at": "created_at ASC", "updated_at": "updated_at ASC"}

# Per-collection field that must be unique within a board.
_UNIQUE_FIELD = {"members": "user_ref"}


def _now() -> str:
    return datetime.now().astimezone().isoformat()


class SqliteBoardService:
    """
    SQLite-backed persistence for boards, columns, records and members.

    One table per collection with the entity body stored as JSON:
    - create table if missing
    - use PRAGMA table_info to detect missing columns
    - add columns with ALTER TABLE only when needed

    Thread-safety:
    - each call opens its own SQLite connection
    - blocking work runs in a worker thread (asyncio.to_thread)
    """

    def __init__(self, db_path: str | Path = "taskdeck.sqlite3") -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()
        self._collections = {name: SqliteCollection(self, name) for name in COLLECTIONS}
        logger.info("SqliteBoardService ready db=%s", self._db_path)

    def collection(self, name: str) -> SqliteCollection:
        try:
            return self._collections[name]
        except KeyError:
            raise ValidationError(f"Unknown collection: {name}") from None

    # ---- low-level helpers ----

    def connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        with contextlib.suppress(Exception):
            conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _ensure_schema(self) -> None:
        conn = self.connect()
        try:
            cur = conn.cursor()
            for name in COLLECTIONS:
                cur.execute(
                    f"""
                    CREATE TABLE IF NOT EXISTS {name} (
                        id TEXT PRIMARY KEY,
                        board_id TEXT,
                        position INTEGER NOT NULL DEFAULT 0,
                        data TEXT NOT NULL DEFAULT '{{}}',
                        created_at TEXT NOT NULL,
                        updated_at TEXT NOT NULL,
                        unique_key TEXT
                    )
                    """
                )
                cur.execute(f"PRAGMA table_info({name})")
                cols = {row["name"] for row in cur.fetchall()}
                if "unique_key" not in cols:
                    cur.execute(f"ALTER TABLE {name} ADD COLUMN unique_key TEXT")
                    logger.info("SqliteBoardService migration: added %s.unique_key", name)
                cur.execute(f"CREATE INDEX IF NOT EXISTS idx_{name}_board ON {name}(board_id, position)")
                cur.execute(
                    f"CREATE UNIQUE INDEX IF NOT EXISTS idx_{name}_unique ON {name}(board_id, unique_key)"
                )

            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS profiles (
                    id TEXT PRIMARY KEY,
                    email TEXT NOT NULL UNIQUE,
                    full_name TEXT NOT NULL DEFAULT ''
                )
                """
            )
            conn.commit()
        finally:
            conn.close()

    # ---- user directory ----

    def add_profile(self, email: str, full_name: str = "") -> str:
        """Register a user (used by the console front-end and tests)."""
        address = (email or "").strip().lower()
        if not address:
            raise ValidationError("email is required")
        conn = self.connect()
        try:
            row = conn.execute("SELECT id FROM profiles WHERE email = ?", (address,)).fetchone()
            if row:
                return str(row["id"])
            user_id = uuid.uuid4().hex
            conn.execute(
                "INSERT INTO profiles(id, email, full_name) VALUES (?, ?, ?)", (user_id, address, full_name)
            )
            conn.commit()
            return user_id
        finally:
            conn.close()

    def _find_profile(self, email: str) -> str | None:
        conn = self.connect()
        try:
            row = conn.execute(
                "SELECT id FROM profiles WHERE email = ?", ((email or "").strip().lower(),)
            ).fetchone()
            return str(row["id"]) if row else None
        finally:
            conn.close()

    async def find_user_by_email(self, email: str) -> str | None:
        return await asyncio.to_thread(self._find_profile, email)


class SqliteCollection:
    def __init__(self, service: SqliteBoardService, name: str) -> None:
        self._service = service
        self.name = name

    @staticmethod
    def _row_to_entity(row: sqlite3.Row) -> Entity:
        try:
            body = json.loads(row["data"] or "{}")
        except Exception:
            logger.exception("Corrupt JSON body id=%s; using {}", row["id"])
            body = {}
        if not isinstance(body, dict):
            body = {}
        body.update(
            id=row["id"],
            board_id=row["board_id"],
            position=int(row["position"] or 0),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )
        return body

    def _body(self, entity: Entity) -> str:
        return json.dumps({k: v for k, v in entity.items() if k not in _META_FIELDS}, ensure_ascii=False)

    def _unique_key(self, entity: Entity) -> str | None:
        field = _UNIQUE_FIELD.get(self.name)
        return str(entity[field]) if field and entity.get(field) else None

    def _get_row(self, conn: sqlite3.Connection, entity_id: str) -> sqlite3.Row:
        row = conn.execute(f"SELECT * FROM {self.name} WHERE id = ?", (entity_id,)).fetchone()
        if row is None:
            raise NotFoundError(f"{self.name}/{entity_id} not found")
        return row

    # ---- sync implementations ----

    def _list(self, board_id: str | None, order_by: str) -> list[Entity]:
        order = _ORDER_BY.get(order_by, _ORDER_BY["position"])
        conn = self._service.connect()
        try:
            if board_id is None:
                rows = conn.execute(f"SELECT * FROM {self.name} ORDER BY {order}").fetchall()
            else:
                rows = conn.execute(
                    f"SELECT * FROM {self.name} WHERE board_id = ? ORDER BY {order}", (board_id,)
                ).fetchall()
            return [self._row_to_entity(r) for r in rows]
        finally:
            conn.close()

    def _insert(self, entity: Entity) -> Entity:
        entity_id = uuid.uuid4().hex
        now = _now()
        conn = self._service.connect()
        try:
            try:
                conn.execute(
                    f"""
                    INSERT INTO {self.name}(id, board_id, position, data, created_at, updated_at, unique_key)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        entity_id,
                        entity.get("board_id"),
                        int(entity.get("position") or 0),
                        self._body(entity),
                        now,
                        now,
                        self._unique_key(entity),
                    ),
                )
                conn.commit()
            except sqlite3.IntegrityError as exc:
                raise ConflictError(f"{self.name}: duplicate entry") from exc
            logger.debug("Inserted %s/%s", self.name, entity_id)
            return self._row_to_entity(self._get_row(conn, entity_id))
        finally:
            conn.close()

    def _update(self, entity_id: str, fields: Entity) -> None:
        conn = self._service.connect()
        try:
            row = self._get_row(conn, entity_id)
            current = self._row_to_entity(row)
            current.update(fields)
            conn.execute(
                f"UPDATE {self.name} SET position = ?, data = ?, updated_at = ? WHERE id = ?",
                (int(current.get("position") or 0), self._body(current), _now(), entity_id),
            )
            conn.commit()
        finally:
            conn.close()

    def _delete(self, entity_id: str) -> None:
        conn = self._service.connect()
        try:
            conn.execute(f"DELETE FROM {self.name} WHERE id = ?", (entity_id,))
            conn.commit()
        finally:
            conn.close()

    # ---- Collection port ----

    async def list(self, *, board_id: str | None = None, order_by: str = "position") -> list[Entity]:
        return await asyncio.to_thread(self._list, board_id, order_by)

    async def insert(self, entity: Entity) -> Entity:
        return await asyncio.to_thread(self._insert, dict(entity))

    async def update(self, entity_id: str, fields: Entity) -> None:
        await asyncio.to_thread(self._update, entity_id, dict(fields))

    async def delete(self, entity_id: str) -> None:
        await asyncio.to_thread(self._delete, entity_id)
