# src/taskdeck/board/mutations.py

"""
Mutation engine for one board.

Every create/update/delete follows the same protocol:
1) local apply: BoardState is updated synchronously, before any await;
2) remote dispatch: the persistence collaborator is called with the same payload;
3) reconcile on success (server ids replace temporary ids), or on failure put back
   the pre-mutation version of the affected entity and publish a notice. When
   nothing else changed meanwhile the prior collection object itself is restored.

Remote failures never escape a mutation: the method returns False/None instead.
Validation, not-found and conflict errors are raised before anything is applied.

Concurrency model (single event loop):
- Completions may arrive in any order, so reconciliation is keyed by entity id.
- Creations get a temporary id; later mutations of that entity wait for the
  creation to settle and then use the server id.
- Patches to the same record are serialized with a per-record lock and built
  against the server-known properties of that record, never against another
  pending local patch.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Callable, Generator, Mapping, Sequence
from dataclasses import dataclass, replace
from datetime import date
from typing import Any, TypeVar

from ..core.errors import ConflictError, NotFoundError, RemoteFailure, ValidationError, friendly_failure_message
from ..core.ports import Collection, FileStorage, Notifier, Persistence, UserDirectory
from ..core.state import BoardSnapshot, BoardState, NoticeLog
from . import records as rec_ops
from . import schema
from .models import Column, ColumnType, FilterRule, Member, Record, Role, now_iso
from .reorder import ColumnDrag, changed_positions, move_item
from .views import (
    COUNT,
    KanbanBoard,
    StatsResult,
    TablePage,
    calendar_view,
    kanban_view,
    lane_patch,
    stats_view,
    table_view,
)

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

E = TypeVar("E", Column, Record, Member)


@dataclass(slots=True)
class PendingCreate:
    """
    Handle for a record creation in flight.

    `temp_id` addresses the record immediately; awaiting the handle yields the
    server id, or None if the creation failed (the record is then gone).
    """

    temp_id: str
    task: asyncio.Task[str | None]

    def __await__(self) -> Generator[Any, None, str | None]:
        return self.task.__await__()


class BoardSession:
    def __init__(
        self,
        board_id: str,
        persistence: Persistence,
        *,
        notifier: Notifier | None = None,
        file_storage: FileStorage | None = None,
        user_directory: UserDirectory | None = None,
    ) -> None:
        self.board_id = board_id
        self.state = BoardState(board_id)
        self.notifier: Notifier = notifier or NoticeLog()
        self._columns_repo: Collection = persistence.collection("columns")
        self._records_repo: Collection = persistence.collection("records")
        self._members_repo: Collection = persistence.collection("members")
        self._files = file_storage
        self._users = user_directory

        self._server_props: dict[str, dict[str, Any]] = {}
        self._aliases: dict[str, str] = {}
        self._pending: dict[str, asyncio.Future[str | None]] = {}
        self._dead: set[str] = set()
        self._locks: dict[str, asyncio.Lock] = {}
        self._inflight: dict[str, int] = {}
        self._tasks: set[asyncio.Task[str | None]] = set()

    # ---- reads ----

    @property
    def columns(self) -> tuple[Column, ...]:
        return self.state.columns

    @property
    def records(self) -> tuple[Record, ...]:
        return self.state.records

    @property
    def members(self) -> tuple[Member, ...]:
        return self.state.members

    def snapshot(self) -> BoardSnapshot:
        return self.state.snapshot()

    def subscribe(self, listener: Callable[[BoardSnapshot], None]) -> Callable[[], None]:
        return self.state.subscribe(listener)

    def resolve_id(self, entity_id: str) -> str:
        """Server id for a temporary id once its creation has been confirmed."""
        return self._aliases.get(entity_id, entity_id)

    def record(self, record_id: str) -> Record:
        return rec_ops.find_record(self.state.records, self.resolve_id(record_id))

    def column(self, column_id: str) -> Column:
        return schema.find_column(self.state.columns, self.resolve_id(column_id))

    # ---- projections ----

    def table(self, rules: Sequence[FilterRule] = (), *, search: str | None = None, page_size: int = 25) -> TablePage:
        return table_view(self.columns, self.records, rules, search=search, page_size=page_size)

    def kanban(self, rules: Sequence[FilterRule] = (), *, search: str | None = None) -> KanbanBoard:
        return kanban_view(self.columns, self.records, rules, search=search)

    def calendar(
        self, rules: Sequence[FilterRule] = (), *, search: str | None = None
    ) -> dict[date, tuple[Record, ...]]:
        return calendar_view(self.columns, self.records, rules, search=search)

    def stats(
        self,
        category_column_id: str,
        value_column_id: str = COUNT,
        rules: Sequence[FilterRule] = (),
        *,
        search: str | None = None,
    ) -> StatsResult:
        return stats_view(
            self.columns,
            self.records,
            rules,
            category_column_id=category_column_id,
            value_column_id=value_column_id,
            search=search,
        )

    def column_drag(self) -> ColumnDrag:
        return ColumnDrag(lambda: self.state.columns, self.reorder_column)

    # ---- loading ----

    async def load(self) -> bool:
        """Fetch columns, records and members (ordered by position) and replace local state."""
        try:
            cols, recs, mems = await asyncio.gather(
                self._columns_repo.list(board_id=self.board_id, order_by="position"),
                self._records_repo.list(board_id=self.board_id, order_by="position"),
                self._members_repo.list(board_id=self.board_id, order_by="position"),
            )
        except Exception as exc:
            self._report(RemoteFailure("load_board", self.board_id, exc))
            return False

        records = tuple(Record.from_dict(r) for r in recs)
        self._server_props = {r.id: dict(r.properties) for r in records}
        self._aliases.clear()
        self._dead.clear()
        self.state.set_columns(tuple(sorted((Column.from_dict(c) for c in cols), key=lambda c: c.position)))
        self.state.set_records(records)
        self.state.set_members(tuple(Member.from_dict(m) for m in mems))
        logger.info(
            "Board %s loaded: columns=%d records=%d members=%d",
            self.board_id,
            len(self.state.columns),
            len(records),
            len(self.state.members),
        )
        return True

    # ---- internals ----

    def _report(self, failure: RemoteFailure) -> None:
        logger.warning("Remote failure: %s", failure, exc_info=failure.cause)
        self.notifier.notify(friendly_failure_message(failure), level="error")

    def _lock(self, entity_id: str) -> asyncio.Lock:
        lock = self._locks.get(entity_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[entity_id] = lock
        return lock

    async def _server_id(self, entity_id: str) -> str | None:
        """Wait for a pending creation if needed. None if the entity never made it to the server."""
        eid = self.resolve_id(entity_id)
        fut = self._pending.get(eid)
        if fut is not None:
            return await fut
        if eid in self._dead:
            return None
        return self.resolve_id(eid)

    def _revive(self, entity: E) -> E:
        """Entity from an older snapshot, with ids of settled creations swapped in."""
        alias = self._aliases.get(entity.id)
        if alias:
            entity = replace(entity, id=alias)
        if isinstance(entity, Record) and any(k in self._aliases for k in entity.properties):
            entity = replace(entity, properties={self._aliases.get(k, k): v for k, v in entity.properties.items()})
        return entity

    def _undo_change(
        self, current: tuple[E, ...], applied: tuple[E, ...], before: tuple[E, ...], entity_id: str
    ) -> tuple[E, ...]:
        """
        Put back the pre-mutation version of one entity.

        Returns `before` itself when the collection is still exactly what this
        mutation applied; otherwise only that entity is swapped, keeping its
        current position, so other mutations' results survive.
        """
        if current is applied:
            return before
        previous = next((e for e in before if e.id == entity_id), None)
        if previous is None or previous.id in self._dead:
            return current
        restored = self._revive(previous)
        if not any(e.id == restored.id for e in current):
            return current
        return tuple(replace(restored, position=e.position) if e.id == restored.id else e for e in current)

    def _undo_removal(
        self,
        current: tuple[E, ...],
        applied: tuple[E, ...],
        before: tuple[E, ...],
        entity_id: str,
        *,
        dense: bool = False,
    ) -> tuple[E, ...]:
        """Reinsert an entity whose removal failed, right after its nearest surviving predecessor."""
        if current is applied:
            return before
        index = next((n for n, e in enumerate(before) if e.id == entity_id), None)
        if index is None or before[index].id in self._dead:
            return current
        restored = self._revive(before[index])
        ids = [e.id for e in current]
        if restored.id in ids:
            return current
        at = 0
        for prev in reversed(before[:index]):
            pid = self.resolve_id(prev.id)
            if pid in ids:
                at = ids.index(pid) + 1
                break
        out = list(current)
        out.insert(at, restored)
        if dense:
            out = [e if e.position == n else replace(e, position=n) for n, e in enumerate(out)]
        return tuple(out)

    def _undo_move(
        self,
        current: tuple[E, ...],
        applied: tuple[E, ...],
        before: tuple[E, ...],
        entity_id: str,
        *,
        pinned_head: bool = False,
        by_position: bool = True,
    ) -> tuple[E, ...]:
        """Move one entity back to its pre-mutation index; everything else stays as it is now."""
        if current is applied:
            return before
        order = sorted(before, key=lambda e: e.position) if by_position else list(before)
        old_index = next((n for n, e in enumerate(order) if e.id == entity_id), None)
        sid = self.resolve_id(entity_id)
        if old_index is None or not any(e.id == sid for e in current):
            return current
        return move_item(
            current, sid, min(old_index, len(current) - 1), pinned_head=pinned_head, by_position=by_position
        )

    def _settle(self, temp_id: str, server_id: str | None) -> None:
        fut = self._pending.pop(temp_id, None)
        if server_id is None:
            self._dead.add(temp_id)
        else:
            self._aliases[temp_id] = server_id
        if fut is not None and not fut.done():
            fut.set_result(server_id)

    async def _persist_positions(self, repo: Collection, changes: Mapping[str, int], operation: str) -> Exception | None:
        targets: list[tuple[str, int]] = []
        for eid, pos in changes.items():
            sid = await self._server_id(eid)
            if sid is not None:
                targets.append((sid, pos))
        results = await asyncio.gather(
            *(repo.update(sid, {"position": pos}) for sid, pos in targets),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, Exception):
                return result
        logger.debug("%s persisted %d position(s)", operation, len(targets))
        return None

    # ---- columns ----

    async def add_column(self, name: str, col_type: ColumnType | str, options: Any = None) -> Column | None:
        """Append a column (position = current column count). Returns the confirmed column."""
        column = schema.build_column(
            column_id=rec_ops.temp_id(),
            board_id=self.board_id,
            name=name,
            col_type=col_type,
            position=len(self.state.columns),
            options=options,
        )
        before = self.state.columns
        self.state.set_columns((*before, column))
        self._pending[column.id] = asyncio.get_running_loop().create_future()

        payload = column.to_dict()
        payload.pop("id")
        try:
            created = Column.from_dict(await self._columns_repo.insert(payload))
        except Exception as exc:
            current = self.state.columns
            if current[:-1] == before and current[-1] is column:
                self.state.set_columns(before)
            else:
                self.state.set_columns(tuple(c for c in current if c.id != column.id))
            self._settle(column.id, None)
            self._report(RemoteFailure("add_column", column.id, exc))
            return None

        confirmed = column
        current = self.state.columns
        local = next((c for c in current if c.id == column.id), None)
        if local is not None:
            confirmed = replace(local, id=created.id)
            self.state.set_columns(tuple(confirmed if c.id == column.id else c for c in current))
        self._rename_property(column.id, created.id)
        self._settle(column.id, created.id)
        logger.debug("Column %s confirmed as %s", column.id, created.id)
        return replace(confirmed, id=created.id)

    def _rename_property(self, old_key: str, new_key: str) -> None:
        """Records edited against a temporary column id get the server id as key."""
        current = self.state.records
        if not any(old_key in r.properties for r in current):
            return
        renamed = []
        for r in current:
            if old_key in r.properties:
                props = {(new_key if k == old_key else k): v for k, v in r.properties.items()}
                r = replace(r, properties=props)
            renamed.append(r)
        self.state.set_records(tuple(renamed))

    async def update_column(self, column_id: str, changes: Mapping[str, Any]) -> bool:
        cid = self.resolve_id(column_id)
        before = self.state.columns
        current = schema.find_column(before, cid)
        updated = schema.apply_column_update(current, changes)
        if updated == current:
            return True

        applied = schema.replace_column(before, updated)
        self.state.set_columns(applied)
        server_id = await self._server_id(cid)
        if server_id is None:
            return False
        async with self._lock(server_id):
            try:
                await self._columns_repo.update(server_id, schema.column_update_payload(updated))
            except Exception as exc:
                self.state.set_columns(self._undo_change(self.state.columns, applied, before, cid))
                self._report(RemoteFailure("update_column", server_id, exc))
                return False
        return True

    async def delete_column(self, column_id: str) -> bool:
        """
        Remove a column and close the position gap.

        Values stored under the column id in records are kept (orphaned extension data).
        """
        cid = self.resolve_id(column_id)
        before = self.state.columns
        after = schema.remove_column(before, cid)
        shifted = changed_positions(before, after)

        self.state.set_columns(after)
        server_id = await self._server_id(cid)
        if server_id is not None:
            try:
                await self._columns_repo.delete(server_id)
            except Exception as exc:
                self.state.set_columns(self._undo_removal(self.state.columns, after, before, cid, dense=True))
                self._report(RemoteFailure("delete_column", server_id, exc))
                return False
        self._locks.pop(server_id or cid, None)

        # The column is gone on the server now; a failed position write only leaves
        # stale positions there, so the local removal stands.
        error = await self._persist_positions(self._columns_repo, shifted, "delete_column")
        if error is not None:
            self._report(RemoteFailure("save_positions", self.board_id, error))
            return False
        return True

    async def reorder_column(self, column_id: str, new_position: int) -> bool:
        """
        Move a column to new_position and rewrite all positions densely.

        The primary column cannot be moved and nothing can be moved to index 0.
        """
        cid = self.resolve_id(column_id)
        before = self.state.columns
        column = schema.find_column(before, cid)
        if column.position == new_position:
            return True

        after = move_item(before, cid, int(new_position), pinned_head=True)
        changes = changed_positions(before, after)
        self.state.set_columns(after)

        error = await self._persist_positions(self._columns_repo, changes, "reorder_column")
        if error is not None:
            self.state.set_columns(self._undo_move(self.state.columns, after, before, cid, pinned_head=True))
            self._report(RemoteFailure("reorder_column", cid, error))
            return False
        return True

    async def reorder_column_onto(self, column_id: str, target_id: str) -> bool:
        """Drop a column onto another column's slot."""
        if self.resolve_id(column_id) == self.resolve_id(target_id):
            return True
        target = self.column(target_id)
        return await self.reorder_column(column_id, target.position)

    # ---- records ----

    def create_record(self, properties: Mapping[str, Any] | None = None) -> PendingCreate:
        """
        Prepend a new record under a temporary id and start persisting it.

        Must be called from a running event loop. The primary column is seeded
        with an empty string when not provided.
        """
        loop = asyncio.get_running_loop()
        props = dict(properties or {})
        primary = schema.primary_column(self.state.columns)
        if primary is not None:
            props.setdefault(primary.id, "")

        record = rec_ops.new_record(self.board_id, props)
        before = self.state.records
        self.state.set_records(rec_ops.prepend(before, record))
        self._pending[record.id] = loop.create_future()
        task = loop.create_task(self._finish_create_record(record, before))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return PendingCreate(temp_id=record.id, task=task)

    async def add_record(self, properties: Mapping[str, Any] | None = None) -> str | None:
        """Create a record and wait for the server id (None if creation failed)."""
        return await self.create_record(properties)

    async def _finish_create_record(self, record: Record, before: tuple[Record, ...]) -> str | None:
        payload = {"board_id": self.board_id, "position": record.position, "properties": dict(record.properties)}
        try:
            created = Record.from_dict(await self._records_repo.insert(payload))
        except Exception as exc:
            current = self.state.records
            if len(current) == len(before) + 1 and current[0] is record and all(
                a is b for a, b in zip(current[1:], before)
            ):
                self.state.set_records(before)
            else:
                self.state.set_records(tuple(r for r in current if r.id != record.id))
            self._settle(record.id, None)
            self._report(RemoteFailure("add_record", record.id, exc))
            return None

        self._server_props[created.id] = dict(created.properties)
        current = self.state.records
        local = next((r for r in current if r.id == record.id), None)
        if local is not None:
            confirmed = replace(local, id=created.id, created_at=created.created_at, updated_at=created.updated_at)
            swapped = rec_ops.swap_record(current, record.id, confirmed)
            if swapped is not None:
                self.state.set_records(swapped)
        self._settle(record.id, created.id)
        logger.debug("Record %s confirmed as %s", record.id, created.id)
        return created.id

    async def update_record(self, record_id: str, patch: Mapping[str, Any]) -> bool:
        """
        Shallow-merge patch into the record's properties.

        The remote payload is the server-known properties merged with this patch;
        patches to the same record are sent one at a time. When the last patch in
        flight for a record succeeds, the local record is reconciled with what the
        server now holds (a failed sibling patch may have rolled it back).
        """
        if not patch:
            return True
        rid = self.resolve_id(record_id)
        before = self.state.records
        applied = rec_ops.patch_record(before, rid, patch)
        self.state.set_records(applied)
        self._inflight[rid] = self._inflight.get(rid, 0) + 1

        try:
            server_id = await self._server_id(rid)
            if server_id is None:
                return False

            async with self._lock(server_id):
                keys = {}
                for key in patch:
                    resolved = await self._server_id(key) if key in self._pending else self.resolve_id(key)
                    keys[key] = resolved or key
                remote_patch = {keys[k]: v for k, v in patch.items()}
                payload = rec_ops.merge_properties(self._server_props.get(server_id, {}), remote_patch)
                try:
                    await self._records_repo.update(server_id, {"properties": payload, "updated_at": now_iso()})
                except Exception as exc:
                    self.state.set_records(self._undo_change(self.state.records, applied, before, rid))
                    self._report(RemoteFailure("update_record", server_id, exc))
                    return False
                self._server_props[server_id] = payload
                if self._inflight.get(rid) == 1:
                    self._reconcile_record(server_id, payload)
            return True
        finally:
            left = self._inflight.get(rid, 1) - 1
            if left > 0:
                self._inflight[rid] = left
            else:
                self._inflight.pop(rid, None)

    def _reconcile_record(self, record_id: str, server_props: Mapping[str, Any]) -> None:
        current = self.state.records
        local = next((r for r in current if r.id == record_id), None)
        if local is None:
            return
        merged = rec_ops.merge_properties(local.properties, server_props)
        if merged != local.properties:
            logger.debug("Record %s reconciled with server properties", record_id)
            self.state.set_records(rec_ops.swap_record(current, record_id, replace(local, properties=merged)))

    async def delete_record(self, record_id: str) -> bool:
        rid = self.resolve_id(record_id)
        before = self.state.records
        applied = rec_ops.remove_record(before, rid)
        self.state.set_records(applied)

        server_id = await self._server_id(rid)
        if server_id is None:
            return True
        async with self._lock(server_id):
            try:
                await self._records_repo.delete(server_id)
            except Exception as exc:
                self.state.set_records(self._undo_removal(self.state.records, applied, before, rid))
                self._report(RemoteFailure("delete_record", server_id, exc))
                return False
        self._server_props.pop(server_id, None)
        self._locks.pop(server_id, None)
        return True

    async def reorder_record(self, record_id: str, new_position: int) -> bool:
        """Move a record within the store order and rewrite record positions densely."""
        rid = self.resolve_id(record_id)
        before = self.state.records
        index = next((n for n, r in enumerate(before) if r.id == rid), None)
        if index is None:
            raise NotFoundError(f"Record not found: {record_id}")
        if index == new_position:
            return True

        after = move_item(before, rid, int(new_position), by_position=False)
        changes = changed_positions(before, after)
        self.state.set_records(after)

        error = await self._persist_positions(self._records_repo, changes, "reorder_record")
        if error is not None:
            self.state.set_records(self._undo_move(self.state.records, after, before, rid, by_position=False))
            self._report(RemoteFailure("reorder_record", rid, error))
            return False
        return True

    async def move_record_to_lane(self, record_id: str, lane_key: str | None) -> bool:
        """Kanban drop: set the status value to the lane's label (fallback lane clears it)."""
        record = self.record(record_id)
        board = kanban_view(self.columns, self.records)
        if board.lane(lane_key) is None:
            raise NotFoundError(f"Lane not found: {lane_key}")
        patch = lane_patch(board, record, lane_key)
        if patch is None:
            return True
        return await self.update_record(record.id, patch)

    # ---- extension properties ----

    async def add_checklist_item(self, record_id: str, text: str) -> bool:
        text = (text or "").strip()
        if not text:
            raise ValidationError("Checklist item text is required")
        record = self.record(record_id)
        return await self.update_record(record.id, {"checklist": rec_ops.checklist_with_item(record, text)})

    async def toggle_checklist_item(self, record_id: str, item_id: str) -> bool:
        record = self.record(record_id)
        return await self.update_record(record.id, {"checklist": rec_ops.checklist_toggled(record, item_id)})

    async def attach_file(self, record_id: str, data: bytes, filename: str) -> str | None:
        """Upload bytes and append the reference to the record's attachments."""
        if self._files is None:
            raise ValidationError("File storage is not configured")
        name = (filename or "").strip()
        if not name:
            raise ValidationError("File name is required")
        self.record(record_id)

        try:
            url = await self._files.upload(data, name)
        except ValidationError:
            raise
        except Exception as exc:
            self._report(RemoteFailure("upload_file", record_id, exc))
            return None

        # Re-read: the record may have changed while uploading.
        record = self.record(record_id)
        ok = await self.update_record(
            record.id, {"attachments": rec_ops.attachments_with(record, name=name, url=url, size=len(data))}
        )
        return url if ok else None

    # ---- members ----

    async def invite_member(self, email: str, role: Role | str = Role.EDITOR) -> Member | None:
        """
        Add a board member by email.

        Raises ValidationError (bad email / role), NotFoundError (no such user),
        ConflictError (already a member). Not optimistic: nothing is applied locally
        until the server confirms.
        """
        address = (email or "").strip().lower()
        if not EMAIL_RE.match(address):
            raise ValidationError(f"Invalid email: {email!r}")
        try:
            member_role = Role(role)
        except ValueError:
            raise ValidationError(f"Unknown role: {role!r}") from None
        if member_role == Role.OWNER:
            raise ValidationError("A board has a single owner")
        if self._users is None:
            raise ValidationError("User directory is not configured")

        try:
            user_ref = await self._users.find_user_by_email(address)
        except Exception as exc:
            self._report(RemoteFailure("invite_member", address, exc))
            return None
        if not user_ref:
            raise NotFoundError(f"No user found with email {address}")
        if any(m.user_ref == user_ref for m in self.state.members):
            raise ConflictError(f"{address} is already a member of this board")

        payload = {"board_id": self.board_id, "user_ref": user_ref, "role": member_role.value, "email": address}
        try:
            created = Member.from_dict(await self._members_repo.insert(payload))
        except ConflictError:
            raise
        except Exception as exc:
            self._report(RemoteFailure("invite_member", address, exc))
            return None

        self.state.set_members((*self.state.members, created))
        logger.info("Member %s invited to board %s as %s", address, self.board_id, member_role.value)
        return created

    async def remove_member(self, member_id: str) -> bool:
        before = self.state.members
        member = next((m for m in before if m.id == member_id), None)
        if member is None:
            raise NotFoundError(f"Member not found: {member_id}")
        if member.role == Role.OWNER:
            raise ValidationError("The board owner cannot be removed")

        applied = tuple(m for m in before if m.id != member_id)
        self.state.set_members(applied)
        try:
            await self._members_repo.delete(member_id)
        except Exception as exc:
            self.state.set_members(self._undo_removal(self.state.members, applied, before, member_id))
            self._report(RemoteFailure("remove_member", member_id, exc))
            return False
        return True
