# src/taskdeck/cli/commands.py

from __future__ import annotations

import logging
import uuid
from collections.abc import Awaitable, Callable
from datetime import date
from pathlib import Path
from typing import Any

from ..board.models import Column, ColumnType, FilterOperator, FilterRule, Record
from ..board.mutations import BoardSession
from ..board.records import checklist_progress
from ..board.schema import primary_column
from ..board.views import COUNT, cell_text, default_category_column, format_number, grow_page
from ..core.errors import BoardError, NotFoundError, ValidationError
from .bootstrap import AppState, open_board

CommandHandler = Callable[[AppState, list[str]], Awaitable[str]]

logger = logging.getLogger(__name__)


class CommandRegistry:
    """Simple slash-command registry used by the console (/help, /table, ...)."""

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}
        self._help: dict[str, str] = {}

    def register(
        self,
        name: str,
        handler: CommandHandler,
        help_text: str,
        aliases: list[str] | None = None,
    ) -> None:
        aliases = aliases or []
        key = name.lower()
        self._handlers[key] = handler
        self._help[key] = help_text
        for alias in aliases:
            self._handlers[alias.lower()] = handler

    async def handle(self, state: AppState, line: str) -> str | None:
        """
        Handle a string like "/command args".
        Returns a reply string or None if not a command.

        Board errors (validation, not found, conflict) become the reply text.
        """
        if not line.startswith("/"):
            return None

        parts = line[1:].split()
        if not parts:
            return "Empty command. Use /help to list available commands."

        name = parts[0].lower()
        args = parts[1:]

        handler = self._handlers.get(name)
        if not handler:
            return f"Unknown command: /{name}. Use /help to list available commands."

        try:
            return await handler(state, args)
        except BoardError as e:
            logger.debug("Command /%s rejected: %s", name, e)
            return f"Error: {e}"

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()


# ---- helpers ----


def _session(state: AppState) -> BoardSession:
    if state.session is None:
        raise ValidationError("No board open. Use /boards and /open <n>.")
    return state.session


def _find_column(session: BoardSession, ref: str) -> Column:
    needle = ref.strip().lower()
    for col in session.columns:
        if col.id == ref or col.name.lower() == needle:
            return col
    raise NotFoundError(f"No column named {ref!r}")


def _visible(state: AppState) -> list[Record]:
    page = _session(state).table(state.rules, search=state.search, page_size=state.page_size)
    return [row.record for row in page.rows]


def _find_record(state: AppState, ref: str) -> Record:
    """Row number from the last table (1-based) or a record id."""
    if ref.isdigit():
        rows = _visible(state)
        n = int(ref)
        if 1 <= n <= len(rows):
            return rows[n - 1]
        raise NotFoundError(f"No row {n} in the current table")
    return _session(state).record(ref)


def _title(session: BoardSession, record: Record) -> str:
    primary = primary_column(session.columns)
    title = str(record.get(primary.id) or "") if primary else ""
    return title or "(untitled)"


def _coerce(column: Column, text: str) -> Any:
    """Console input is text; store numbers, booleans and option lists in their native shape."""
    text = text.strip()
    if not text:
        return ""
    if column.type == ColumnType.NUMBER:
        try:
            return float(text)
        except ValueError:
            raise ValidationError(f"{column.name} expects a number, got {text!r}") from None
    if column.type == ColumnType.BOOLEAN:
        return text.lower() in {"1", "true", "yes", "y", "on", "x"}
    if column.type == ColumnType.MULTISELECT:
        return [part.strip() for part in text.split(",") if part.strip()]
    return text


def _report(state: AppState, ok: bool, done: str) -> str:
    if ok:
        return done
    notices = state.notices.items()
    return notices[-1].message if notices else "Failed."


# ---- boards ----


async def cmd_help(state: AppState, args: list[str]) -> str:
    return registry.build_help()


async def cmd_boards(state: AppState, args: list[str]) -> str:
    await state.catalog.load()
    boards = state.catalog.boards
    if not boards:
        return "No boards yet. Use /new <name>."
    current = state.session.board_id if state.session else None
    lines = ["Boards:"]
    for i, b in enumerate(boards, start=1):
        mark = "*" if b.id == current else " "
        lines.append(f" {mark}{i}. {b.name}")
    return "\n".join(lines)


async def cmd_new(state: AppState, args: list[str]) -> str:
    board = await state.catalog.create_board(" ".join(args), state.user_ref)
    if board is None:
        return _report(state, False, "")
    await open_board(state, board.id)
    return f"Created and opened board {board.name!r}."


async def cmd_open(state: AppState, args: list[str]) -> str:
    if not args:
        raise ValidationError("Usage: /open <n>")
    if not state.catalog.boards:
        await state.catalog.load()
    boards = state.catalog.boards
    ref = args[0]
    if ref.isdigit() and 1 <= int(ref) <= len(boards):
        board = boards[int(ref) - 1]
    else:
        board = state.catalog.get(ref)
    await open_board(state, board.id)
    return f"Opened board {board.name!r}."


# ---- columns ----


async def cmd_cols(state: AppState, args: list[str]) -> str:
    session = _session(state)
    lines = ["Columns:"]
    for col in sorted(session.columns, key=lambda c: c.position):
        extra = ""
        if col.choices:
            extra = " [" + ", ".join(col.option_labels()) + "]"
        elif col.number_format:
            extra = f" ({col.number_format.value})"
        lines.append(f"  {col.position}. {col.name} <{col.type.value}>{extra}")
    return "\n".join(lines)


async def cmd_addcol(state: AppState, args: list[str]) -> str:
    if len(args) < 2:
        raise ValidationError("Usage: /addcol <type> <name>")
    col = await _session(state).add_column(" ".join(args[1:]), args[0])
    return _report(state, col is not None, f"Added column {col.name!r}." if col else "")


async def cmd_rmcol(state: AppState, args: list[str]) -> str:
    if not args:
        raise ValidationError("Usage: /rmcol <column>")
    session = _session(state)
    col = _find_column(session, " ".join(args))
    return _report(state, await session.delete_column(col.id), f"Deleted column {col.name!r}.")


async def cmd_movecol(state: AppState, args: list[str]) -> str:
    if len(args) < 2 or not args[-1].isdigit():
        raise ValidationError("Usage: /movecol <column> <position>")
    session = _session(state)
    col = _find_column(session, " ".join(args[:-1]))
    ok = await session.reorder_column(col.id, int(args[-1]))
    return _report(state, ok, f"Moved {col.name!r} to position {args[-1]}.")


# ---- records ----


async def cmd_add(state: AppState, args: list[str]) -> str:
    session = _session(state)
    primary = primary_column(session.columns)
    props = {primary.id: " ".join(args)} if primary else {}
    record_id = await session.add_record(props)
    title = " ".join(args) or "(untitled)"
    return _report(state, record_id is not None, f"Added {title!r}.")


async def cmd_set(state: AppState, args: list[str]) -> str:
    if len(args) < 2:
        raise ValidationError("Usage: /set <row> <column> [value]")
    session = _session(state)
    record = _find_record(state, args[0])
    col = _find_column(session, args[1])
    value = _coerce(col, " ".join(args[2:]))
    return _report(state, await session.update_record(record.id, {col.id: value}), "Saved.")


async def cmd_del(state: AppState, args: list[str]) -> str:
    if not args:
        raise ValidationError("Usage: /del <row>")
    session = _session(state)
    record = _find_record(state, args[0])
    return _report(state, await session.delete_record(record.id), f"Deleted {_title(session, record)!r}.")


async def cmd_check(state: AppState, args: list[str]) -> str:
    if len(args) < 2:
        raise ValidationError("Usage: /check <row> <text>")
    session = _session(state)
    record = _find_record(state, args[0])
    ok = await session.add_checklist_item(record.id, " ".join(args[1:]))
    return _report(state, ok, f"Checklist: {checklist_progress(session.record(record.id))}% done.")


async def cmd_attach(state: AppState, args: list[str]) -> str:
    if len(args) < 2:
        raise ValidationError("Usage: /attach <row> <path>")
    session = _session(state)
    record = _find_record(state, args[0])
    path = Path(" ".join(args[1:])).expanduser()
    if not path.is_file():
        raise NotFoundError(f"No such file: {path}")
    url = await session.attach_file(record.id, path.read_bytes(), path.name)
    return _report(state, url is not None, f"Attached {path.name}.")


# ---- views ----


async def cmd_table(state: AppState, args: list[str]) -> str:
    session = _session(state)
    page = session.table(state.rules, search=state.search, page_size=state.page_size)
    header = " | ".join(c.name for c in page.columns)
    lines = [f"    {header}"]
    for i, row in enumerate(page.rows, start=1):
        cells = " | ".join(cell_text(c, v) for c, v in zip(page.columns, row.cells))
        lines.append(f"{i:>3} {cells}")
    footer = f"{len(page.rows)} of {page.total} record(s)"
    if page.has_more:
        footer += " - /more to show more"
    lines.append(footer)
    return "\n".join(lines)


async def cmd_more(state: AppState, args: list[str]) -> str:
    state.page_size = grow_page(state.page_size, int(getattr(state.settings, "page_step", 25)))
    return await cmd_table(state, args)


async def cmd_kanban(state: AppState, args: list[str]) -> str:
    session = _session(state)
    board = session.kanban(state.rules, search=state.search)
    if board.status_column is None:
        lines = ["(no status column: every record is in 'No status')"]
    else:
        lines = [f"Grouped by {board.status_column.name}:"]
    for lane in board.lanes:
        lines.append(f"[{lane.label}] ({len(lane.records)})")
        for rec in lane.records:
            lines.append(f"   - {_title(session, rec)}")
    return "\n".join(lines)


async def cmd_move(state: AppState, args: list[str]) -> str:
    if len(args) < 2:
        raise ValidationError("Usage: /move <row> <lane>")
    session = _session(state)
    record = _find_record(state, args[0])
    wanted = " ".join(args[1:]).lower()
    board = session.kanban()
    lane = next((ln for ln in board.lanes if ln.label.lower() == wanted), None)
    if lane is None:
        raise NotFoundError(f"No lane named {wanted!r}")
    ok = await session.move_record_to_lane(record.id, lane.key)
    return _report(state, ok, f"Moved {_title(session, record)!r} to {lane.label!r}.")


async def cmd_calendar(state: AppState, args: list[str]) -> str:
    session = _session(state)
    buckets = session.calendar(state.rules, search=state.search)
    if not buckets:
        return "Nothing on the calendar."
    lines = []
    today = date.today()
    for day, recs in buckets.items():
        mark = " (today)" if day == today else ""
        lines.append(f"{day.isoformat()}{mark}")
        for rec in recs:
            lines.append(f"   - {_title(session, rec)}")
    return "\n".join(lines)


async def cmd_stats(state: AppState, args: list[str]) -> str:
    session = _session(state)
    category = _find_column(session, args[0]) if args else default_category_column(session.columns)
    if category is None:
        return "No columns to group by."
    value_id = _find_column(session, args[1]).id if len(args) > 1 else COUNT
    result = session.stats(category.id, value_id, state.rules, search=state.search)
    fmt = result.value_column.number_format if result.value_column else None
    what = f"sum of {result.value_column.name}" if result.value_column else "count"
    lines = [f"{category.name} by {what} (total {format_number(result.total, fmt)}):"]
    for g in result.groups:
        lines.append(f"  {g.label}: {format_number(g.value, fmt)} ({g.percentage}%)")
    return "\n".join(lines)


# ---- filters ----


async def cmd_filter(state: AppState, args: list[str]) -> str:
    if len(args) < 2:
        ops = ", ".join(o.value for o in FilterOperator)
        raise ValidationError(f"Usage: /filter <column> <operator> [value] (operators: {ops})")
    session = _session(state)
    col = _find_column(session, args[0])
    try:
        op = FilterOperator(args[1].lower())
    except ValueError:
        raise ValidationError(f"Unknown operator: {args[1]}") from None
    state.rules.append(FilterRule(id=uuid.uuid4().hex, column_id=col.id, operator=op, value=" ".join(args[2:])))
    return f"{len(state.rules)} filter rule(s) active."


async def cmd_clear(state: AppState, args: list[str]) -> str:
    state.rules.clear()
    state.search = ""
    return "Filters cleared."


async def cmd_search(state: AppState, args: list[str]) -> str:
    state.search = " ".join(args)
    return f"Search: {state.search!r}" if state.search else "Search cleared."


# ---- members / notices ----


async def cmd_members(state: AppState, args: list[str]) -> str:
    session = _session(state)
    lines = ["Members:"]
    for m in session.members:
        lines.append(f"  {m.email or m.user_ref} ({m.role.value})")
    return "\n".join(lines)


async def cmd_invite(state: AppState, args: list[str]) -> str:
    if not args:
        raise ValidationError("Usage: /invite <email> [role]")
    role = args[1] if len(args) > 1 else "editor"
    member = await _session(state).invite_member(args[0], role)
    return _report(state, member is not None, f"Invited {args[0]}.")


async def cmd_notices(state: AppState, args: list[str]) -> str:
    items = state.notices.drain()
    if not items:
        return "No notices."
    return "\n".join(f"[{n.level}] {n.message}" for n in items)


registry.register("help", cmd_help, "Show this help", aliases=["h", "?"])
registry.register("boards", cmd_boards, "List boards")
registry.register("new", cmd_new, "Create a board: /new <name>")
registry.register("open", cmd_open, "Open a board: /open <n>")
registry.register("cols", cmd_cols, "List columns")
registry.register("addcol", cmd_addcol, "Add a column: /addcol <type> <name>")
registry.register("rmcol", cmd_rmcol, "Delete a column: /rmcol <column>")
registry.register("movecol", cmd_movecol, "Reorder a column: /movecol <column> <position>")
registry.register("add", cmd_add, "Add a record: /add <title>")
registry.register("set", cmd_set, "Set a value: /set <row> <column> [value]")
registry.register("del", cmd_del, "Delete a record: /del <row>")
registry.register("check", cmd_check, "Add a checklist item: /check <row> <text>")
registry.register("attach", cmd_attach, "Attach a file: /attach <row> <path>")
registry.register("table", cmd_table, "Table view", aliases=["t"])
registry.register("more", cmd_more, "Show more table rows")
registry.register("kanban", cmd_kanban, "Kanban view", aliases=["k"])
registry.register("move", cmd_move, "Move a record to a kanban lane: /move <row> <lane>")
registry.register("calendar", cmd_calendar, "Calendar view", aliases=["cal"])
registry.register("stats", cmd_stats, "Statistics: /stats [category column] [number column]")
registry.register("filter", cmd_filter, "Add a filter rule: /filter <column> <operator> [value]")
registry.register("clear", cmd_clear, "Clear filters and search")
registry.register("search", cmd_search, "Free-text search: /search [text]")
registry.register("members", cmd_members, "List board members")
registry.register("invite", cmd_invite, "Invite a member: /invite <email> [role]")
registry.register("notices", cmd_notices, "Show and clear notices")
