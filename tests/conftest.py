# tests/conftest.py

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest

from taskdeck.board.models import Column, Record
from taskdeck.board.mutations import BoardSession

from .fakes import FakeFileStorage, FakePersistence, FakeUserDirectory, RecordingNotifier

BOARD_ID = "b1"

STATUS_CHOICES = [
    {"id": "to_do", "label": "To Do", "color": "blue"},
    {"id": "in_progress", "label": "In Progress", "color": "yellow"},
    {"id": "done", "label": "Done", "color": "green"},
]

COLUMNS = [
    {"id": "c-title", "board_id": BOARD_ID, "name": "Title", "type": "text", "position": 0, "options": {}},
    {
        "id": "c-status",
        "board_id": BOARD_ID,
        "name": "Status",
        "type": "status",
        "position": 1,
        "options": {"choices": STATUS_CHOICES},
    },
    {
        "id": "c-points",
        "board_id": BOARD_ID,
        "name": "Points",
        "type": "number",
        "position": 2,
        "options": {"format": "number"},
    },
    {"id": "c-due", "board_id": BOARD_ID, "name": "Due", "type": "date", "position": 3, "options": {}},
]

RECORDS = [
    {
        "id": "r1",
        "board_id": BOARD_ID,
        "position": 0,
        "properties": {"c-title": "Write docs", "c-status": "To Do", "c-points": 3, "c-due": "2024-05-10"},
    },
    {
        "id": "r2",
        "board_id": BOARD_ID,
        "position": 1,
        "properties": {"c-title": "Fix login bug", "c-status": "Done", "c-points": 5},
    },
    {
        "id": "r3",
        "board_id": BOARD_ID,
        "position": 2,
        "properties": {"c-title": "Plan sprint", "c-status": "Archived"},
    },
]

MEMBERS = [
    {"id": "m-owner", "board_id": BOARD_ID, "user_ref": "u-owner", "role": "owner", "email": "owner@example.com"},
]


def make_columns() -> tuple[Column, ...]:
    return tuple(Column.from_dict(c) for c in COLUMNS)


def make_records() -> tuple[Record, ...]:
    return tuple(Record.from_dict({"created_at": "", "updated_at": "", **r}) for r in RECORDS)


@pytest.fixture()
def columns() -> tuple[Column, ...]:
    return make_columns()


@pytest.fixture()
def records() -> tuple[Record, ...]:
    return make_records()


@pytest.fixture()
def persistence() -> FakePersistence:
    """FakePersistence seeded with one board (4 columns, 3 records, an owner)."""
    p = FakePersistence()
    p.boards.seed({"id": BOARD_ID, "name": "Sprint", "owner_ref": "u-owner", "color": "#2383e2"})
    p.columns.seed(*COLUMNS)
    p.records.seed(*RECORDS)
    p.members.seed(*MEMBERS)
    return p


@pytest.fixture()
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture()
def users() -> FakeUserDirectory:
    return FakeUserDirectory(users={"ana@example.com": "u-ana", "owner@example.com": "u-owner"})


@pytest.fixture()
def files() -> FakeFileStorage:
    return FakeFileStorage()


@pytest.fixture()
def session(
    persistence: FakePersistence,
    notifier: RecordingNotifier,
    users: FakeUserDirectory,
    files: FakeFileStorage,
) -> BoardSession:
    """
    BoardSession over the seeded fake persistence.

    Not loaded yet: tests call `await session.load()` themselves so the
    fixture stays synchronous.
    """
    return BoardSession(
        BOARD_ID,
        persistence,
        notifier=notifier,
        file_storage=files,
        user_directory=users,
    )


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with the console composition root.

    A SimpleNamespace instead of the real config keeps tests isolated from
    the environment and any local .env file.
    """
    return SimpleNamespace(
        app_name="taskdeck-test",
        log_level="DEBUG",
        console_enabled=False,
        user_email="me@example.com",
        data_dir=tmp_path,
        db_path=tmp_path / "taskdeck.sqlite3",
        attachments_dir=tmp_path / "attachments",
        log_dir=tmp_path,
        page_size=25,
        page_step=25,
        max_upload_bytes=1024,
    )
