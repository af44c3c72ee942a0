# tests/test_file_storage.py

from __future__ import annotations

from pathlib import Path
from urllib.parse import urlparse
from urllib.request import url2pathname

import pytest

from taskdeck.core.errors import ValidationError
from taskdeck.persistence.file_storage import LocalFileStorage


@pytest.mark.asyncio
async def test_upload_writes_under_tasks_dir(tmp_path: Path) -> None:
    storage = LocalFileStorage(tmp_path)

    url = await storage.upload(b"%PDF-1.7", "Report.PDF")

    assert url.startswith("file://")
    stored = Path(url2pathname(urlparse(url).path))
    assert stored.parent == (tmp_path / "tasks").resolve()
    assert stored.suffix == ".pdf"
    assert stored.read_bytes() == b"%PDF-1.7"
    assert not list(stored.parent.glob("*.tmp"))


@pytest.mark.asyncio
async def test_upload_limits(tmp_path: Path) -> None:
    storage = LocalFileStorage(tmp_path, max_bytes=4)
    with pytest.raises(ValidationError):
        await storage.upload(b"12345", "big.bin")
    with pytest.raises(ValidationError):
        await storage.upload(b"1", "  ")
