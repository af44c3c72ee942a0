# src/taskdeck/persistence/file_storage.py

from __future__ import annotations

import asyncio
import logging
import os
import uuid
from pathlib import Path

from ..core.errors import ValidationError

logger = logging.getLogger(__name__)


class LocalFileStorage:
    """
    Stores uploaded bytes under <root>/tasks/<uuid>.<ext> and returns a file:// URI.

    Writes go through a temporary file and os.replace so a reader never sees a
    partially written attachment.
    """

    def __init__(self, root: str | Path, *, max_bytes: int = 20 * 1024 * 1024) -> None:
        self._root = Path(root)
        self._max_bytes = int(max_bytes)

    def _write(self, data: bytes, suggested_name: str) -> str:
        ext = Path(suggested_name).suffix.lower()
        target_dir = self._root / "tasks"
        target_dir.mkdir(parents=True, exist_ok=True)
        target = target_dir / f"{uuid.uuid4().hex}{ext}"

        tmp = target.with_suffix(target.suffix + ".tmp")
        tmp.write_bytes(data)
        os.replace(tmp, target)
        logger.info("Stored attachment %s (%d bytes) as %s", suggested_name, len(data), target.name)
        return target.resolve().as_uri()

    async def upload(self, data: bytes, suggested_name: str) -> str:
        if not suggested_name or not suggested_name.strip():
            raise ValidationError("File name is required")
        if len(data) > self._max_bytes:
            raise ValidationError(f"File too large ({len(data)} bytes, limit {self._max_bytes})")
        return await asyncio.to_thread(self._write, bytes(data), suggested_name.strip())
