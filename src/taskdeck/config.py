# src/taskdeck/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole app (normal "settings layer").
- No secrets required at import time.
- Paths default to a gitignored local data directory.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

ENV_PREFIX = "TASKDECK"

load_dotenv(override=False)


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str
    console_enabled: bool

    # ---- Local identity (console front-end) ----
    user_email: str

    # ---- Local data paths (ignored by git) ----
    data_dir: Path
    db_path: Path
    attachments_dir: Path
    log_dir: Path

    # ---- Views ----
    page_size: int
    page_step: int
    max_upload_bytes: int

    @staticmethod
    def from_env() -> "Settings":
        data_dir = _env_path(_k("DATA_DIR"), Path(".local/taskdeck"))
        return Settings(
            app_name=_env(_k("APP_NAME"), "taskdeck") or "taskdeck",
            log_level=_env(_k("LOG_LEVEL"), "INFO"),
            console_enabled=_env_bool(_k("CONSOLE_ENABLED"), True),
            user_email=_env(_k("USER_EMAIL"), "me@localhost.dev").strip().lower(),
            data_dir=data_dir,
            db_path=_env_path(_k("DB_PATH"), data_dir / "taskdeck.sqlite3"),
            attachments_dir=_env_path(_k("ATTACHMENTS_DIR"), data_dir / "attachments"),
            log_dir=_env_path(_k("LOG_DIR"), data_dir),
            page_size=max(1, _env_int(_k("PAGE_SIZE"), 25)),
            page_step=max(1, _env_int(_k("PAGE_STEP"), 25)),
            max_upload_bytes=max(1, _env_int(_k("MAX_UPLOAD_BYTES"), 20 * 1024 * 1024)),
        )


SETTINGS = Settings.from_env()


def get_settings() -> Settings:
    return SETTINGS
