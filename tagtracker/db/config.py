from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from sqlalchemy.engine import make_url


DEFAULT_SQLITE_PATH = Path("data") / "tagtracker.db"
DEFAULT_DATABASE_URL = f"sqlite+aiosqlite:///{DEFAULT_SQLITE_PATH.as_posix()}"


@dataclass(frozen=True)
class DBSettings:
    database_url: str
    echo: bool


def normalize_database_url(v: str) -> str:
    # Plain sync URLs are accepted from older deployments; the store needs an async driver.
    vv = (v or "").strip()
    if vv.startswith("sqlite:///"):
        return "sqlite+aiosqlite:///" + vv[len("sqlite:///"):]
    if vv.startswith("postgresql://"):
        return "postgresql+asyncpg://" + vv[len("postgresql://"):]
    return vv


def get_db_settings() -> DBSettings:
    database_url = normalize_database_url(os.environ.get("DATABASE_URL", DEFAULT_DATABASE_URL)) or DEFAULT_DATABASE_URL
    echo = os.environ.get("DB_ECHO", "false").strip().lower() in {"1", "true", "yes", "on"}
    return DBSettings(database_url=database_url, echo=echo)


def redact_database_url(url: str) -> str:
    raw = (url or "").strip()
    if not raw:
        return ""
    try:
        return make_url(raw).render_as_string(hide_password=True)
    except Exception:
        return raw
