from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import NullPool


def _engine_options_for_url(url: str) -> dict[str, Any]:
    u = (url or "").strip().lower()
    if u.startswith("postgresql"):
        return {
            "pool_pre_ping": True,
            "pool_size": 5,
            "max_overflow": 10,
        }
    # aiosqlite connections belong to the event loop that opened them.
    return {"poolclass": NullPool}


def make_engine(url: str, *, extra_options: Mapping[str, Any] | None = None) -> AsyncEngine:
    options = _engine_options_for_url(url)
    if extra_options:
        options.update(dict(extra_options))
    return create_async_engine(url, **options)
