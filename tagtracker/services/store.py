from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from alembic import command
from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from sqlalchemy import inspect
from sqlalchemy.engine import Connection, make_url
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker

from tagtracker.db.config import get_db_settings, normalize_database_url, redact_database_url
from tagtracker.db.engine import make_engine
from tagtracker.db.repo import JobsRepo, TagsRepo

REQUIRED_TABLES = (
    "tags",
    "tag_history",
    "tag_requests",
    "job_status",
)

logger = logging.getLogger("tagtracker.store")


def _sqlite_path_from_url(url: str) -> Path | None:
    try:
        parsed = make_url(url)
    except Exception:
        return None
    if not parsed.drivername.startswith("sqlite"):
        return None
    db_name = parsed.database or ""
    if not db_name or db_name == ":memory:":
        return None
    return Path(db_name)


class TrackerStore:
    """
    Async SQLAlchemy store shared by the scheduler, the jobs and the HTTP layer.

    Repositories hang off the store (`store.jobs`, `store.tags`); all of them
    share one engine and one session factory.
    """

    def __init__(
        self,
        database_url: str | None = None,
        *,
        project_root: Path | None = None,
        echo: bool | None = None,
    ) -> None:
        settings = get_db_settings()
        self.database_url = normalize_database_url(database_url or settings.database_url)
        self.project_root = project_root or Path(__file__).resolve().parents[2]
        self.db_path = _sqlite_path_from_url(self.database_url)
        if self.db_path is not None:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.engine: AsyncEngine = make_engine(
            self.database_url,
            extra_options={"echo": settings.echo if echo is None else bool(echo)},
        )
        self._Session = async_sessionmaker(self.engine, autoflush=False, expire_on_commit=False)
        self.jobs = JobsRepo(self._Session)
        self.tags = TagsRepo(self._Session)

    def _alembic_config(self) -> Config:
        alembic_ini = self.project_root / "alembic.ini"
        script_location = self.project_root / "alembic"
        if not alembic_ini.exists() or not script_location.exists():
            raise RuntimeError(f"Alembic configuration not found under {self.project_root}")
        cfg = Config(str(alembic_ini))
        cfg.set_main_option("script_location", str(script_location))
        cfg.set_main_option("sqlalchemy.url", self.database_url)
        return cfg

    def _upgrade_on(self, connection: Connection) -> None:
        cfg = self._alembic_config()
        cfg.attributes["connection"] = connection
        command.upgrade(cfg, "head")

    async def missing_tables(self) -> list[str]:
        def _missing(conn: Connection) -> list[str]:
            insp = inspect(conn)
            return [name for name in REQUIRED_TABLES if not insp.has_table(name)]

        async with self.engine.connect() as conn:
            return await conn.run_sync(_missing)

    async def migrate(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(self._upgrade_on)

    async def ensure_schema(self) -> None:
        async with self.engine.connect() as conn:
            await conn.exec_driver_sql("SELECT 1")
        missing = await self.missing_tables()
        if not missing:
            return
        logger.info("schema_missing tables=%s running alembic upgrade", ",".join(missing))
        try:
            await self.migrate()
            still_missing = await self.missing_tables()
            if still_missing:
                raise RuntimeError(f"missing tables after migration: {still_missing}")
        except Exception as e:
            raise RuntimeError(
                "Database schema is not ready; run `tagtracker db:migrate` "
                f"(url={redact_database_url(self.database_url)}): {e}"
            ) from e

    async def current_revision(self) -> str | None:
        def _rev(conn: Connection) -> str | None:
            return MigrationContext.configure(conn).get_current_revision()

        async with self.engine.connect() as conn:
            return await conn.run_sync(_rev)

    def observability_info(self) -> dict[str, Any]:
        backend = "postgresql" if self.database_url.lower().startswith("postgresql") else "sqlite"
        return {
            "db_backend": backend,
            "db_url": redact_database_url(self.database_url),
            "db_path": str(self.db_path or ""),
        }

    async def close(self) -> None:
        await self.engine.dispose()
