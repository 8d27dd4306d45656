from __future__ import annotations

import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from tagtracker.db.config import get_db_settings, normalize_database_url, redact_database_url
from tagtracker.services.store import REQUIRED_TABLES, TrackerStore
from tests.support import sqlite_url


class DBConfigTests(unittest.TestCase):
    def test_sync_urls_are_upgraded_to_async_drivers(self) -> None:
        self.assertEqual(normalize_database_url("sqlite:///data/x.db"), "sqlite+aiosqlite:///data/x.db")
        self.assertEqual(
            normalize_database_url("postgresql://u:p@db:5432/tags"),
            "postgresql+asyncpg://u:p@db:5432/tags",
        )
        self.assertEqual(normalize_database_url("sqlite+aiosqlite:///x.db"), "sqlite+aiosqlite:///x.db")

    def test_settings_from_env(self) -> None:
        with patch.dict("os.environ", {"DATABASE_URL": "sqlite:///tmp/a.db", "DB_ECHO": "yes"}):
            settings = get_db_settings()
        self.assertEqual(settings.database_url, "sqlite+aiosqlite:///tmp/a.db")
        self.assertTrue(settings.echo)

    def test_redact_hides_password(self) -> None:
        redacted = redact_database_url("postgresql+asyncpg://user:secret@db/tags")
        self.assertNotIn("secret", redacted)
        self.assertIn("user", redacted)


class TrackerStoreTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self._td = tempfile.TemporaryDirectory()
        self.root = Path(self._td.name)

    async def asyncTearDown(self) -> None:
        self._td.cleanup()

    async def test_ensure_schema_migrates_empty_database(self) -> None:
        store = TrackerStore(sqlite_url(self.root))
        try:
            self.assertEqual(sorted(await store.missing_tables()), sorted(REQUIRED_TABLES))
            await store.ensure_schema()
            self.assertEqual(await store.missing_tables(), [])
            self.assertEqual(await store.current_revision(), "20261019_0001")
            # Second call is a no-op.
            await store.ensure_schema()
        finally:
            await store.close()
        self.assertTrue((self.root / "tracker.db").exists())

    async def test_sync_sqlite_url_is_accepted(self) -> None:
        store = TrackerStore(f"sqlite:///{(self.root / 'plain.db').as_posix()}")
        try:
            self.assertTrue(store.database_url.startswith("sqlite+aiosqlite:///"))
            await store.ensure_schema()
            info = store.observability_info()
            self.assertEqual(info["db_backend"], "sqlite")
            self.assertTrue(info["db_path"].endswith("plain.db"))
        finally:
            await store.close()

    async def test_missing_alembic_config_is_reported(self) -> None:
        store = TrackerStore(sqlite_url(self.root), project_root=self.root)
        try:
            with self.assertRaises(RuntimeError) as ctx:
                await store.ensure_schema()
            self.assertIn("tagtracker db:migrate", str(ctx.exception))
        finally:
            await store.close()


if __name__ == "__main__":
    unittest.main()
