from __future__ import annotations

import io
import json
import tempfile
import unittest
from contextlib import redirect_stderr, redirect_stdout
from pathlib import Path
from unittest.mock import patch

from tagtracker.workers.cli import main
from tests.support import sqlite_url


class CliTests(unittest.TestCase):
    def setUp(self) -> None:
        self._td = tempfile.TemporaryDirectory()
        self.root = Path(self._td.name)
        self.env = patch.dict("os.environ", {"DATABASE_URL": sqlite_url(self.root), "LOG_LEVEL": "WARNING"})
        self.env.start()

    def tearDown(self) -> None:
        self.env.stop()
        self._td.cleanup()

    def _run(self, *argv: str) -> tuple[int, dict]:
        out = io.StringIO()
        with redirect_stdout(out), redirect_stderr(io.StringIO()):
            code = main(list(argv))
        text = out.getvalue().strip()
        return code, (json.loads(text) if text else {})

    def test_usage_and_unknown_command(self) -> None:
        self.assertEqual(self._run()[0], 2)
        self.assertEqual(self._run("frobnicate")[0], 2)

    def test_db_migrate_then_status(self) -> None:
        code, before = self._run("db:status")
        self.assertEqual(code, 5)
        self.assertFalse(before["ok"])

        code, migrated = self._run("db:migrate")
        self.assertEqual(code, 0)
        self.assertEqual(migrated["revision"], "20261019_0001")

        code, after = self._run("db:status")
        self.assertEqual(code, 0)
        self.assertEqual(after["missing_tables"], [])

    def test_run_job(self) -> None:
        code, out = self._run("run-job", "rank-calculator")
        self.assertEqual(code, 0)
        self.assertTrue(out["ran"])
        self.assertEqual(out["status"]["success_count"], 1)

    def test_run_unknown_job(self) -> None:
        code, out = self._run("run-job", "nope")
        self.assertEqual(code, 3)
        self.assertEqual(out["error_code"], "JOB_404_UNKNOWN")
        self.assertEqual(self._run("run-job")[0], 2)

    def test_maintenance_commands(self) -> None:
        code, out = self._run("history:cleanup")
        self.assertEqual((code, out["deleted"]), (0, 0))
        code, out = self._run("ranks:recalculate")
        self.assertEqual((code, out["ranked"]), (0, 0))

    def test_worker_exits_when_disabled(self) -> None:
        with patch.dict("os.environ", {"WORKER_ENABLED": "false"}):
            code, out = self._run("worker")
        self.assertEqual(code, 0)
        self.assertFalse(out["started"])


if __name__ == "__main__":
    unittest.main()
