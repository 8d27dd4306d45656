from __future__ import annotations

import asyncio
import tempfile
import unittest
from pathlib import Path
from unittest.mock import AsyncMock, patch

from fastapi.testclient import TestClient

from tagtracker.config import WorkerSettings
from tagtracker.services.store import TrackerStore
from tagtracker.services.tag_listing import annotate_changes, total_change
from tagtracker.web.api import create_app
from tagtracker.workers.rank_calculator import RankCalculator
from tests.support import FakePlatform, sqlite_url

IDLE_SETTINGS = WorkerSettings(
    enabled=False,
    discovery_interval_ms=60_000,
    update_interval_ms=60_000,
    rank_interval_ms=60_000,
    rate_limit_per_minute=60_000,
)


async def _seed(url: str) -> None:
    store = TrackerStore(url)
    try:
        await store.ensure_schema()
        await store.tags.insert_with_history(
            tag_id="t-alpha",
            name="alpha",
            view_count=300,
            platform_created_at="2023-11-14T22:13:20+00:00",
            now="2026-10-01T06:00:00+00:00",
        )
        await store.tags.record_observation(
            "t-alpha", view_count=320, previous_view_count=300, now="2026-10-02T06:00:00+00:00"
        )
        await store.tags.record_observation(
            "t-alpha", view_count=330, previous_view_count=320, now="2026-10-03T06:00:00+00:00"
        )
        for name, views in (("beta", 100), ("gamma", 200)):
            await store.tags.insert_with_history(
                tag_id=f"t-{name}",
                name=name,
                view_count=views,
                platform_created_at="2023-11-14T22:13:20+00:00",
                now="2026-10-01T06:00:00+00:00",
            )
    finally:
        await store.close()


class ApiTests(unittest.TestCase):
    def setUp(self) -> None:
        self._td = tempfile.TemporaryDirectory()
        self.root = Path(self._td.name)
        self.url = sqlite_url(self.root)
        asyncio.run(_seed(self.url))
        self.platform = FakePlatform()

    def tearDown(self) -> None:
        self._td.cleanup()

    def _client(self) -> TestClient:
        app = create_app(database_url=self.url, worker_settings=IDLE_SETTINGS, client=self.platform.client())
        return TestClient(app)

    def test_healthz(self) -> None:
        with self._client() as client:
            r = client.get("/healthz")
        self.assertEqual(r.status_code, 200)
        body = r.json()
        self.assertTrue(body["ok"])
        self.assertEqual(body["db_backend"], "sqlite")
        self.assertFalse(body["workers_enabled"])

    def test_worker_status_lists_registered_jobs(self) -> None:
        with self._client() as client:
            r = client.get("/api/workers/status")
        self.assertEqual(r.status_code, 200)
        workers = {w["name"]: w for w in r.json()["workers"]}
        self.assertEqual(set(workers), {"tag-discovery", "tag-updater", "rank-calculator"})
        self.assertFalse(workers["rank-calculator"]["is_running"])
        self.assertEqual(workers["rank-calculator"]["status"], "idle")

    def test_trigger_runs_job_once(self) -> None:
        with self._client() as client:
            r = client.post("/api/workers/rank-calculator/trigger")
            self.assertEqual(r.status_code, 200)
            self.assertEqual(r.json(), {"ok": True, "name": "rank-calculator", "ran": True, "skipped": False})
            tags = client.get("/api/tags", params={"sort_by": "rank", "sort_order": "asc"}).json()["items"]
            status = {w["name"]: w for w in client.get("/api/workers/status").json()["workers"]}
        self.assertEqual([(t["tag"], t["rank"]) for t in tags], [("alpha", 1), ("gamma", 2), ("beta", 3)])
        self.assertEqual(status["rank-calculator"]["success_count"], 1)

    def test_trigger_unknown_job_is_404(self) -> None:
        with self._client() as client:
            r = client.post("/api/workers/nope/trigger")
        self.assertEqual(r.status_code, 404)
        self.assertEqual(r.json()["error"]["code"], "HTTP_404")
        self.assertFalse(r.json()["ok"])

    def test_trigger_failure_is_500_and_recorded(self) -> None:
        with patch.object(RankCalculator, "run", AsyncMock(side_effect=RuntimeError("ranking broke"))):
            with self._client() as client:
                r = client.post("/api/workers/rank-calculator/trigger")
                status = {w["name"]: w for w in client.get("/api/workers/status").json()["workers"]}
        self.assertEqual(r.status_code, 500)
        self.assertEqual(r.json()["error"]["message"], "ranking broke")
        self.assertEqual(status["rank-calculator"]["status"], "failed")
        self.assertEqual(status["rank-calculator"]["last_error"], "ranking broke")

    def test_enable_and_disable(self) -> None:
        with self._client() as client:
            r = client.patch("/api/workers/rank-calculator/enable", json={"enabled": False})
            self.assertEqual(r.status_code, 200)
            self.assertFalse(r.json()["is_running"])
            status = {w["name"]: w for w in client.get("/api/workers/status").json()["workers"]}
            self.assertFalse(status["rank-calculator"]["is_enabled"])

            r = client.patch("/api/workers/rank-calculator/enable", json={"enabled": True})
            self.assertTrue(r.json()["is_running"])

            self.assertEqual(client.patch("/api/workers/nope/enable", json={"enabled": True}).status_code, 404)
            self.assertEqual(client.patch("/api/workers/rank-calculator/enable", json={}).status_code, 422)

    def test_list_tags_paginates_and_searches(self) -> None:
        with self._client() as client:
            page = client.get("/api/tags", params={"limit": 2}).json()
            searched = client.get("/api/tags", params={"search": "amm"}).json()
            bad = client.get("/api/tags", params={"sort_by": "password"})
        self.assertEqual([t["tag"] for t in page["items"]], ["alpha", "gamma"])
        self.assertEqual((page["total"], page["pages"]), (3, 2))
        self.assertEqual([t["tag"] for t in searched["items"]], ["gamma"])
        self.assertEqual(bad.status_code, 422)

    def test_list_tags_with_history_window(self) -> None:
        with self._client() as client:
            plain = client.get("/api/tags").json()
            body = client.get(
                "/api/tags",
                params={
                    "include_history": "true",
                    "history_start_date": "2026-10-01",
                    "history_end_date": "2026-10-02",
                },
            ).json()
        self.assertNotIn("history", plain["items"][0])
        alpha = body["items"][0]
        self.assertEqual(alpha["tag"], "alpha")
        self.assertEqual([h["view_count"] for h in alpha["history"]], [320, 300])
        self.assertEqual([h["change"] for h in alpha["history"]], [20, 0])
        self.assertEqual([h["change_percent"] for h in alpha["history"]], [6.67, 0.0])
        self.assertEqual(alpha["total_change"], 20)

    def test_list_tags_sorted_by_change_before_paging(self) -> None:
        with self._client() as client:
            first = client.get("/api/tags", params={"sort_by": "change", "limit": 1}).json()
            second = client.get("/api/tags", params={"sort_by": "change", "limit": 1, "page": 2}).json()
            ascending = client.get("/api/tags", params={"sort_by": "change", "sort_order": "asc"}).json()
            late = client.get(
                "/api/tags",
                params={"sort_by": "change", "sort_order": "asc", "history_start_date": "2026-10-03"},
            ).json()
        self.assertEqual([(t["tag"], t["total_change"]) for t in first["items"]], [("alpha", 30)])
        self.assertEqual((first["total"], first["pages"]), (3, 3))
        self.assertNotIn("history", first["items"][0])
        self.assertEqual([t["tag"] for t in second["items"]], ["beta"])
        self.assertEqual([t["tag"] for t in ascending["items"]], ["beta", "gamma", "alpha"])
        # Only one alpha point falls in the window, so every tag changed by 0.
        self.assertEqual([t["total_change"] for t in late["items"]], [0, 0, 0])

    def test_tag_history_with_date_range(self) -> None:
        with self._client() as client:
            full = client.get("/api/tags/t-alpha/history").json()
            ranged = client.get(
                "/api/tags/t-alpha/history",
                params={"start_date": "2026-10-02", "end_date": "2026-10-02"},
            ).json()
            missing = client.get("/api/tags/t-nope/history")
        self.assertEqual([h["change"] for h in full["history"]], [10, 20, 0])
        self.assertEqual([h["view_count"] for h in ranged["history"]], [320])
        self.assertEqual(missing.status_code, 404)

    def test_tag_request(self) -> None:
        self.platform.add_tag("sunset", "t-sunset", 250)
        with self._client() as client:
            created = client.post("/api/tags/request", json={"tag": "#Sunset"})
            again = client.post("/api/tags/request", json={"tag": "sunset"})
            unknown = client.post("/api/tags/request", json={"tag": "nothing"})
            empty = client.post("/api/tags/request", json={"tag": " # "})
        self.assertEqual(created.status_code, 200)
        self.assertEqual(created.json()["status"], "completed")
        self.assertEqual(created.json()["tag"]["rank"], 2)
        self.assertEqual(again.json()["status"], "already_tracked")
        self.assertEqual(unknown.status_code, 404)
        self.assertEqual(empty.status_code, 400)


class ChangeAnnotationTests(unittest.TestCase):
    def test_changes_compare_with_next_older_point(self) -> None:
        points = [{"view_count": 150}, {"view_count": 100}, {"view_count": 0}, {"view_count": 40}]
        out = annotate_changes(points)
        self.assertEqual([p["change"] for p in out], [50, 100, -40, 0])
        self.assertEqual([p["change_percent"] for p in out], [50.0, 0.0, -100.0, 0.0])
        self.assertEqual(total_change(points), 110)
        self.assertEqual(total_change([]), 0)


if __name__ == "__main__":
    unittest.main()
