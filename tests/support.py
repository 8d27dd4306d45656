from __future__ import annotations

import tempfile
import unittest
from pathlib import Path
from typing import Any

import httpx

from tagtracker.config import PlatformSettings
from tagtracker.services.platform_client import POSTS_PATH, TAG_PATH, PlatformClient
from tagtracker.services.store import TrackerStore

BASE_URL = "https://platform.test/api/v1"


def sqlite_url(root: Path) -> str:
    return f"sqlite+aiosqlite:///{(root / 'tracker.db').as_posix()}"


class FakePlatform:
    """In-memory platform API served through httpx.MockTransport."""

    def __init__(self) -> None:
        self.tags: dict[str, dict[str, Any]] = {}
        self.posts: dict[str, list[str]] = {}
        self.down: set[str] = set()
        self.calls: list[tuple[str, dict[str, str]]] = []

    def add_tag(self, name: str, tag_id: str, view_count: int, *, posts: list[str] | None = None) -> None:
        self.tags[name] = {"id": tag_id, "tag": name, "viewCount": view_count, "createdAt": 1700000000000}
        if posts is not None:
            self.posts[tag_id] = list(posts)

    def set_views(self, name: str, view_count: int) -> None:
        self.tags[name]["viewCount"] = view_count

    def tag_lookups(self) -> list[str]:
        return [params.get("tag", "") for path, params in self.calls if path.endswith(TAG_PATH)]

    def handler(self, request: httpx.Request) -> httpx.Response:
        params = dict(request.url.params)
        self.calls.append((request.url.path, params))
        if request.url.path.endswith(TAG_PATH):
            name = params.get("tag", "")
            if name in self.down:
                return httpx.Response(503, text="unavailable")
            raw = self.tags.get(name)
            return httpx.Response(200, json={"success": True, "response": {"mediaOfferSuggestionTag": raw}})
        if request.url.path.endswith(POSTS_PATH):
            contents = self.posts.get(params.get("tagIds", ""), [])
            limit = int(params.get("limit", "25"))
            posts = [{"id": str(i), "content": c} for i, c in enumerate(contents[:limit])]
            return httpx.Response(200, json={"success": True, "response": {"aggregationData": {"posts": posts}}})
        return httpx.Response(404, json={"success": False})

    def http(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=BASE_URL, transport=httpx.MockTransport(self.handler))

    def client(self, http: httpx.AsyncClient | None = None) -> PlatformClient:
        settings = PlatformSettings(base_url=BASE_URL, timeout_seconds=5.0, user_agent="tagtracker-tests")
        return PlatformClient(settings, http=http or self.http())


class StoreTestCase(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self._td = tempfile.TemporaryDirectory()
        self.root = Path(self._td.name)
        self.store = TrackerStore(sqlite_url(self.root))
        await self.store.ensure_schema()

    async def asyncTearDown(self) -> None:
        await self.store.close()
        self._td.cleanup()

    async def add_tracked(self, name: str, tag_id: str, view_count: int, *, now: str) -> dict[str, Any]:
        row = await self.store.tags.insert_with_history(
            tag_id=tag_id,
            name=name,
            view_count=view_count,
            platform_created_at="2023-11-14T22:13:20+00:00",
            now=now,
        )
        assert row is not None
        return row
