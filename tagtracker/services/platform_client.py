from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import httpx

from tagtracker.config import PlatformSettings, get_platform_settings
from tagtracker.workers.errors import ExternalFetchError

logger = logging.getLogger("tagtracker.platform")

HASHTAG_RE = re.compile(r"#(\w+)")

TAG_PATH = "/contentdiscovery/media/tag"
POSTS_PATH = "/contentdiscovery/media/suggestionsnew"


@dataclass(frozen=True)
class PlatformTag:
    id: str
    tag: str
    view_count: int
    created_at: str


def _epoch_to_iso(value: Any) -> str:
    # The platform reports creation times in epoch milliseconds.
    try:
        ms = float(value)
    except (TypeError, ValueError):
        return datetime.now(timezone.utc).isoformat()
    return datetime.fromtimestamp(ms / 1000.0, tz=timezone.utc).isoformat()


def extract_tags(text: str) -> set[str]:
    """Hashtag names in `text`, without the leading '#', lowercased."""
    if not text:
        return set()
    return {m.lower() for m in HASHTAG_RE.findall(text)}


class PlatformClient:
    """
    Thin async wrapper around the platform's content discovery endpoints.

    Public methods never raise on transport or payload problems: they log and
    return None / [] so the calling job can move on to its next item.
    """

    def __init__(self, settings: PlatformSettings | None = None, *, http: httpx.AsyncClient | None = None) -> None:
        self.settings = settings or get_platform_settings()
        self._owns_http = http is None
        self._http = http or httpx.AsyncClient(
            base_url=self.settings.base_url,
            timeout=self.settings.timeout_seconds,
            headers={"User-Agent": self.settings.user_agent, "Accept": "application/json"},
        )

    async def _get_json(self, path: str, params: dict[str, Any]) -> dict[str, Any]:
        try:
            r = await self._http.get(path, params=params)
        except httpx.HTTPError as e:
            raise ExternalFetchError(path, f"{type(e).__name__}: {e}") from e
        if r.status_code != 200:
            raise ExternalFetchError(path, "unexpected status", status_code=r.status_code)
        try:
            body = r.json()
        except ValueError as e:
            raise ExternalFetchError(path, f"invalid json: {e}", status_code=r.status_code) from e
        if not isinstance(body, dict):
            raise ExternalFetchError(path, "json body is not an object", status_code=r.status_code)
        return body

    async def resolve_tag(self, name: str) -> PlatformTag | None:
        try:
            body = await self._get_json(TAG_PATH, {"tag": name, "ngsw-bypass": "true"})
        except ExternalFetchError as e:
            logger.error("resolve_tag_failed tag=%s error=%s", name, e)
            return None
        resp = body.get("response") if isinstance(body.get("response"), dict) else {}
        raw = resp.get("mediaOfferSuggestionTag")
        if not body.get("success") or not isinstance(raw, dict):
            return None
        try:
            return PlatformTag(
                id=str(raw["id"]),
                tag=str(raw.get("tag") or name),
                view_count=int(raw.get("viewCount") or 0),
                created_at=_epoch_to_iso(raw.get("createdAt")),
            )
        except (KeyError, TypeError, ValueError) as e:
            logger.error("resolve_tag_bad_payload tag=%s error=%s", name, e)
            return None

    async def fetch_posts(self, tag_id: str, limit: int = 25, offset: int = 0) -> list[dict[str, Any]]:
        params = {
            "before": 0,
            "after": 0,
            "tagIds": tag_id,
            "limit": int(limit),
            "offset": int(offset),
            "ngsw-bypass": "true",
        }
        try:
            body = await self._get_json(POSTS_PATH, params)
        except ExternalFetchError as e:
            logger.error("fetch_posts_failed tag_id=%s error=%s", tag_id, e)
            return []
        if not body.get("success"):
            return []
        resp = body.get("response") if isinstance(body.get("response"), dict) else {}
        agg = resp.get("aggregationData") if isinstance(resp.get("aggregationData"), dict) else {}
        posts = agg.get("posts")
        if not isinstance(posts, list):
            return []
        return [p for p in posts if isinstance(p, dict)]

    @staticmethod
    def extract_tags(text: str) -> set[str]:
        return extract_tags(text)

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()
