from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from tagtracker.services.platform_client import PlatformClient
from tagtracker.services.store import TrackerStore

logger = logging.getLogger("tagtracker.requests")


@dataclass(frozen=True)
class TagRequestResult:
    status: str  # already_tracked | completed | not_found
    tag: dict[str, Any] | None
    request_id: int | None = None


def normalize_tag_name(raw: str) -> str:
    return str(raw or "").strip().lstrip("#").strip().lower()


async def request_tag(store: TrackerStore, client: PlatformClient, raw_name: str) -> TagRequestResult:
    """Start tracking `raw_name` right away instead of waiting for discovery to find it."""
    name = normalize_tag_name(raw_name)
    if not name:
        raise ValueError("tag name is empty")

    existing = await store.tags.get_by_name(name)
    if existing is not None:
        return TagRequestResult(status="already_tracked", tag=existing)

    now = datetime.now(timezone.utc).isoformat()
    request_id = await store.tags.create_request(name, now=now)
    data = await client.resolve_tag(name)
    if data is None:
        await store.tags.finish_request(request_id, status="failed", now=now, error="tag not found on platform")
        logger.info("tag_request_failed request_id=%s tag=%s reason=not_found", request_id, name)
        return TagRequestResult(status="not_found", tag=None, request_id=request_id)

    tag = await store.tags.insert_with_history(
        tag_id=data.id,
        name=data.tag,
        view_count=data.view_count,
        platform_created_at=data.created_at,
        now=now,
        last_checked_at=now,
    )
    if tag is None:
        # Resolved to a tag that is already tracked under its platform name.
        tag = await store.tags.get(data.id) or await store.tags.get_by_name(data.tag)
        await store.tags.finish_request(request_id, status="completed", now=now)
        return TagRequestResult(status="already_tracked", tag=tag, request_id=request_id)

    rank = 1 + await store.tags.count_higher(data.view_count)
    await store.tags.set_ranks([(data.id, rank)])
    tag["rank"] = rank
    await store.tags.finish_request(request_id, status="completed", now=now)
    logger.info("tag_request_completed request_id=%s tag=%s rank=%d", request_id, data.tag, rank)
    return TagRequestResult(status="completed", tag=tag, request_id=request_id)
