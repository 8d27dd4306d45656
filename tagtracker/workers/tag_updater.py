from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable

from tagtracker.services.platform_client import PlatformClient
from tagtracker.services.store import TrackerStore

logger = logging.getLogger("tagtracker.jobs.updater")

JOB_NAME = "tag-updater"

BATCH_SIZE = 10
FRESH_WINDOW = timedelta(hours=24)


def utc_day_start(now: datetime) -> datetime:
    return now.astimezone(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)


class TagUpdater:
    """Refreshes view counts for tags without a history point in the last 24 hours."""

    def __init__(
        self,
        store: TrackerStore,
        client: PlatformClient,
        *,
        delay_seconds: float = 1.0,
        batch_size: int = BATCH_SIZE,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.store = store
        self.client = client
        self.delay_seconds = max(0.0, float(delay_seconds))
        self.batch_size = max(1, int(batch_size))
        self._sleep = sleep

    async def _update_one(self, tag: dict[str, Any]) -> str:
        now = datetime.now(timezone.utc)
        # Discovery may have written today's point since the batch was selected.
        if await self.store.tags.has_history_since(tag["id"], utc_day_start(now).isoformat()):
            await self.store.tags.touch_checked(tag["id"], now=now.isoformat())
            logger.debug("tag_update_skipped tag=%s reason=already_recorded_today", tag["tag"])
            return "skipped"

        data = await self.client.resolve_tag(tag["tag"])
        if data is None:
            # Stamp it anyway so unresolvable tags rotate to the back of the queue.
            await self.store.tags.touch_checked(tag["id"], now=datetime.now(timezone.utc).isoformat())
            logger.warning("tag_update_not_found tag=%s", tag["tag"])
            return "error"

        change = await self.store.tags.record_observation(
            tag["id"],
            view_count=data.view_count,
            previous_view_count=tag["view_count"],
            now=datetime.now(timezone.utc).isoformat(),
        )
        logger.info("tag_updated tag=%s view_count=%s change=%+d", tag["tag"], data.view_count, change)
        return "updated"

    async def run(self) -> dict[str, int]:
        now = datetime.now(timezone.utc)
        tags = await self.store.tags.stale_for_update(
            fresh_since=(now - FRESH_WINDOW).isoformat(),
            limit=self.batch_size,
        )
        counts = {"updated": 0, "skipped": 0, "errors": 0}
        if not tags:
            logger.info("tag_update_idle reason=no_stale_tags")
            return counts

        for tag in tags:
            try:
                outcome = await self._update_one(tag)
            except Exception as e:
                outcome = "error"
                logger.error("tag_update_failed tag=%s error=%s", tag["tag"], e)
            counts["errors" if outcome == "error" else outcome] += 1
            if outcome != "skipped" and self.delay_seconds > 0:
                await self._sleep(self.delay_seconds)

        logger.info(
            "tag_update_done batch=%d updated=%d skipped=%d errors=%d",
            len(tags),
            counts["updated"],
            counts["skipped"],
            counts["errors"],
        )
        return counts
