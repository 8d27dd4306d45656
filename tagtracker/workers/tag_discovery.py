from __future__ import annotations

import asyncio
import logging
import random
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable

from tagtracker.services.platform_client import PlatformClient
from tagtracker.services.store import TrackerStore

logger = logging.getLogger("tagtracker.jobs.discovery")

JOB_NAME = "tag-discovery"

# Used only while no tracked tag is eligible as a seed (fresh database).
SEED_TAGS = (
    "art",
    "photography",
    "cosplay",
    "fitness",
    "gaming",
    "music",
    "travel",
    "fashion",
    "dance",
    "cooking",
    "outdoors",
    "tattoo",
)

MAX_SEEDS = 3
POSTS_PER_SEED = 20
SEED_COOLDOWN = timedelta(hours=1)


class TagDiscovery:
    """
    Expands the tracked tag set by following hashtags in posts of known tags.

    A run picks up to three seeds, reads a page of posts for each, and adds
    every hashtag found that the platform can resolve and that is not tracked
    yet. Every external call is followed or preceded by the rate-limit delay.
    """

    def __init__(
        self,
        store: TrackerStore,
        client: PlatformClient,
        *,
        delay_seconds: float = 1.0,
        rng: random.Random | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.store = store
        self.client = client
        self.delay_seconds = max(0.0, float(delay_seconds))
        self.rng = rng or random.Random()
        self._sleep = sleep

    async def _pause(self) -> None:
        if self.delay_seconds > 0:
            await self._sleep(self.delay_seconds)

    async def select_seeds(self, now: datetime) -> list[str]:
        rows = await self.store.tags.discovery_candidates(
            used_before=(now - SEED_COOLDOWN).isoformat(),
            limit=MAX_SEEDS,
        )
        if rows:
            return [r["tag"] for r in rows]
        k = self.rng.randint(2, 3)
        seeds = self.rng.sample(list(SEED_TAGS), k)
        logger.info("discovery_default_seeds seeds=%s", ",".join(seeds))
        return seeds

    async def _process_seed(self, seed: str, discovered: set[str]) -> None:
        data = await self.client.resolve_tag(seed)
        if data is None:
            logger.warning("discovery_seed_not_found seed=%s", seed)
            return

        now = datetime.now(timezone.utc).isoformat()
        if await self.store.tags.get(data.id) is None:
            inserted = await self.store.tags.insert_with_history(
                tag_id=data.id,
                name=data.tag,
                view_count=data.view_count,
                platform_created_at=data.created_at,
                now=now,
            )
            if inserted is not None:
                logger.info("discovery_seed_added seed=%s view_count=%s", data.tag, data.view_count)

        posts = await self.client.fetch_posts(data.id, limit=POSTS_PER_SEED)
        found = 0
        for post in posts:
            tags = self.client.extract_tags(str(post.get("content") or ""))
            found += len(tags - discovered)
            discovered.update(tags)
        await self.store.tags.mark_used_for_discovery(seed, tag_id=data.id, now=now)
        logger.info("discovery_seed_done seed=%s posts=%d new_names=%d", data.tag, len(posts), found)

    async def _add_candidate(self, name: str) -> bool:
        data = await self.client.resolve_tag(name)
        if data is None:
            logger.debug("discovery_candidate_not_found tag=%s", name)
            return False
        inserted = await self.store.tags.insert_with_history(
            tag_id=data.id,
            name=data.tag,
            view_count=data.view_count,
            platform_created_at=data.created_at,
            now=datetime.now(timezone.utc).isoformat(),
        )
        if inserted is None:
            # Tracked under a different spelling, or added concurrently.
            return False
        logger.info("discovery_tag_added tag=%s view_count=%s", data.tag, data.view_count)
        return True

    async def run(self) -> dict[str, int]:
        now = datetime.now(timezone.utc)
        seeds = await self.select_seeds(now)
        discovered: set[str] = set()
        errors = 0

        for seed in seeds:
            try:
                await self._process_seed(seed, discovered)
            except Exception as e:
                errors += 1
                logger.error("discovery_seed_failed seed=%s error=%s", seed, e)
            await self._pause()

        known = await self.store.tags.existing_names(sorted(discovered))
        added = 0
        for name in sorted(discovered - known):
            try:
                await self._pause()
                if await self._add_candidate(name):
                    added += 1
            except Exception as e:
                errors += 1
                logger.error("discovery_candidate_failed tag=%s error=%s", name, e)

        summary = {"discovered": len(discovered), "added": added, "errors": errors}
        logger.info(
            "discovery_done seeds=%d discovered=%d added=%d errors=%d",
            len(seeds),
            summary["discovered"],
            added,
            errors,
        )
        return summary
