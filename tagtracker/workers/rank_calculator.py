from __future__ import annotations

import logging
from typing import Sequence

from tagtracker.services.store import TrackerStore

logger = logging.getLogger("tagtracker.jobs.ranks")

JOB_NAME = "rank-calculator"


def dense_ranks(view_counts: Sequence[int]) -> list[int]:
    """
    Competition ranks for view counts already sorted descending.

    Equal counts share a rank and the next distinct count skips ahead:
    [100, 100, 80, 50] -> [1, 1, 3, 4].
    """
    ranks: list[int] = []
    previous: int | None = None
    current = 0
    for position, count in enumerate(view_counts):
        if count != previous:
            current = position + 1
            previous = count
        ranks.append(current)
    return ranks


class RankCalculator:
    def __init__(self, store: TrackerStore) -> None:
        self.store = store

    async def run(self) -> dict[str, int]:
        rows = await self.store.tags.view_counts_desc()
        ranks = dense_ranks([count for _, count in rows])
        await self.store.tags.set_ranks([(tag_id, rank) for (tag_id, _), rank in zip(rows, ranks)])
        logger.info("ranks_updated tags=%d distinct=%d", len(rows), len(set(ranks)))
        return {"ranked": len(rows)}
