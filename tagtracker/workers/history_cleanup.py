from __future__ import annotations

import logging

from tagtracker.services.store import TrackerStore

logger = logging.getLogger("tagtracker.jobs.cleanup")

DELETE_BATCH_SIZE = 100


def duplicate_history_ids(entries: list[dict]) -> list[int]:
    """Ids of every history point after the earliest one per (tag, UTC date)."""
    seen: set[tuple[str, str]] = set()
    dupes: list[int] = []
    for entry in sorted(entries, key=lambda e: (e["tag_id"], e["created_at"], e["id"])):
        key = (entry["tag_id"], entry["created_at"][:10])
        if key in seen:
            dupes.append(int(entry["id"]))
        else:
            seen.add(key)
    return dupes


async def cleanup_duplicate_history(store: TrackerStore, *, batch_size: int = DELETE_BATCH_SIZE) -> int:
    entries = await store.tags.all_history_ordered()
    dupes = duplicate_history_ids(entries)
    if not dupes:
        logger.info("history_cleanup_done deleted=0 scanned=%d", len(entries))
        return 0

    deleted = 0
    for i in range(0, len(dupes), batch_size):
        deleted += await store.tags.delete_history(dupes[i : i + batch_size])
    logger.info("history_cleanup_done deleted=%d scanned=%d", deleted, len(entries))
    return deleted
