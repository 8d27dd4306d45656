from __future__ import annotations

import unittest

from tagtracker.workers.history_cleanup import cleanup_duplicate_history, duplicate_history_ids
from tests.support import StoreTestCase


class DuplicateHistoryIdsTests(unittest.TestCase):
    def test_keeps_earliest_per_tag_and_day(self) -> None:
        entries = [
            {"id": 3, "tag_id": "a", "created_at": "2026-10-01T18:00:00+00:00"},
            {"id": 1, "tag_id": "a", "created_at": "2026-10-01T06:00:00+00:00"},
            {"id": 2, "tag_id": "a", "created_at": "2026-10-02T06:00:00+00:00"},
            {"id": 4, "tag_id": "b", "created_at": "2026-10-01T07:00:00+00:00"},
            {"id": 5, "tag_id": "b", "created_at": "2026-10-01T07:30:00+00:00"},
        ]
        self.assertEqual(sorted(duplicate_history_ids(entries)), [3, 5])

    def test_no_duplicates(self) -> None:
        self.assertEqual(duplicate_history_ids([]), [])


class CleanupDuplicateHistoryTests(StoreTestCase):
    async def test_deletes_same_day_extras_in_batches(self) -> None:
        await self.add_tracked("alpha", "t-alpha", 100, now="2026-10-01T06:00:00+00:00")
        for hour in range(7, 12):
            await self.store.tags.record_observation(
                "t-alpha",
                view_count=100 + hour,
                previous_view_count=100,
                now=f"2026-10-01T{hour:02d}:00:00+00:00",
            )
        await self.store.tags.record_observation(
            "t-alpha", view_count=150, previous_view_count=111, now="2026-10-02T06:00:00+00:00"
        )

        deleted = await cleanup_duplicate_history(self.store, batch_size=2)

        self.assertEqual(deleted, 5)
        remaining = await self.store.tags.history("t-alpha")
        self.assertEqual(
            [h["created_at"] for h in remaining],
            ["2026-10-02T06:00:00+00:00", "2026-10-01T06:00:00+00:00"],
        )
        self.assertEqual(await cleanup_duplicate_history(self.store), 0)


if __name__ == "__main__":
    unittest.main()
