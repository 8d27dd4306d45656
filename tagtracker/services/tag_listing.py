from __future__ import annotations

from typing import Any

from tagtracker.services.store import TrackerStore


def annotate_changes(points: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """
    Recompute `change` and `change_percent` for newest-first points within a window.

    Each point is compared with the next older point in the list. The oldest point
    has nothing to compare against inside the window, so it gets 0 for both.
    """
    out: list[dict[str, Any]] = []
    for i, point in enumerate(points):
        older = points[i + 1] if i + 1 < len(points) else None
        change = point["view_count"] - older["view_count"] if older else 0
        prev = older["view_count"] if older else 0
        out.append(
            {
                **point,
                "change": change,
                "change_percent": round(change / prev * 100, 2) if prev > 0 else 0.0,
            }
        )
    return out


def total_change(points: list[dict[str, Any]]) -> int:
    if not points:
        return 0
    return int(points[0]["view_count"]) - int(points[-1]["view_count"])


async def list_tags(
    store: TrackerStore,
    *,
    page: int,
    limit: int,
    search: str = "",
    sort_by: str = "view_count",
    sort_order: str = "desc",
    include_history: bool = False,
    start: str | None = None,
    end: str | None = None,
) -> tuple[list[dict[str, Any]], int]:
    """
    Page of tags for the list endpoint.

    With `sort_by="change"` every match is loaded, ordered by the view change
    between the oldest and newest point in the window, then sliced to the page.
    """
    by_change = sort_by == "change"
    items, total = await store.tags.list_page(
        page=page,
        limit=None if by_change else limit,
        search=search,
        sort_by="view_count" if by_change else sort_by,
        sort_order=sort_order,
    )
    if not (include_history or by_change):
        return items, total

    history = await store.tags.history_for_tags([t["id"] for t in items], start=start, end=end)
    for item in items:
        points = history.get(item["id"], [])
        item["total_change"] = total_change(points)
        if include_history:
            item["history"] = annotate_changes(points)

    if by_change:
        items.sort(key=lambda t: t["id"])
        items.sort(key=lambda t: t["total_change"], reverse=sort_order == "desc")
        items = items[(page - 1) * limit : page * limit]
    return items, total
