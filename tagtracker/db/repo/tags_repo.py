from __future__ import annotations

from typing import Any

from sqlalchemy import and_, delete, exists, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tagtracker.db.models.tags import Tag, TagHistory, TagRequest

SORTABLE_COLUMNS = {
    "view_count": Tag.view_count,
    "tag": Tag.tag,
    "rank": Tag.rank,
    "updated_at": Tag.updated_at,
}


class TagsRepo:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._Session = session_factory

    @staticmethod
    def _to_dict(row: Tag) -> dict[str, Any]:
        return {
            "id": str(row.id),
            "tag": str(row.tag),
            "view_count": int(row.view_count),
            "rank": int(row.rank) if row.rank is not None else None,
            "platform_created_at": str(row.platform_created_at),
            "last_checked_at": row.last_checked_at,
            "last_used_for_discovery": row.last_used_for_discovery,
            "created_at": str(row.created_at),
            "updated_at": str(row.updated_at),
        }

    @staticmethod
    def _history_to_dict(row: TagHistory) -> dict[str, Any]:
        return {
            "id": int(row.id),
            "tag_id": str(row.tag_id),
            "view_count": int(row.view_count),
            "change": int(row.change),
            "created_at": str(row.created_at),
        }

    async def get(self, tag_id: str) -> dict[str, Any] | None:
        async with self._Session() as s:
            row = await s.get(Tag, tag_id)
            return self._to_dict(row) if row is not None else None

    async def get_by_name(self, name: str) -> dict[str, Any] | None:
        async with self._Session() as s:
            row = (await s.execute(select(Tag).where(Tag.tag == name).limit(1))).scalar_one_or_none()
            return self._to_dict(row) if row is not None else None

    async def existing_names(self, names: list[str]) -> set[str]:
        if not names:
            return set()
        async with self._Session() as s:
            rows = (await s.execute(select(Tag.tag).where(Tag.tag.in_(names)))).scalars().all()
        return {str(r) for r in rows}

    async def insert_with_history(
        self,
        *,
        tag_id: str,
        name: str,
        view_count: int,
        platform_created_at: str,
        now: str,
        last_checked_at: str | None = None,
        last_used_for_discovery: str | None = None,
    ) -> dict[str, Any] | None:
        """
        Insert a tracked tag and its first history point (change 0) in one transaction.

        Returns None when the id or name is already tracked.
        """
        async with self._Session() as s:
            row = Tag(
                id=tag_id,
                tag=name,
                view_count=int(view_count),
                platform_created_at=platform_created_at,
                last_checked_at=last_checked_at,
                last_used_for_discovery=last_used_for_discovery,
                created_at=now,
                updated_at=now,
            )
            s.add(row)
            s.add(TagHistory(tag_id=tag_id, view_count=int(view_count), change=0, created_at=now))
            try:
                await s.commit()
            except IntegrityError:
                await s.rollback()
                return None
            return self._to_dict(row)

    async def discovery_candidates(self, *, used_before: str, limit: int = 3) -> list[dict[str, Any]]:
        async with self._Session() as s:
            q = (
                select(Tag)
                .where(or_(Tag.last_used_for_discovery.is_(None), Tag.last_used_for_discovery < used_before))
                .order_by(Tag.last_used_for_discovery.asc().nullsfirst(), Tag.id.asc())
                .limit(limit)
            )
            rows = list((await s.execute(q)).scalars().all())
        return [self._to_dict(r) for r in rows]

    async def mark_used_for_discovery(self, name: str, *, now: str, tag_id: str | None = None) -> None:
        cond = Tag.tag == name if tag_id is None else or_(Tag.tag == name, Tag.id == tag_id)
        async with self._Session() as s:
            await s.execute(update(Tag).where(cond).values(last_used_for_discovery=now))
            await s.commit()

    async def stale_for_update(self, *, fresh_since: str, limit: int = 10) -> list[dict[str, Any]]:
        """Tags without any history point created at or after `fresh_since`."""
        fresh = exists().where(and_(TagHistory.tag_id == Tag.id, TagHistory.created_at >= fresh_since))
        async with self._Session() as s:
            q = (
                select(Tag)
                .where(~fresh)
                .order_by(Tag.last_checked_at.asc().nullsfirst(), Tag.id.asc())
                .limit(limit)
            )
            rows = list((await s.execute(q)).scalars().all())
        return [self._to_dict(r) for r in rows]

    async def has_history_since(self, tag_id: str, since: str) -> bool:
        async with self._Session() as s:
            q = select(TagHistory.id).where(and_(TagHistory.tag_id == tag_id, TagHistory.created_at >= since))
            return (await s.execute(q.limit(1))).first() is not None

    async def touch_checked(self, tag_id: str, *, now: str) -> None:
        async with self._Session() as s:
            await s.execute(update(Tag).where(Tag.id == tag_id).values(last_checked_at=now))
            await s.commit()

    async def record_observation(self, tag_id: str, *, view_count: int, previous_view_count: int, now: str) -> int:
        change = int(view_count) - int(previous_view_count)
        async with self._Session() as s:
            await s.execute(
                update(Tag)
                .where(Tag.id == tag_id)
                .values(view_count=int(view_count), last_checked_at=now, updated_at=now)
            )
            s.add(TagHistory(tag_id=tag_id, view_count=int(view_count), change=change, created_at=now))
            await s.commit()
        return change

    async def view_counts_desc(self) -> list[tuple[str, int]]:
        async with self._Session() as s:
            rows = (
                await s.execute(select(Tag.id, Tag.view_count).order_by(Tag.view_count.desc(), Tag.id.asc()))
            ).all()
        return [(str(r[0]), int(r[1])) for r in rows]

    async def set_ranks(self, ranks: list[tuple[str, int]]) -> None:
        async with self._Session() as s:
            for tag_id, rank in ranks:
                await s.execute(update(Tag).where(Tag.id == tag_id).values(rank=int(rank)))
            await s.commit()

    async def count_higher(self, view_count: int) -> int:
        async with self._Session() as s:
            n = (await s.execute(select(func.count()).select_from(Tag).where(Tag.view_count > int(view_count)))).scalar()
        return int(n or 0)

    async def list_page(
        self,
        *,
        page: int = 1,
        limit: int | None = 20,
        search: str = "",
        sort_by: str = "view_count",
        sort_order: str = "desc",
    ) -> tuple[list[dict[str, Any]], int]:
        """One page of tags plus the total match count; `limit=None` returns every match."""
        col = SORTABLE_COLUMNS.get(sort_by, Tag.view_count)
        order = col.asc() if sort_order == "asc" else col.desc()
        cond = Tag.tag.like(f"%{search}%") if search else None
        async with self._Session() as s:
            count_q = select(func.count()).select_from(Tag)
            q = select(Tag).order_by(order, Tag.id.asc())
            if limit is not None:
                q = q.offset((page - 1) * limit).limit(limit)
            if cond is not None:
                count_q = count_q.where(cond)
                q = q.where(cond)
            total = (await s.execute(count_q)).scalar() or 0
            rows = list((await s.execute(q)).scalars().all())
        return [self._to_dict(r) for r in rows], int(total)

    async def history(
        self, tag_id: str, *, start: str | None = None, end: str | None = None
    ) -> list[dict[str, Any]]:
        async with self._Session() as s:
            q = select(TagHistory).where(TagHistory.tag_id == tag_id)
            if start:
                q = q.where(TagHistory.created_at >= start)
            if end:
                q = q.where(TagHistory.created_at <= end)
            rows = list((await s.execute(q.order_by(TagHistory.created_at.desc(), TagHistory.id.desc()))).scalars().all())
        return [self._history_to_dict(r) for r in rows]

    async def history_for_tags(
        self, tag_ids: list[str], *, start: str | None = None, end: str | None = None
    ) -> dict[str, list[dict[str, Any]]]:
        """Newest-first history per tag id; tags without points map to an empty list."""
        out: dict[str, list[dict[str, Any]]] = {tid: [] for tid in tag_ids}
        if not tag_ids:
            return out
        async with self._Session() as s:
            q = select(TagHistory).where(TagHistory.tag_id.in_(tag_ids))
            if start:
                q = q.where(TagHistory.created_at >= start)
            if end:
                q = q.where(TagHistory.created_at <= end)
            q = q.order_by(TagHistory.tag_id.asc(), TagHistory.created_at.desc(), TagHistory.id.desc())
            rows = list((await s.execute(q)).scalars().all())
        for r in rows:
            out[str(r.tag_id)].append(self._history_to_dict(r))
        return out

    async def all_history_ordered(self) -> list[dict[str, Any]]:
        async with self._Session() as s:
            q = select(TagHistory).order_by(TagHistory.tag_id.asc(), TagHistory.created_at.asc(), TagHistory.id.asc())
            rows = list((await s.execute(q)).scalars().all())
        return [self._history_to_dict(r) for r in rows]

    async def delete_history(self, ids: list[int]) -> int:
        if not ids:
            return 0
        async with self._Session() as s:
            res = await s.execute(delete(TagHistory).where(TagHistory.id.in_(ids)))
            await s.commit()
            return int(res.rowcount or 0)

    async def create_request(self, tag: str, *, now: str) -> int:
        async with self._Session() as s:
            row = TagRequest(tag=tag, status="pending", created_at=now, updated_at=now)
            s.add(row)
            await s.commit()
            return int(row.id)

    async def finish_request(self, request_id: int, *, status: str, now: str, error: str | None = None) -> None:
        async with self._Session() as s:
            await s.execute(
                update(TagRequest).where(TagRequest.id == request_id).values(status=status, error=error, updated_at=now)
            )
            await s.commit()

    async def get_request(self, request_id: int) -> dict[str, Any] | None:
        async with self._Session() as s:
            row = await s.get(TagRequest, request_id)
            if row is None:
                return None
            return {
                "id": int(row.id),
                "tag": str(row.tag),
                "status": str(row.status),
                "error": row.error,
                "created_at": str(row.created_at),
                "updated_at": str(row.updated_at),
            }
