from __future__ import annotations

from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tagtracker.db.models.jobs import JobStatus


class JobsRepo:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._Session = session_factory

    @staticmethod
    def _to_dict(row: JobStatus) -> dict[str, Any]:
        return {
            "name": str(row.name),
            "last_run_at": row.last_run_at,
            "next_run_at": row.next_run_at,
            "status": str(row.status),
            "last_error": row.last_error,
            "run_count": int(row.run_count),
            "success_count": int(row.success_count),
            "failure_count": int(row.failure_count),
            "is_enabled": bool(int(row.is_enabled)),
            "created_at": str(row.created_at),
            "updated_at": str(row.updated_at),
        }

    async def ensure(self, name: str, *, now: str) -> bool:
        """Insert an idle, enabled record for `name` unless one already exists."""
        async with self._Session() as s:
            exists = (await s.execute(select(JobStatus.id).where(JobStatus.name == name).limit(1))).first()
            if exists is not None:
                return False
            s.add(
                JobStatus(
                    name=name,
                    status="idle",
                    run_count=0,
                    success_count=0,
                    failure_count=0,
                    is_enabled=1,
                    created_at=now,
                    updated_at=now,
                )
            )
            try:
                await s.commit()
            except IntegrityError:
                # Another registration won the insert.
                await s.rollback()
                return False
            return True

    async def get(self, name: str) -> dict[str, Any] | None:
        async with self._Session() as s:
            row = (await s.execute(select(JobStatus).where(JobStatus.name == name))).scalar_one_or_none()
            return self._to_dict(row) if row is not None else None

    async def list(self) -> list[dict[str, Any]]:
        async with self._Session() as s:
            rows = list((await s.execute(select(JobStatus).order_by(JobStatus.name.asc()))).scalars().all())
        return [self._to_dict(r) for r in rows]

    async def mark_running(self, name: str, *, now: str) -> None:
        async with self._Session() as s:
            await s.execute(
                update(JobStatus)
                .where(JobStatus.name == name)
                .values(status="running", last_run_at=now, updated_at=now)
            )
            await s.commit()

    async def finish_success(self, name: str, *, now: str, next_run_at: str) -> None:
        async with self._Session() as s:
            await s.execute(
                update(JobStatus)
                .where(JobStatus.name == name)
                .values(
                    status="idle",
                    run_count=JobStatus.run_count + 1,
                    success_count=JobStatus.success_count + 1,
                    last_error=None,
                    next_run_at=next_run_at,
                    updated_at=now,
                )
            )
            await s.commit()

    async def finish_failure(self, name: str, *, error: str, now: str, next_run_at: str) -> None:
        async with self._Session() as s:
            await s.execute(
                update(JobStatus)
                .where(JobStatus.name == name)
                .values(
                    status="failed",
                    run_count=JobStatus.run_count + 1,
                    failure_count=JobStatus.failure_count + 1,
                    last_error=error,
                    next_run_at=next_run_at,
                    updated_at=now,
                )
            )
            await s.commit()

    async def set_enabled(self, name: str, enabled: bool, *, now: str) -> bool:
        async with self._Session() as s:
            res = await s.execute(
                update(JobStatus)
                .where(JobStatus.name == name)
                .values(is_enabled=1 if enabled else 0, updated_at=now)
            )
            await s.commit()
            return int(res.rowcount or 0) > 0

    async def reconcile_running(self, *, error: str, now: str) -> list[str]:
        """Mark rows left `running` by a dead process as failed; returns their names."""
        async with self._Session() as s:
            names = list(
                (await s.execute(select(JobStatus.name).where(JobStatus.status == "running"))).scalars().all()
            )
            if names:
                await s.execute(
                    update(JobStatus)
                    .where(JobStatus.status == "running")
                    .values(status="failed", last_error=error, updated_at=now)
                )
                await s.commit()
        return [str(n) for n in names]
