from __future__ import annotations

import asyncio
import functools
import logging
import signal
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable

from apscheduler.job import Job as TimerJob
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from tagtracker.services.store import TrackerStore
from tagtracker.workers.errors import DuplicateJobError, JobExecutionError, UnknownJobError

logger = logging.getLogger("tagtracker.scheduler")

INTERRUPTED_ERROR = "interrupted before completion"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Job:
    name: str
    interval_ms: int
    run: Callable[[], Awaitable[Any]]


@dataclass
class _Registration:
    job: Job
    timer: TimerJob | None = None
    # Process-local guard; the persisted `status` column is bookkeeping only.
    is_running: bool = False


class JobScheduler:
    """
    Runs a fixed set of named jobs on independent intervals inside one event loop.

    Each job has at most one execution in flight. Timer firings that land while
    the previous execution is still running are dropped, not queued. Outcomes
    are persisted per job in the `job_status` table.
    """

    def __init__(
        self,
        store: TrackerStore,
        *,
        worker_enabled: bool = True,
        timers: AsyncIOScheduler | None = None,
    ) -> None:
        self.store = store
        self.worker_enabled = worker_enabled
        self._timers = timers or AsyncIOScheduler(
            timezone="UTC",
            job_defaults={"max_instances": 1, "coalesce": True},
        )
        self._registry: dict[str, _Registration] = {}
        self._tasks: set[asyncio.Task[Any]] = set()
        self._shutdown_task: asyncio.Task[None] | None = None
        self._shutting_down = False
        self.exited = asyncio.Event()

    @property
    def names(self) -> list[str]:
        return list(self._registry)

    def _get(self, name: str) -> _Registration:
        reg = self._registry.get(name)
        if reg is None:
            raise UnknownJobError(name)
        return reg

    def is_scheduled(self, name: str) -> bool:
        reg = self._registry.get(name)
        return reg is not None and reg.timer is not None

    def is_executing(self, name: str) -> bool:
        reg = self._registry.get(name)
        return reg is not None and reg.is_running

    async def register(self, job: Job) -> None:
        if job.name in self._registry:
            raise DuplicateJobError(job.name)
        self._registry[job.name] = _Registration(job=job)
        logger.info("job_registered name=%s interval_ms=%s", job.name, job.interval_ms)
        try:
            await self.store.jobs.ensure(job.name, now=_utc_now().isoformat())
        except Exception as e:
            logger.error("job_status_init_failed name=%s error=%s", job.name, e)

    async def start(self, name: str) -> bool:
        """Run `name` now and every interval afterwards. Returns False when the job is disabled."""
        reg = self._get(name)
        if self._shutting_down:
            logger.info("job_start_ignored name=%s reason=shutting_down", name)
            return False
        record = await self.store.jobs.get(name)
        if not record or not record["is_enabled"]:
            logger.info("job_disabled name=%s", name)
            return False

        self.stop(name)
        self._spawn(name, trigger="initial")
        if not self._timers.running:
            self._timers.start()
        reg.timer = self._timers.add_job(
            self._on_tick,
            trigger=IntervalTrigger(seconds=reg.job.interval_ms / 1000.0, timezone="UTC"),
            args=[name],
            id=name,
            name=name,
            replace_existing=True,
        )
        logger.info("job_started name=%s interval_ms=%s", name, reg.job.interval_ms)
        return True

    def stop(self, name: str) -> None:
        reg = self._registry.get(name)
        if reg is None or reg.timer is None:
            return
        try:
            reg.timer.remove()
        except JobLookupError:
            pass
        reg.timer = None
        logger.info("job_stopped name=%s", name)

    async def _on_tick(self, name: str) -> None:
        # Must return immediately: the execution runs as its own task.
        if self._shutting_down:
            return
        reg = self._registry.get(name)
        if reg is None or reg.is_running:
            logger.debug("tick_skipped name=%s", name)
            return
        self._spawn(name, trigger="timer")

    def _spawn(self, name: str, *, trigger: str) -> asyncio.Task[bool]:
        task = asyncio.get_running_loop().create_task(self.run_worker(name), name=f"job:{name}:{trigger}")
        self._tasks.add(task)
        task.add_done_callback(functools.partial(self._on_done, name, trigger))
        return task

    def _on_done(self, name: str, trigger: str, task: asyncio.Task[bool]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.warning("job_task_cancelled name=%s trigger=%s", name, trigger)
            return
        exc = task.exception()
        if exc is not None:
            logger.error("job_task_error name=%s trigger=%s error=%s", name, trigger, exc)

    async def run_worker(self, name: str, *, raise_errors: bool = False) -> bool:
        """
        Execute one run of `name` with status bookkeeping.

        Returns False without running when an execution is already in flight.
        A failing run is recorded as `failed`; it is re-raised as
        JobExecutionError only when `raise_errors` is set (manual triggers).
        """
        reg = self._get(name)
        if reg.is_running:
            logger.warning("job_skipped_running name=%s", name)
            return False

        job = reg.job
        interval = timedelta(milliseconds=job.interval_ms)
        reg.is_running = True
        try:
            started = _utc_now()
            logger.info("job_run name=%s", name)
            try:
                await self.store.jobs.mark_running(name, now=started.isoformat())
                await job.run()
            except Exception as e:
                finished = _utc_now()
                message = str(e) or type(e).__name__
                logger.error("job_failed name=%s error=%s", name, message)
                await self.store.jobs.finish_failure(
                    name,
                    error=message,
                    now=finished.isoformat(),
                    next_run_at=(finished + interval).isoformat(),
                )
                if raise_errors:
                    raise JobExecutionError(name, message) from e
                return True

            finished = _utc_now()
            await self.store.jobs.finish_success(
                name,
                now=finished.isoformat(),
                next_run_at=(finished + interval).isoformat(),
            )
            logger.info(
                "job_done name=%s duration_ms=%d",
                name,
                int((finished - started).total_seconds() * 1000),
            )
            return True
        finally:
            reg.is_running = False

    async def _start_logged(self, name: str) -> None:
        try:
            await self.start(name)
        except Exception as e:
            logger.error("job_start_failed name=%s error=%s", name, e)

    async def start_all(self) -> None:
        if not self.worker_enabled:
            logger.info("workers_disabled reason=WORKER_ENABLED=false")
            return
        await asyncio.gather(*(self._start_logged(name) for name in self.names))

    def stop_all(self) -> None:
        for name in self.names:
            self.stop(name)

    async def set_enabled(self, name: str, enabled: bool) -> None:
        self._get(name)
        await self.store.jobs.set_enabled(name, enabled, now=_utc_now().isoformat())
        if not enabled:
            self.stop(name)
        elif not self.is_scheduled(name):
            await self.start(name)
        logger.info("job_enabled_changed name=%s enabled=%s", name, enabled)

    async def reconcile_interrupted(self) -> list[str]:
        names = await self.store.jobs.reconcile_running(error=INTERRUPTED_ERROR, now=_utc_now().isoformat())
        for name in names:
            logger.warning("job_status_reconciled name=%s status=failed", name)
        return names

    async def get_status(self) -> list[dict[str, Any]]:
        rows = await self.store.jobs.list()
        for row in rows:
            row["is_running"] = self.is_scheduled(row["name"])
            row["in_flight"] = self.is_executing(row["name"])
        return rows

    async def shutdown(self) -> None:
        if self._shutting_down:
            return
        self._shutting_down = True
        logger.info("shutdown_start in_flight=%d", len(self._tasks))
        self.stop_all()
        if self._timers.running:
            self._timers.shutdown(wait=False)
        logger.info("shutdown_complete")
        self.exited.set()

    async def wait_idle(self, timeout: float | None = None) -> bool:
        """Wait for in-flight executions; True when none are left."""
        pending = set(self._tasks)
        if pending:
            await asyncio.wait(pending, timeout=timeout)
        return not any(not t.done() for t in pending)

    def _request_shutdown(self, sig: signal.Signals) -> None:
        logger.info("signal_received signal=%s", sig.name)
        if self._shutdown_task is None:
            self._shutdown_task = asyncio.get_running_loop().create_task(self.shutdown())

    def install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self._request_shutdown, sig)
            except (NotImplementedError, RuntimeError):
                logger.warning("signal_handler_unavailable signal=%s", sig.name)
