from __future__ import annotations

import random

from tagtracker.config import WorkerSettings
from tagtracker.services.platform_client import PlatformClient
from tagtracker.services.store import TrackerStore
from tagtracker.workers import rank_calculator, tag_discovery, tag_updater
from tagtracker.workers.rank_calculator import RankCalculator
from tagtracker.workers.scheduler import Job, JobScheduler
from tagtracker.workers.tag_discovery import TagDiscovery
from tagtracker.workers.tag_updater import TagUpdater

JOB_NAMES = (tag_discovery.JOB_NAME, tag_updater.JOB_NAME, rank_calculator.JOB_NAME)


def build_default_jobs(
    store: TrackerStore,
    client: PlatformClient,
    settings: WorkerSettings,
    *,
    rng: random.Random | None = None,
) -> list[Job]:
    delay = settings.request_delay_seconds
    return [
        Job(
            name=tag_discovery.JOB_NAME,
            interval_ms=settings.discovery_interval_ms,
            run=TagDiscovery(store, client, delay_seconds=delay, rng=rng).run,
        ),
        Job(
            name=tag_updater.JOB_NAME,
            interval_ms=settings.update_interval_ms,
            run=TagUpdater(store, client, delay_seconds=delay).run,
        ),
        Job(
            name=rank_calculator.JOB_NAME,
            interval_ms=settings.rank_interval_ms,
            run=RankCalculator(store).run,
        ),
    ]


async def build_scheduler(
    store: TrackerStore,
    client: PlatformClient,
    settings: WorkerSettings,
    *,
    rng: random.Random | None = None,
) -> JobScheduler:
    """Scheduler with every standard job registered and crash leftovers reconciled; nothing started yet."""
    scheduler = JobScheduler(store, worker_enabled=settings.enabled)
    await scheduler.reconcile_interrupted()
    for job in build_default_jobs(store, client, settings, rng=rng):
        await scheduler.register(job)
    return scheduler
