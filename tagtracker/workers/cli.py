from __future__ import annotations

import asyncio
import json
import logging
import os
import sys
from typing import Any, Awaitable, Callable

from tagtracker.config import get_worker_settings
from tagtracker.services.platform_client import PlatformClient
from tagtracker.services.store import TrackerStore
from tagtracker.workers.errors import DuplicateJobError, JobExecutionError, UnknownJobError
from tagtracker.workers.history_cleanup import cleanup_duplicate_history
from tagtracker.workers.jobs import JOB_NAMES, build_scheduler
from tagtracker.workers.rank_calculator import RankCalculator

logger = logging.getLogger("tagtracker.cli")

SHUTDOWN_GRACE_SECONDS = 30.0

USAGE = (
    "Usage: tagtracker "
    "serve|worker|run-job <name>|db:migrate|db:status|history:cleanup|ranks:recalculate [options]"
)


def _configure_logging() -> None:
    level = os.environ.get("LOG_LEVEL", "INFO").strip().upper() or "INFO"
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def _print(payload: dict[str, Any]) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2, default=str))


def _get_opt(argv: list[str], key: str) -> str | None:
    if key not in argv:
        return None
    idx = argv.index(key)
    if idx + 1 >= len(argv):
        return None
    return argv[idx + 1]


async def _with_store(fn: Callable[[TrackerStore], Awaitable[int]], *, database_url: str | None = None) -> int:
    store = TrackerStore(database_url)
    try:
        await store.ensure_schema()
        return await fn(store)
    finally:
        await store.close()


def cmd_serve(argv: list[str]) -> int:
    from tagtracker.web.api import run_server

    _ = argv
    run_server()
    return 0


async def _worker_main() -> int:
    settings = get_worker_settings()
    if not settings.enabled:
        logger.info("worker_exit reason=WORKER_ENABLED=false")
        _print({"ok": True, "started": False, "reason": "workers disabled"})
        return 0

    store = TrackerStore()
    await store.ensure_schema()
    client = PlatformClient()
    try:
        scheduler = await build_scheduler(store, client, settings)
        scheduler.install_signal_handlers()
        await scheduler.start_all()
        logger.info("worker_ready jobs=%s", ",".join(scheduler.names))
        await scheduler.exited.wait()
        if not await scheduler.wait_idle(timeout=SHUTDOWN_GRACE_SECONDS):
            logger.warning("worker_exit_with_jobs_in_flight")
        await scheduler.shutdown()
    finally:
        await client.aclose()
        await store.close()
    return 0


def cmd_worker(argv: list[str]) -> int:
    _ = argv
    return asyncio.run(_worker_main())


def cmd_run_job(argv: list[str]) -> int:
    if not argv:
        print(f"run-job requires a job name: {'|'.join(JOB_NAMES)}", file=sys.stderr)
        return 2
    name = argv[0]

    async def _run(store: TrackerStore) -> int:
        client = PlatformClient()
        try:
            scheduler = await build_scheduler(store, client, get_worker_settings())
            ran = await scheduler.run_worker(name, raise_errors=True)
            status = await store.jobs.get(name)
        finally:
            await client.aclose()
        _print({"ok": True, "name": name, "ran": ran, "status": status})
        return 0

    return asyncio.run(_with_store(_run))


def cmd_db_migrate(argv: list[str]) -> int:
    url = _get_opt(argv, "--url")

    async def _migrate() -> int:
        store = TrackerStore(url)
        try:
            await store.migrate()
            revision = await store.current_revision()
            _print({"ok": True, "revision": revision, **store.observability_info()})
        finally:
            await store.close()
        return 0

    return asyncio.run(_migrate())


def cmd_db_status(argv: list[str]) -> int:
    url = _get_opt(argv, "--url")

    async def _status() -> int:
        store = TrackerStore(url)
        try:
            missing = await store.missing_tables()
            revision = await store.current_revision()
        finally:
            await store.close()
        _print({"ok": not missing, "revision": revision, "missing_tables": missing, **store.observability_info()})
        return 0 if not missing else 5

    return asyncio.run(_status())


def cmd_history_cleanup(argv: list[str]) -> int:
    batch_size = int(_get_opt(argv, "--batch-size") or "100")

    async def _cleanup(store: TrackerStore) -> int:
        deleted = await cleanup_duplicate_history(store, batch_size=max(1, batch_size))
        _print({"ok": True, "deleted": deleted})
        return 0

    return asyncio.run(_with_store(_cleanup))


def cmd_ranks_recalculate(argv: list[str]) -> int:
    _ = argv

    async def _ranks(store: TrackerStore) -> int:
        out = await RankCalculator(store).run()
        _print({"ok": True, **out})
        return 0

    return asyncio.run(_with_store(_ranks))


COMMANDS: dict[str, Callable[[list[str]], int]] = {
    "serve": cmd_serve,
    "worker": cmd_worker,
    "run-job": cmd_run_job,
    "db:migrate": cmd_db_migrate,
    "db:status": cmd_db_status,
    "history:cleanup": cmd_history_cleanup,
    "ranks:recalculate": cmd_ranks_recalculate,
}


def main(argv: list[str] | None = None) -> int:
    argv = list(sys.argv[1:] if argv is None else argv)
    if not argv:
        print(USAGE, file=sys.stderr)
        return 2

    _configure_logging()
    cmd = argv[0]
    handler = COMMANDS.get(cmd)
    if handler is None:
        print(f"Unknown command: {cmd}", file=sys.stderr)
        return 2
    try:
        return handler(argv[1:])
    except UnknownJobError as e:
        _print({"ok": False, "error_code": "JOB_404_UNKNOWN", "error": str(e)})
        return 3
    except JobExecutionError as e:
        _print({"ok": False, "error_code": "JOB_500_FAILED", "error": str(e)})
        return 4
    except DuplicateJobError as e:
        _print({"ok": False, "error_code": "JOB_409_DUPLICATE", "error": str(e)})
        return 6
    except Exception as e:  # pragma: no cover - defensive
        _print({"ok": False, "error_code": "TAGTRACKER_999_UNEXPECTED", "error": str(e)})
        return 12


if __name__ == "__main__":
    raise SystemExit(main())
