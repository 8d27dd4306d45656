from __future__ import annotations

import logging
import math
import os
import random
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator

import uvicorn
from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from tagtracker.config import WorkerSettings, get_worker_settings
from tagtracker.services import tag_listing
from tagtracker.services.platform_client import PlatformClient
from tagtracker.services.store import TrackerStore
from tagtracker.services.tag_requests import request_tag
from tagtracker.workers.errors import JobExecutionError, UnknownJobError
from tagtracker.workers.jobs import build_scheduler
from tagtracker.workers.scheduler import JobScheduler

logger = logging.getLogger("tagtracker.api")

SHUTDOWN_GRACE_SECONDS = 10.0


class EnablePayload(BaseModel):
    enabled: bool


class TagRequestPayload(BaseModel):
    tag: str = Field(min_length=1, max_length=100)


def _day_bound(raw: str | None, *, end: bool) -> str | None:
    value = (raw or "").strip()
    if not value:
        return None
    # A bare date covers the whole UTC day.
    if len(value) == 10 and end:
        return f"{value}T23:59:59.999999+00:00"
    return value


def get_store(request: Request) -> TrackerStore:
    return request.app.state.store


def get_scheduler(request: Request) -> JobScheduler:
    return request.app.state.scheduler


def get_client(request: Request) -> PlatformClient:
    return request.app.state.client


def create_app(
    *,
    database_url: str | None = None,
    worker_settings: WorkerSettings | None = None,
    client: PlatformClient | None = None,
    rng: random.Random | None = None,
) -> FastAPI:
    """
    Build the API app. The store, the platform client and the scheduler are
    created in the lifespan so they bind to the serving event loop.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        settings = worker_settings or get_worker_settings()
        store = TrackerStore(database_url)
        await store.ensure_schema()
        platform = client or PlatformClient()
        scheduler = await build_scheduler(store, platform, settings, rng=rng)
        app.state.store = store
        app.state.client = platform
        app.state.scheduler = scheduler
        await scheduler.start_all()
        logger.info("api_started workers_enabled=%s jobs=%s", settings.enabled, ",".join(scheduler.names))
        try:
            yield
        finally:
            await scheduler.shutdown()
            if not await scheduler.wait_idle(timeout=SHUTDOWN_GRACE_SECONDS):
                logger.warning("api_shutdown_with_jobs_in_flight")
            await platform.aclose()
            await store.close()

    app = FastAPI(title="Tag Tracker API", version="0.1.0", lifespan=lifespan)

    @app.exception_handler(HTTPException)
    async def _http_exception_handler(_: Request, exc: HTTPException) -> JSONResponse:  # type: ignore[override]
        payload = {"ok": False, "error": {"code": f"HTTP_{exc.status_code}", "message": str(exc.detail)}}
        return JSONResponse(status_code=exc.status_code, content=payload, headers=exc.headers)

    @app.get("/healthz")
    async def healthz(request: Request) -> dict[str, Any]:
        store: TrackerStore = request.app.state.store
        obs = store.observability_info()
        return {
            "ok": True,
            "service": "tagtracker",
            "db_url": str(obs.get("db_url", "")),
            "db_backend": str(obs.get("db_backend", "")),
            "workers_enabled": bool(request.app.state.scheduler.worker_enabled),
            "ts": datetime.now(timezone.utc).isoformat(),
        }

    @app.get("/api/workers/status")
    async def workers_status(scheduler: JobScheduler = Depends(get_scheduler)) -> dict[str, Any]:
        return {"ok": True, "workers": await scheduler.get_status()}

    @app.post("/api/workers/{name}/trigger")
    async def trigger_worker(name: str, scheduler: JobScheduler = Depends(get_scheduler)) -> dict[str, Any]:
        try:
            ran = await scheduler.run_worker(name, raise_errors=True)
        except UnknownJobError as e:
            raise HTTPException(status_code=404, detail=str(e)) from e
        except JobExecutionError as e:
            raise HTTPException(status_code=500, detail=e.message) from e
        return {"ok": True, "name": name, "ran": ran, "skipped": not ran}

    @app.patch("/api/workers/{name}/enable")
    async def enable_worker(
        name: str,
        payload: EnablePayload,
        scheduler: JobScheduler = Depends(get_scheduler),
    ) -> dict[str, Any]:
        try:
            await scheduler.set_enabled(name, payload.enabled)
        except UnknownJobError as e:
            raise HTTPException(status_code=404, detail=str(e)) from e
        return {"ok": True, "name": name, "enabled": payload.enabled, "is_running": scheduler.is_scheduled(name)}

    @app.get("/api/tags")
    async def list_tags(
        page: int = Query(default=1, ge=1),
        limit: int = Query(default=20, ge=1, le=100),
        search: str = Query(default="", max_length=100),
        sort_by: str = Query(default="view_count", pattern="^(view_count|tag|rank|updated_at|change)$"),
        sort_order: str = Query(default="desc", pattern="^(asc|desc)$"),
        include_history: bool = False,
        history_start_date: str | None = None,
        history_end_date: str | None = None,
        store: TrackerStore = Depends(get_store),
    ) -> dict[str, Any]:
        items, total = await tag_listing.list_tags(
            store,
            page=page,
            limit=limit,
            search=search.strip(),
            sort_by=sort_by,
            sort_order=sort_order,
            include_history=include_history,
            start=_day_bound(history_start_date, end=False),
            end=_day_bound(history_end_date, end=True),
        )
        return {
            "ok": True,
            "items": items,
            "total": total,
            "page": page,
            "limit": limit,
            "pages": math.ceil(total / limit) if total else 0,
        }

    @app.get("/api/tags/{tag_id}/history")
    async def tag_history(
        tag_id: str,
        start_date: str | None = None,
        end_date: str | None = None,
        store: TrackerStore = Depends(get_store),
    ) -> dict[str, Any]:
        tag = await store.tags.get(tag_id)
        if tag is None:
            raise HTTPException(status_code=404, detail=f"tag {tag_id} not found")
        points = await store.tags.history(
            tag_id,
            start=_day_bound(start_date, end=False),
            end=_day_bound(end_date, end=True),
        )
        return {"ok": True, "tag": tag, "history": points}

    @app.post("/api/tags/request")
    async def tag_request(
        payload: TagRequestPayload,
        store: TrackerStore = Depends(get_store),
        platform: PlatformClient = Depends(get_client),
    ) -> dict[str, Any]:
        try:
            result = await request_tag(store, platform, payload.tag)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e
        if result.status == "not_found":
            raise HTTPException(status_code=404, detail=f"tag {payload.tag} not found on platform")
        return {"ok": True, "status": result.status, "request_id": result.request_id, "tag": result.tag}

    return app


app = create_app()


def run_server() -> None:
    host = os.environ.get("API_HOST", "127.0.0.1")
    port = int(os.environ.get("API_PORT", "8790"))
    uvicorn.run("tagtracker.web.api:app", host=host, port=port, reload=False)


if __name__ == "__main__":
    run_server()
