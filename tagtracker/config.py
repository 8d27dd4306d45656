from __future__ import annotations

import os
from dataclasses import dataclass

DEFAULT_PLATFORM_BASE_URL = "https://apiv3.fansly.com/api/v1"

DEFAULT_DISCOVERY_INTERVAL_MS = 60_000
DEFAULT_UPDATE_INTERVAL_MS = 10_000
DEFAULT_RANK_INTERVAL_MS = 60 * 60 * 1000
DEFAULT_RATE_LIMIT_PER_MINUTE = 60


@dataclass(frozen=True)
class WorkerSettings:
    enabled: bool
    discovery_interval_ms: int
    update_interval_ms: int
    rank_interval_ms: int
    rate_limit_per_minute: int

    @property
    def request_delay_seconds(self) -> float:
        return 60.0 / max(1, self.rate_limit_per_minute)


@dataclass(frozen=True)
class PlatformSettings:
    base_url: str
    timeout_seconds: float
    user_agent: str


def _env_int(key: str, default: int, *, minimum: int = 0) -> int:
    raw = os.environ.get(key, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value >= minimum else default


def _env_float(key: str, default: float) -> float:
    raw = os.environ.get(key, "").strip()
    try:
        return float(raw) if raw else default
    except ValueError:
        return default


def get_worker_settings() -> WorkerSettings:
    return WorkerSettings(
        # Only an explicit "false" turns the workers off.
        enabled=os.environ.get("WORKER_ENABLED", "true").strip().lower() != "false",
        discovery_interval_ms=_env_int("WORKER_DISCOVERY_INTERVAL", DEFAULT_DISCOVERY_INTERVAL_MS, minimum=1),
        update_interval_ms=_env_int("WORKER_UPDATE_INTERVAL", DEFAULT_UPDATE_INTERVAL_MS, minimum=1),
        rank_interval_ms=_env_int("WORKER_RANK_INTERVAL", DEFAULT_RANK_INTERVAL_MS, minimum=1),
        rate_limit_per_minute=_env_int("PLATFORM_API_RATE_LIMIT", DEFAULT_RATE_LIMIT_PER_MINUTE, minimum=1),
    )


def get_platform_settings() -> PlatformSettings:
    base_url = os.environ.get("PLATFORM_API_BASE_URL", DEFAULT_PLATFORM_BASE_URL).strip() or DEFAULT_PLATFORM_BASE_URL
    return PlatformSettings(
        base_url=base_url.rstrip("/"),
        timeout_seconds=_env_float("PLATFORM_API_TIMEOUT_SECONDS", 15.0),
        user_agent=os.environ.get("PLATFORM_API_USER_AGENT", "tagtracker/0.1").strip() or "tagtracker/0.1",
    )
