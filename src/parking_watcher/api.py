"""FastAPI backend exposing parking occupancy metrics."""
from __future__ import annotations

import asyncio
import json
import logging
import os
from dataclasses import asdict, dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from fastapi import Body, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from .cache import MetricsCache
from .data import (
    TOPIC_PREFIX,
    apply_message,
    default_spot_ids,
    load_histories,
    parse_sensor_message,
)
from .logging_utils import setup_logging
from .options import Options
from .periods import Observation
from .report import build_report, spot_details
from .stats import spot_states, status_summary

logger = logging.getLogger(__name__)


@dataclass
class Settings:
    """Runtime configuration for the backend service."""

    base_url: str | None
    data_file: Path | None
    spot_ids: list[str]
    fetch_interval: int
    auto_fetch: bool
    options: Options
    cors_origins: list[str]
    debug: bool
    cache_ttl: int


def _parse_bool(value: Optional[str], default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() not in {"0", "false", "no", "off"}


def _parse_list(value: Optional[str]) -> list[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def load_settings() -> Settings:
    """Load backend configuration from environment variables."""

    base_url = os.getenv("PARKING_BASE_URL") or None
    data_file_env = os.getenv("PARKING_DATA_FILE")
    data_file = Path(data_file_env) if data_file_env else None
    if base_url is None and data_file is None:
        raise RuntimeError("PARKING_BASE_URL or PARKING_DATA_FILE must be configured")

    defaults = Options()
    options = Options(
        window_hours=int(os.getenv("PARKING_WINDOW_HOURS", str(defaults.window_hours))),
        ranking_size=int(os.getenv("PARKING_RANKING_SIZE", str(defaults.ranking_size))),
        peak_hour_count=int(
            os.getenv("PARKING_PEAK_HOURS", str(defaults.peak_hour_count))
        ),
    )

    return Settings(
        base_url=base_url,
        data_file=data_file,
        spot_ids=_parse_list(os.getenv("PARKING_SPOTS")) or default_spot_ids(),
        fetch_interval=int(os.getenv("PARKING_FETCH_INTERVAL", "60")),
        auto_fetch=_parse_bool(os.getenv("PARKING_AUTO_FETCH", "1"), True),
        options=options,
        cors_origins=_parse_list(os.getenv("PARKING_CORS_ORIGINS", "*")) or ["*"],
        debug=_parse_bool(os.getenv("PARKING_DEBUG"), False),
        cache_ttl=int(os.getenv("PARKING_CACHE_TTL", "60")),
    )


app = FastAPI(title="Parking Watcher API", version="1.0.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=_parse_list(os.getenv("PARKING_CORS_ORIGINS", "*")) or ["*"],
    allow_methods=["*"],
    allow_headers=["*"],
    allow_credentials=False,
)


def _histories() -> Dict[str, List[Observation]]:
    return getattr(app.state, "histories", {})


def _cache() -> MetricsCache:
    cache: MetricsCache | None = getattr(app.state, "cache", None)
    if cache is None:  # pragma: no cover - startup should populate
        raise HTTPException(status_code=503, detail="Service not initialised")
    return cache


async def _fetch_once(settings: Settings) -> None:
    try:
        histories = await asyncio.to_thread(
            load_histories, settings.data_file, settings.base_url, settings.spot_ids
        )
    except Exception:  # pragma: no cover - defensive logging
        logger.exception("Sensor history fetch failed")
        return
    app.state.histories = histories
    app.state.last_fetch = datetime.now().astimezone().isoformat(timespec="seconds")
    if app.state.cache.update(histories):
        logger.info("Histories changed; cached metrics invalidated")
        app.state.last_data_update = app.state.last_fetch
    else:
        logger.debug("No new samples; cached metrics are still valid")


async def _fetch_loop(settings: Settings) -> None:
    logger.info("Starting fetch loop with interval %ss", settings.fetch_interval)
    try:
        while True:
            await asyncio.sleep(max(settings.fetch_interval, 1))
            await _fetch_once(settings)
    except asyncio.CancelledError:  # pragma: no cover - shutdown cleanup
        logger.debug("Fetch loop cancelled")
        raise


@app.on_event("startup")
async def on_startup() -> None:
    settings = load_settings()
    setup_logging(settings.debug)
    logger.debug("Loaded settings: %s", settings)
    app.state.settings = settings
    app.state.histories = {}
    app.state.cache = MetricsCache(ttl=settings.cache_ttl)
    app.state.last_fetch = None
    app.state.last_data_update = None
    app.state.fetch_task = None
    if settings.auto_fetch:
        await _fetch_once(settings)
        app.state.fetch_task = asyncio.create_task(_fetch_loop(settings))


@app.on_event("shutdown")
async def on_shutdown() -> None:
    task: asyncio.Task | None = getattr(app.state, "fetch_task", None)
    if task is not None:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        finally:
            app.state.fetch_task = None


def _require_settings() -> Settings:
    settings = getattr(app.state, "settings", None)
    if settings is None:  # pragma: no cover - startup should populate
        raise HTTPException(status_code=503, detail="Service not initialised")
    return settings


@app.get("/healthz")
async def healthz() -> Dict[str, Any]:
    settings = _require_settings()
    return {
        "status": "ok",
        "auto_fetch": settings.auto_fetch,
        "last_fetch": getattr(app.state, "last_fetch", None),
        "data_version": _cache().version,
    }


@app.get("/api/dashboard")
async def dashboard() -> Dict[str, Any]:
    settings = _require_settings()
    histories = _histories()
    cache = _cache()
    data = await asyncio.to_thread(
        cache.get,
        "dashboard",
        lambda: build_report(histories, options=settings.options),
    )
    return {
        **data,
        "options": asdict(settings.options),
        "last_fetch": getattr(app.state, "last_fetch", None),
    }


@app.get("/api/spots")
async def spots() -> Dict[str, Any]:
    states = spot_states(_histories())
    return {
        "spots": [s.to_dict() for s in states],
        "stats": status_summary(states).to_dict(),
    }


@app.get("/api/spots/{spot_id}")
async def spot_detail(spot_id: str) -> Dict[str, Any]:
    settings = _require_settings()
    histories = _histories()
    if spot_id not in histories:
        raise HTTPException(status_code=404, detail="Spot not found")
    return await asyncio.to_thread(
        spot_details, spot_id, histories[spot_id], options=settings.options
    )


@app.post("/api/spots/{spot_id}/observations", status_code=201)
async def add_observation(spot_id: str, payload: Any = Body(...)) -> Dict[str, Any]:
    """Accept a live sensor message in the same format the sensors publish."""
    _require_settings()
    raw = payload if isinstance(payload, str) else json.dumps(payload)
    _, observation = parse_sensor_message(TOPIC_PREFIX + spot_id, raw)
    # Readers in worker threads may still hold the previous mapping
    histories = {key: list(samples) for key, samples in _histories().items()}
    apply_message(histories, spot_id, observation)
    app.state.histories = histories
    _cache().update(histories)
    return {"spot_id": spot_id, "observation": observation.to_dict()}


@app.post("/api/refresh", status_code=202)
async def refresh() -> Dict[str, Any]:
    settings = _require_settings()
    await _fetch_once(settings)
    return {"status": "scheduled"}


if __name__ == "__main__":  # pragma: no cover - manual execution helper
    import uvicorn

    uvicorn.run(
        "parking_watcher.api:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", "8000")),
    )
