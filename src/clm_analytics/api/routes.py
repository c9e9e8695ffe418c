"""Read-only JSON endpoints over the analytics snapshot, trend history and alert feed."""

from __future__ import annotations

import time
from dataclasses import asdict
from enum import Enum
from typing import Any

import structlog
from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import JSONResponse

log = structlog.get_logger(__name__)

router = APIRouter()


def _to_json(obj: Any) -> Any:
    """Recursively convert dataclasses and enums to JSON-safe values."""
    if hasattr(obj, "__dataclass_fields__"):
        return _to_json(asdict(obj))
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, dict):
        return {k: _to_json(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_to_json(item) for item in obj]
    return obj


async def _require_pool(request: Request, address: str):
    pool = await request.app.state.store.get_pool(address)
    if pool is None:
        log.debug("unknown_pool_requested", pool_address=address, path=request.url.path)
        raise HTTPException(status_code=404, detail=f"unknown pool {address}")
    return pool


@router.get("/pools")
async def get_pools(
    request: Request,
    min_tvl: float = Query(0.0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
) -> JSONResponse:
    """Top pools by FVR above an optional TVL floor."""
    snapshots = await request.app.state.store.get_top_snapshots(min_tvl, limit)
    return JSONResponse(content=_to_json(snapshots))


@router.get("/pools/{address}")
async def get_pool(request: Request, address: str) -> JSONResponse:
    """Pool identity plus its current analytics snapshot (null if never computed)."""
    pool = await _require_pool(request, address)
    snapshot = await request.app.state.store.get_snapshot(address)
    return JSONResponse(content={"pool": _to_json(pool), "analytics": _to_json(snapshot)})


@router.get("/pools/{address}/prices")
async def get_prices(
    request: Request,
    address: str,
    since_ms: int | None = None,
    limit: int = Query(168, ge=1, le=5000),
) -> JSONResponse:
    await _require_pool(request, address)
    observations = await request.app.state.store.get_observations(
        address, since_ms=since_ms, limit=limit
    )
    return JSONResponse(content=_to_json(observations))


@router.get("/pools/{address}/volatility-history")
async def get_volatility_history(
    request: Request,
    address: str,
    period_days: int | None = None,
    limit: int = Query(365, ge=1, le=3650),
) -> JSONResponse:
    await _require_pool(request, address)
    if period_days is not None and period_days not in (1, 7, 30):
        raise HTTPException(status_code=422, detail="period_days must be 1, 7 or 30")
    points = await request.app.state.store.get_volatility_history(address, period_days, limit)
    return JSONResponse(content=_to_json(points))


@router.get("/pools/{address}/fvr-history")
async def get_fvr_history(
    request: Request,
    address: str,
    limit: int = Query(365, ge=1, le=3650),
) -> JSONResponse:
    await _require_pool(request, address)
    points = await request.app.state.store.get_fvr_history(address, limit)
    return JSONResponse(content=_to_json(points))


@router.get("/alerts/feed")
async def get_alert_feed(
    request: Request, limit: int = Query(50, ge=1, le=500)
) -> JSONResponse:
    """Most recent fired alert events, newest first."""
    events = request.app.state.alert_feed.recent(limit)
    return JSONResponse(content=_to_json(events))


@router.get("/usage")
async def get_usage(
    request: Request,
    service: str | None = None,
    date_hour: str | None = None,
) -> JSONResponse:
    """Hourly outbound request counts per service and endpoint."""
    rows = await request.app.state.store.get_api_usage(service, date_hour)
    return JSONResponse(content=rows)


@router.get("/health")
async def get_health(request: Request) -> JSONResponse:
    scheduler = getattr(request.app.state, "scheduler", None)
    return JSONResponse(
        content={
            "status": "ok",
            "scheduler_running": scheduler.is_running if scheduler is not None else False,
            "in_flight": sorted(scheduler.in_flight) if scheduler is not None else [],
            "timestamp_ms": int(time.time() * 1000),
        }
    )
