from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List

from fastapi import APIRouter, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse

from src.live.cache import SnapshotCache
from src.live.config import ServerConfig
from src.live.poller import STATE_IDLE, Poller
from src.live.query import ProgressQuery
from src.live.telemetry import TelemetrySource
from src.route.model import RouteModel

log = logging.getLogger(__name__)

SNAPSHOT_HEADER = "X-Snapshot-Updated"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _query(request: Request) -> ProgressQuery:
    return request.app.state.query


def _config(request: Request) -> ServerConfig:
    return request.app.state.config


def _health_checks(request: Request) -> Dict[str, Any]:
    config = _config(request)
    query = _query(request)
    snapshot = query.raw()
    poller = query.status()
    age = snapshot.age_seconds()

    warnings: List[str] = []
    if not config.access_code:
        warnings.append("WSDOT access code is not configured.")
    if snapshot.last_updated is None:
        warnings.append("No telemetry snapshot has been committed yet.")
    elif config.staleness_compensation and poller.state != STATE_IDLE and age is not None and age > config.max_staleness:
        warnings.append(f"Snapshot is {age:.0f}s old (max staleness {config.max_staleness:.0f}s).")
    if poller.last_error:
        warnings.append(f"Last telemetry fetch failed: {poller.last_error}")

    ok = len(warnings) == 0
    return {
        "ok": ok,
        "status": "ok" if ok else "degraded",
        "warnings": warnings,
        "checks": {
            "poller": poller.model_dump(),
            "snapshot": {
                "vessels": len(snapshot),
                "last_updated": snapshot.last_updated.isoformat() if snapshot.last_updated else None,
                "age_sec": None if age is None else round(age, 1),
            },
            "route": {
                "segments": request.app.state.model.segment_count,
                "total_length_m": round(request.app.state.model.total_length, 1),
            },
        },
    }


router = APIRouter()


@router.get("/progress")
def progress(request: Request) -> JSONResponse:
    snapshot = _query(request).current()
    headers = {}
    if snapshot.last_updated is not None:
        headers[SNAPSHOT_HEADER] = snapshot.last_updated.isoformat()
    return JSONResponse(snapshot.to_payload(), headers=headers)


@router.get("/api/health")
def health(request: Request) -> Dict[str, Any]:
    payload = _health_checks(request)
    payload["time"] = _now_iso()
    return payload


debug_router = APIRouter(prefix="/debug", include_in_schema=False)


@debug_router.get("")
def debug_page(request: Request) -> FileResponse:
    page = Path(_config(request).debug_page_path)
    if not page.exists() or not page.is_file():
        raise HTTPException(status_code=404, detail=f"debug page not found: {page.name}")
    return FileResponse(page)


@debug_router.get("/path/coords")
def path_coords(request: Request) -> Dict[str, Any]:
    model: RouteModel = request.app.state.model
    return {
        "coordinates": [[lat, lon] for lat, lon in model.coordinates()],
        "segments": model.segment_count,
        "segment_max_size_m": model.segment_max_size,
        "total_length_m": model.total_length,
    }


@debug_router.get("/get/")
def debug_vessels(request: Request) -> Dict[str, Any]:
    snapshot = _query(request).raw()
    return {
        "last_updated": snapshot.last_updated.isoformat() if snapshot.last_updated else None,
        "vessels": {k: rec.to_debug_payload() for k, rec in snapshot.records.items()},
        "poller": _query(request).status().model_dump(),
    }


@debug_router.get("/get/{vessel_id}")
def debug_vessel(vessel_id: str, request: Request) -> Dict[str, Any]:
    rec = _query(request).vessel(vessel_id)
    if rec is None:
        raise HTTPException(status_code=404, detail=f"unknown vessel: {vessel_id}")
    return rec.to_debug_payload()


def create_app(
    config: ServerConfig,
    model: RouteModel,
    source: TelemetrySource,
    *,
    start_poller: bool = True,
) -> FastAPI:
    cache = SnapshotCache()
    poller = Poller(config, model, source, cache)
    query = ProgressQuery(cache, poller, config.minimum_ferries)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if start_poller:
            poller.start()
        try:
            yield
        finally:
            await asyncio.to_thread(poller.stop)

    app = FastAPI(title="FerryCaster API", version="0.1.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET"],
        allow_headers=["*"],
    )
    app.state.config = config
    app.state.model = model
    app.state.cache = cache
    app.state.poller = poller
    app.state.query = query

    app.include_router(router)
    if config.debug:
        log.info("serving debug information under /debug")
        app.include_router(debug_router)
    return app
