# backend/main.py
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Any, Dict, Optional

from fastapi import APIRouter, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from config import EngineConfig, load_config
from data_cache import DataCache
from engine import SimulationEngine
from time_source import TimeSource, format_ms
from timetable_models import Train

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

router = APIRouter()


class TimeOverrideRequest(BaseModel):
    """時刻固定リクエスト。time ("HH:MM") か ms のどちらか一方を指定する"""
    time: Optional[str] = None
    ms: Optional[int] = None


def _get_engine(request: Request) -> SimulationEngine:
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="Simulation engine is not ready")
    return engine


def _train_to_raw(train: Train) -> Dict[str, Any]:
    return {
        "tr_id": train.id,
        "tr_cd": train.code,
        "tr_name": train.name,
        "st_cd_start": train.start_station_code,
        "st_cd_end": train.end_station_code,
        "paths": [
            {
                "st_cd": stop.station_code,
                "arriv_ms": stop.arrival_ms,
                "depart_ms": stop.departure_ms,
                "pos": list(stop.position) if stop.position else None,
            }
            for stop in train.paths
        ],
    }


def _clock_payload(engine: SimulationEngine, now_ms: int) -> Dict[str, Any]:
    return {
        "time_ms": now_ms,
        "time": format_ms(now_ms),
        "override": engine.time_source.override is not None,
    }


@router.get("/api/health")
async def health(request: Request):
    data_cache: DataCache = request.app.state.data_cache
    return {
        "status": "ok" if not data_cache.load_errors else "degraded",
        "errors": data_cache.load_errors,
    }


@router.get("/api/stations")
async def get_stations(request: Request):
    data_cache: DataCache = request.app.state.data_cache
    return {
        "data": [
            {"cd": st.code, "nm": st.name, "pos": list(st.position)}
            for st in data_cache.stations.values()
        ]
    }


@router.get("/api/gapeka")
async def get_gapeka(request: Request):
    data_cache: DataCache = request.app.state.data_cache
    return {"data": [_train_to_raw(t) for t in data_cache.trains]}


@router.get("/api/routes")
async def get_routes(request: Request):
    data_cache: DataCache = request.app.state.data_cache
    return {"data": data_cache.routes}


@router.get("/api/trains/positions")
async def get_train_positions(request: Request):
    """
    現在の列車位置（最後の tick の結果）を返す。

    Returns:
        {
            "time_ms": 31500000,
            "time": "08:45:00",
            "override": true,
            "count": 1,
            "trains": [
                {"train_id": "7", "train_code": "7", "lat": -6.17, "lng": 106.83,
                 "status": "moving", "detail": "GMR-JNG"},
                ...
            ]
        }
    """
    engine = _get_engine(request)
    last = engine.last_tick
    now_ms = last.time_ms if last is not None else engine.time_source.now()

    snapshot = engine.surface.snapshot() if hasattr(engine.surface, "snapshot") else []
    return {
        **_clock_payload(engine, now_ms),
        "count": len(snapshot),
        "trains": [asdict(r) for r in snapshot],
    }


@router.get("/api/trains/{train_id}/schedule")
async def get_train_schedule(train_id: str, request: Request):
    engine = _get_engine(request)
    train = engine.get_train(train_id)
    stops = engine.train_schedule(train_id)
    if train is None or stops is None:
        raise HTTPException(status_code=404, detail=f"Train not found: {train_id}")

    return {
        "train_id": train.id,
        "train_code": train.code,
        "train_name": train.name,
        "stops": [
            {
                "station_code": s.station_code,
                "station_name": s.station_name,
                "arrival": format_ms(s.arrival) if s.arrival is not None else None,
                "departure": format_ms(s.departure) if s.departure is not None else None,
            }
            for s in stops
        ],
    }


@router.get("/api/stations/{station_code}/schedules")
async def get_station_schedules(station_code: str, request: Request):
    engine = _get_engine(request)
    records = engine.schedules_at(station_code)
    station = engine.stations.get(station_code)

    if station is None and not records:
        raise HTTPException(status_code=404, detail=f"Station not found: {station_code}")

    return {
        "station_code": station_code,
        "station_name": station.name if station else station_code,
        "count": len(records),
        "schedules": [
            {
                "train_id": r.train_id,
                "train_code": r.train_code,
                "train_name": r.train_name,
                "arrival": format_ms(r.arrival),
                "departure": format_ms(r.departure),
                "arrival_ms": r.arrival,
                "departure_ms": r.departure,
                "from_terminus": r.from_terminus,
                "to_terminus": r.to_terminus,
            }
            for r in records
        ],
    }


@router.put("/api/time/override")
async def set_time_override(body: TimeOverrideRequest, request: Request):
    engine = _get_engine(request)

    if (body.time is None) == (body.ms is None):
        raise HTTPException(status_code=400, detail="Specify exactly one of 'time' or 'ms'")

    try:
        if body.time is not None:
            result = engine.set_override_hhmm(body.time)
        else:
            result = engine.set_override(body.ms)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return {**_clock_payload(engine, result.time_ms), "count": len(result.reports)}


@router.delete("/api/time/override")
async def clear_time_override(request: Request):
    engine = _get_engine(request)
    result = engine.clear_override()
    return {**_clock_payload(engine, result.time_ms), "count": len(result.reports)}


def create_app(config: EngineConfig | None = None) -> FastAPI:
    config = config or load_config()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        data_cache: DataCache = app.state.data_cache
        errors = data_cache.load_all()
        if errors:
            logger.warning("Starting with partial data: %s", errors)

        engine = SimulationEngine(
            trains=data_cache.trains,
            stations=data_cache.stations,
            time_source=TimeSource(config.timezone),
        )
        engine.tick()
        app.state.engine = engine
        app.state.tick_handle = engine.start(config.tick_seconds)
        logger.info(
            "Engine started: %d trains, %d stations",
            len(data_cache.trains),
            len(data_cache.stations),
        )
        try:
            yield
        finally:
            await app.state.tick_handle.stop()
            engine.tracker.clear()
            app.state.engine = None

    app = FastAPI(lifespan=lifespan)
    app.state.config = config
    app.state.data_cache = DataCache(
        config.data_dir,
        base_url=config.data_base_url,
        http_timeout=config.http_timeout,
    )
    app.state.engine = None

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.frontend_urls,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(router)
    return app


app = create_app()
