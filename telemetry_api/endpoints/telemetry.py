"""Endpoints de consulta: último valor, histórico, estadísticas y dashboard."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from ..auth import require_principal
from ..core.domain import SensorType, StoreFailure
from ..devices.registry import UnknownDevice
from ..queries import TelemetryQueries
from ..queries.telemetry import DEFAULT_HISTORY_LIMIT
from ..schemas import (
    DashboardOut,
    HistoryOut,
    LatestReadingsOut,
    ReadingOut,
    StatsOut,
    WindowStatsOut,
)
from .deps import as_utc, get_queries, validate_window

logger = logging.getLogger(__name__)

router = APIRouter(tags=["telemetry"], dependencies=[Depends(require_principal)])

DEFAULT_WINDOW = timedelta(hours=24)


@contextmanager
def _query_errors(device_id: str):
    try:
        yield
    except UnknownDevice:
        raise HTTPException(status_code=404, detail=f"Unknown device: {device_id}")
    except StoreFailure as e:
        # ISO 27001: No exponer detalles del error al cliente
        logger.error("[QUERY] Store error device=%s err=%s", device_id, e)
        raise HTTPException(status_code=503, detail="Telemetry store unavailable")


def _resolve_window(start: Optional[datetime], end: Optional[datetime]) -> tuple[datetime, datetime]:
    end = as_utc(end) or datetime.now(timezone.utc)
    start = as_utc(start) or (end - DEFAULT_WINDOW)
    validate_window(start, end)
    return start, end


@router.get("/devices/{device_id}/readings/latest", response_model=LatestReadingsOut)
def get_latest_readings(
    device_id: str,
    sensor_type: Optional[SensorType] = None,
    queries: TelemetryQueries = Depends(get_queries),
):
    """Último valor por sensor (dashboard en vivo), o de un único sensor."""
    with _query_errors(device_id):
        if sensor_type is not None:
            reading = queries.latest(device_id, sensor_type)
            readings = [reading] if reading else []
        else:
            readings = list(queries.latest_by_sensor(device_id).values())

    return LatestReadingsOut(
        device_id=device_id,
        readings=[ReadingOut.from_domain(r) for r in readings],
    )


@router.get("/devices/{device_id}/readings/{sensor_type}", response_model=HistoryOut)
def get_history(
    device_id: str,
    sensor_type: SensorType,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: int = Query(default=DEFAULT_HISTORY_LIMIT, ge=1, le=10000),
    queries: TelemetryQueries = Depends(get_queries),
):
    """Serie histórica en orden cronológico. Ventana por defecto: últimas 24h.

    Si la ventana tiene más de ``limit`` lecturas se devuelven las más
    recientes y ``truncated`` es true.
    """
    start, end = _resolve_window(start, end)
    with _query_errors(device_id):
        page = queries.history(device_id, sensor_type, start, end, limit=limit)

    return HistoryOut(
        device_id=device_id,
        sensor_type=sensor_type,
        start=start,
        end=end,
        count=len(page.readings),
        truncated=page.truncated,
        readings=[ReadingOut.from_domain(r) for r in page.readings],
    )


@router.get("/devices/{device_id}/readings/{sensor_type}/stats", response_model=WindowStatsOut)
def get_window_stats(
    device_id: str,
    sensor_type: SensorType,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    queries: TelemetryQueries = Depends(get_queries),
):
    """Mínimo, máximo y promedio de la ventana (base de las alertas por cultivo)."""
    start, end = _resolve_window(start, end)
    with _query_errors(device_id):
        stats = queries.window_stats(device_id, sensor_type, start, end)

    return WindowStatsOut(
        device_id=device_id,
        sensor_type=sensor_type,
        start=start,
        end=end,
        stats=StatsOut.from_domain(stats) if stats else None,
    )


@router.get("/devices/{device_id}/dashboard", response_model=DashboardOut)
def get_dashboard(
    device_id: str,
    window_minutes: int = Query(default=24 * 60, ge=1, le=60 * 24 * 90),
    queries: TelemetryQueries = Depends(get_queries),
):
    with _query_errors(device_id):
        summary = queries.dashboard(device_id, window=timedelta(minutes=window_minutes))
    return DashboardOut.from_domain(summary)
