"""Dependencias FastAPI: componentes construidos en create_app y guardados en app.state."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from fastapi import HTTPException, Request

from ..devices.registry import DeviceRegistry
from ..queries import TelemetryQueries
from ..scheduler import IngestionScheduler
from ..storage import TelemetryStore


def get_queries(request: Request) -> TelemetryQueries:
    return request.app.state.queries


def get_registry(request: Request) -> DeviceRegistry:
    return request.app.state.registry


def get_store(request: Request) -> TelemetryStore:
    return request.app.state.store


def get_scheduler(request: Request) -> Optional[IngestionScheduler]:
    return getattr(request.app.state, "scheduler", None)


def as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def validate_window(start: datetime, end: datetime) -> None:
    if start > end:
        raise HTTPException(status_code=422, detail="start must be <= end")
