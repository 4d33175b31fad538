"""Health and readiness endpoints."""

import time
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from ..scheduler import IngestionScheduler
from ..storage import TelemetryStore
from .deps import get_scheduler, get_store

router = APIRouter(tags=["health"])


@router.get("/health")
def health():
    """Liveness probe: ok mientras el proceso esté vivo."""
    return {"status": "ok"}


@router.get("/ready")
def ready(store: TelemetryStore = Depends(get_store)):
    """Readiness probe: verifica la conexión a la BD y mide la latencia."""
    start_time = time.time()
    if not store.ping():
        # ISO 27001: No exponer detalles del error al cliente
        raise HTTPException(status_code=503, detail="not ready")
    latency_ms = (time.time() - start_time) * 1000
    return {"status": "ready", "latency_ms": round(latency_ms, 2)}


@router.get("/metrics")
def metrics(scheduler: Optional[IngestionScheduler] = Depends(get_scheduler)):
    """Estadísticas del scheduler de ingesta."""
    if scheduler is None:
        return {"scheduler": None}
    return {"scheduler": scheduler.get_stats()}


@router.get("/metrics/prometheus")
def prometheus_metrics():
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
