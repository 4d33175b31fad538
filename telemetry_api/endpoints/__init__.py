"""Módulo de endpoints HTTP.

Contiene los endpoints de la API de telemetría organizados por función.
"""

from .devices import router as devices_router
from .health import router as health_router
from .telemetry import router as telemetry_router

__all__ = [
    "devices_router",
    "health_router",
    "telemetry_router",
]
