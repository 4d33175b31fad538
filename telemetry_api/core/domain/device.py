"""Modelo de dominio para dispositivos ESP32."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from .poll_attempt import PollAttempt


class DeviceState(str, Enum):
    """Estados de polling del dispositivo.

    IDLE -> POLLING -> {stored, skipped, failed} -> IDLE
    Tras N fallos consecutivos: DEACTIVATED hasta reactivación manual.
    """
    IDLE = "idle"
    POLLING = "polling"
    DEACTIVATED = "deactivated"


@dataclass(frozen=True)
class Device:
    """Dispositivo registrado por configuración."""
    device_id: str
    url: str
    method: str = "GET"
    poll_interval_seconds: Optional[float] = None
    crop: Optional[str] = None


@dataclass
class DeviceRuntime:
    """Estado mutable del dispositivo, propiedad del registro."""
    state: DeviceState = DeviceState.IDLE
    consecutive_failures: int = 0
    last_success_at: Optional[datetime] = None
    next_poll_at: float = 0.0  # reloj monotónico
    current_backoff_seconds: float = 0.0
    deactivated_at: Optional[datetime] = None
    last_attempt: Optional[PollAttempt] = None


@dataclass(frozen=True)
class DeviceSnapshot:
    """Copia consistente de un dispositivo y su estado para lectura."""
    device: Device
    state: DeviceState
    consecutive_failures: int
    last_success_at: Optional[datetime]
    current_backoff_seconds: float
    deactivated_at: Optional[datetime]
    last_attempt: Optional[PollAttempt]

    @property
    def device_id(self) -> str:
        return self.device.device_id

    @property
    def is_active(self) -> bool:
        return self.state != DeviceState.DEACTIVATED
