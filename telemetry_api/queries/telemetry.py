"""Consultas de solo lectura para dashboard, histórico y umbrales de cultivo.

No hay mutación de negocio aquí: todo pasa por los métodos de lectura del
TelemetryStore y por snapshots del DeviceRegistry.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

from ..core.domain import (
    CropThreshold,
    CropThresholds,
    DeviceSnapshot,
    SensorReading,
    SensorType,
    ThresholdStatus,
)
from ..devices.registry import DeviceRegistry
from ..storage.telemetry_store import ReadingStats, TelemetryStore

DEFAULT_HISTORY_LIMIT = 1000
DEFAULT_DASHBOARD_WINDOW = timedelta(hours=24)


@dataclass
class SensorSummary:
    """Resumen de un sensor para el dashboard."""
    sensor_type: SensorType
    latest: Optional[SensorReading]
    stats: Optional[ReadingStats]
    threshold: Optional[CropThreshold]
    threshold_status: ThresholdStatus


@dataclass
class DashboardSummary:
    device: DeviceSnapshot
    window_start: datetime
    window_end: datetime
    sensors: List[SensorSummary] = field(default_factory=list)

    @property
    def alerts(self) -> List[SensorSummary]:
        return [
            s for s in self.sensors
            if s.threshold_status in (ThresholdStatus.LOW, ThresholdStatus.HIGH)
        ]


@dataclass
class HistoryPage:
    """Serie histórica acotada: las lecturas más recientes de la ventana."""
    readings: List[SensorReading]
    truncated: bool


class TelemetryQueries:
    """Capa de consultas construida con sus dependencias explícitas."""

    def __init__(
        self,
        store: TelemetryStore,
        registry: DeviceRegistry,
        crops: Optional[CropThresholds] = None,
    ):
        self._store = store
        self._registry = registry
        self._crops = crops or {}

    def device(self, device_id: str) -> DeviceSnapshot:
        """Raises UnknownDevice si no está registrado."""
        return self._registry.get(device_id)

    def latest(self, device_id: str, sensor_type: SensorType) -> Optional[SensorReading]:
        self.device(device_id)
        return self._store.latest(device_id, sensor_type)

    def latest_by_sensor(self, device_id: str) -> Dict[SensorType, SensorReading]:
        self.device(device_id)
        return self._store.latest_per_sensor(device_id)

    def history(
        self,
        device_id: str,
        sensor_type: SensorType,
        start: datetime,
        end: datetime,
        limit: int = DEFAULT_HISTORY_LIMIT,
    ) -> HistoryPage:
        """Las ``limit`` lecturas más recientes de [start, end], en orden cronológico.

        Se pide una fila de más para saber si la ventana quedó recortada.
        """
        self.device(device_id)
        readings = list(self._store.range(device_id, sensor_type, start, end, limit=limit + 1))
        truncated = len(readings) > limit
        if truncated:
            readings = readings[1:]
        return HistoryPage(readings=readings, truncated=truncated)

    def window_stats(
        self,
        device_id: str,
        sensor_type: SensorType,
        start: datetime,
        end: datetime,
    ) -> Optional[ReadingStats]:
        self.device(device_id)
        return self._store.aggregate(device_id, sensor_type, start, end)

    def thresholds_for(self, snapshot: DeviceSnapshot) -> Dict[SensorType, CropThreshold]:
        crop = snapshot.device.crop
        if not crop:
            return {}
        return self._crops.get(crop, {})

    def dashboard(
        self,
        device_id: str,
        window: timedelta = DEFAULT_DASHBOARD_WINDOW,
        now: Optional[datetime] = None,
    ) -> DashboardSummary:
        """Último valor, estadísticas de la ventana y estado frente al cultivo."""
        snapshot = self.device(device_id)
        end = now or datetime.now(timezone.utc)
        start = end - window

        thresholds = self.thresholds_for(snapshot)
        latest = self._store.latest_per_sensor(device_id)

        summary = DashboardSummary(device=snapshot, window_start=start, window_end=end)
        for sensor_type in sorted(set(latest) | set(thresholds), key=lambda t: t.value):
            reading = latest.get(sensor_type)
            threshold = thresholds.get(sensor_type)
            status = (
                threshold.evaluate(reading.value if reading else None)
                if threshold is not None
                else ThresholdStatus.UNKNOWN
            )
            summary.sensors.append(
                SensorSummary(
                    sensor_type=sensor_type,
                    latest=reading,
                    stats=self._store.aggregate(device_id, sensor_type, start, end),
                    threshold=threshold,
                    threshold_status=status,
                )
            )
        return summary
