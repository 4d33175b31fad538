"""Modelo de dominio para lecturas de sensores."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class SensorType(str, Enum):
    """Tipos de sensor soportados por el firmware de suelo."""
    MOISTURE = "moisture"
    TEMPERATURE = "temperature"
    HUMIDITY = "humidity"
    PH = "ph"
    CONDUCTIVITY = "conductivity"
    LIGHT = "light"


@dataclass(frozen=True)
class SensorReading:
    """Lectura de sensor - modelo canónico de dominio.

    Es el contrato que fluye por todo el pipeline:
    ESP32 → DeviceClient → Normalizer → TelemetryStore → Queries

    Inmutable: una vez persistida no se modifica. ``value`` siempre está
    expresado en la unidad canónica del tipo de sensor.
    """
    device_id: str
    sensor_type: SensorType
    value: float
    unit: str
    collected_at: datetime
    ingested_at: datetime
