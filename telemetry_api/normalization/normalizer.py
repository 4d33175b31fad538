"""Normalizador de payloads de ESP32 a lecturas canónicas.

Principios:
- Aceptación parcial: un sensor con glitch no descarta el resto del payload.
- Explicitar la razón de cada rechazo (para logs y diagnóstico).
- Determinista: con ``received_at`` fijo, el mismo payload produce siempre
  el mismo resultado. No guarda estado entre llamadas.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Union

import orjson
from pydantic import ValidationError

from ..core.domain import Device, ParseFailure, SensorReading, SensorType
from .payload import DeviceReadingEntry, parse_device_timestamp
from .physical_ranges import (
    PHYSICAL_LIMITS,
    PhysicalRange,
    canonical_sensor_type,
    convert_to_canonical,
)

logger = logging.getLogger(__name__)

RawPayload = Union[str, bytes, Dict[str, Any], List[Any]]

# ESP32 sin sincronizar NTP reporta fechas de 1970; por debajo de esto se
# usa la hora del servidor.
MIN_DEVICE_TIMESTAMP = datetime(2020, 1, 1, tzinfo=timezone.utc)
MAX_FUTURE_SKEW = timedelta(minutes=5)


@dataclass(frozen=True)
class RejectedEntry:
    """Lectura descartada del payload."""
    index: int
    reason: str
    detail: Optional[str] = None


@dataclass
class NormalizationResult:
    """Subconjunto válido del payload más los rechazos."""
    readings: List[SensorReading] = field(default_factory=list)
    rejected: List[RejectedEntry] = field(default_factory=list)

    @property
    def accepted_count(self) -> int:
        return len(self.readings)

    @property
    def rejected_count(self) -> int:
        return len(self.rejected)


class ReadingNormalizer:
    """Convierte el payload crudo de un dispositivo en ``SensorReading``."""

    def __init__(self, limits: Optional[Dict[SensorType, PhysicalRange]] = None):
        self._limits = limits or PHYSICAL_LIMITS

    def parse(
        self,
        raw_payload: RawPayload,
        device: Device,
        received_at: Optional[datetime] = None,
    ) -> NormalizationResult:
        """Valida y normaliza un payload.

        Args:
            raw_payload: Cuerpo de la respuesta del dispositivo (texto JSON o ya decodificado).
            device: Dispositivo de origen.
            received_at: Hora de recepción; es el fallback de ``collected_at``
                y la ``ingested_at`` de todas las lecturas.

        Returns:
            NormalizationResult con las lecturas válidas en orden de payload.

        Raises:
            ParseFailure: Si el payload completo no es utilizable.
        """
        received_at = received_at or datetime.now(timezone.utc)
        if received_at.tzinfo is None:
            received_at = received_at.replace(tzinfo=timezone.utc)

        data = self._decode(raw_payload)
        entries, default_ts = self._extract_entries(data)

        result = NormalizationResult()
        for index, raw_entry in enumerate(entries):
            reading = self._normalize_entry(index, raw_entry, device, default_ts, received_at, result)
            if reading is not None:
                result.readings.append(reading)

        if result.rejected:
            logger.info(
                "[NORMALIZER] device=%s accepted=%d rejected=%d reasons=%s",
                device.device_id,
                result.accepted_count,
                result.rejected_count,
                sorted({r.reason for r in result.rejected}),
            )
        return result

    # ------------------------------------------------------------------

    @staticmethod
    def _decode(raw_payload: RawPayload) -> Any:
        if isinstance(raw_payload, (dict, list)):
            return raw_payload
        if isinstance(raw_payload, bytes):
            try:
                raw_payload = raw_payload.decode("utf-8")
            except UnicodeDecodeError:
                raise ParseFailure("NOT_UTF8")
        if not isinstance(raw_payload, str) or not raw_payload.strip():
            raise ParseFailure("EMPTY_PAYLOAD")
        try:
            return orjson.loads(raw_payload)
        except orjson.JSONDecodeError as e:
            raise ParseFailure(f"INVALID_JSON: {e}")

    @staticmethod
    def _extract_entries(data: Any) -> tuple[List[Any], Any]:
        if isinstance(data, list):
            entries, default_ts = data, None
        elif isinstance(data, dict) and "readings" in data:
            entries = data["readings"]
            if not isinstance(entries, list):
                raise ParseFailure("READINGS_NOT_A_LIST")
            default_ts = data.get("timestamp", data.get("ts"))
        elif isinstance(data, dict):
            entries, default_ts = [data], None
        else:
            raise ParseFailure(f"UNEXPECTED_TOP_LEVEL_TYPE: {type(data).__name__}")

        if not entries:
            raise ParseFailure("NO_READINGS")
        return entries, default_ts

    def _normalize_entry(
        self,
        index: int,
        raw_entry: Any,
        device: Device,
        default_ts: Any,
        received_at: datetime,
        result: NormalizationResult,
    ) -> Optional[SensorReading]:
        def reject(reason: str, detail: Optional[str] = None) -> None:
            result.rejected.append(RejectedEntry(index=index, reason=reason, detail=detail))

        if not isinstance(raw_entry, dict):
            reject("INVALID_SHAPE", f"entry is {type(raw_entry).__name__}")
            return None

        try:
            entry = DeviceReadingEntry.model_validate(raw_entry)
        except ValidationError as e:
            fields = ",".join(str(err["loc"][0]) for err in e.errors() if err.get("loc"))
            reject("INVALID_SHAPE", fields or None)
            return None

        sensor_type = canonical_sensor_type(entry.sensor_type)
        if sensor_type is None:
            reject("UNKNOWN_SENSOR_TYPE", entry.sensor_type)
            return None

        # Guard 1: NaN o infinito
        if math.isnan(entry.value):
            reject("VALUE_IS_NAN")
            return None
        if math.isinf(entry.value):
            reject("VALUE_IS_INFINITE")
            return None

        value = convert_to_canonical(sensor_type, entry.value, entry.unit)
        if value is None:
            reject("UNKNOWN_UNIT", entry.unit)
            return None

        # Guard 2: Valor fuera de rangos físicos absolutos
        limits = self._limits[sensor_type]
        if limits.violates(value):
            reject(
                "VALUE_OUTSIDE_PHYSICAL_LIMITS",
                f"{sensor_type.value}={value} not in [{limits.min_value}, {limits.max_value}] {limits.unit}",
            )
            return None

        raw_ts = entry.timestamp if entry.timestamp is not None else default_ts
        collected_at = self._resolve_timestamp(raw_ts, received_at)

        return SensorReading(
            device_id=device.device_id,
            sensor_type=sensor_type,
            value=value,
            unit=limits.unit,
            collected_at=collected_at,
            ingested_at=received_at,
        )

    @staticmethod
    def _resolve_timestamp(raw_ts: Any, received_at: datetime) -> datetime:
        """Timestamp del dispositivo si es plausible; si no, hora del servidor."""
        if isinstance(raw_ts, (dict, list)):
            return received_at
        device_ts = parse_device_timestamp(raw_ts)
        if device_ts is None:
            return received_at
        if device_ts < MIN_DEVICE_TIMESTAMP:
            return received_at
        if device_ts > received_at + MAX_FUTURE_SKEW:
            return received_at
        return device_ts
