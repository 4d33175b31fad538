"""Schema del payload que reportan los ESP32.

Formatos aceptados:

    {"type": "moisture", "value": 42.5, "unit": "%", "timestamp": 1735689600}

    [{"type": "moisture", "value": 42.5}, {"type": "ph", "value": 6.4}]

    {
        "timestamp": "2026-01-31T08:00:00Z",
        "readings": [{"sensor_type": "temperature", "value": 21.3, "unit": "C"}]
    }

``timestamp`` (alias ``ts``) puede ser ISO-8601 o epoch en segundos o
milisegundos. Los campos desconocidos se ignoran.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

RawTimestamp = Union[int, float, str]

# Epoch por encima de este valor se interpreta como milisegundos.
_EPOCH_MS_THRESHOLD = 1e11


class DeviceReadingEntry(BaseModel):
    """Una lectura individual dentro del payload."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    sensor_type: str = Field(..., validation_alias=AliasChoices("type", "sensor_type", "sensor"))
    value: float
    unit: Optional[str] = None
    timestamp: Optional[RawTimestamp] = Field(
        default=None, validation_alias=AliasChoices("timestamp", "ts")
    )

    @field_validator("value", mode="before")
    @classmethod
    def reject_bool_value(cls, v):
        if isinstance(v, bool):
            raise ValueError("value must be numeric, got bool")
        return v

    @field_validator("sensor_type")
    @classmethod
    def validate_sensor_type(cls, v):
        if not v or not v.strip():
            raise ValueError("sensor type is required")
        return v.strip()


def parse_device_timestamp(raw: Optional[RawTimestamp]) -> Optional[datetime]:
    """Convierte el timestamp del dispositivo a datetime UTC.

    Returns:
        datetime con tz UTC, o None si no viene o no es interpretable.
    """
    if raw is None or isinstance(raw, bool):
        return None

    if isinstance(raw, str):
        s = raw.strip()
        if not s:
            return None
        try:
            raw = float(s)
        except ValueError:
            try:
                dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
            except ValueError:
                return None
            if dt.tzinfo is None:
                dt = dt.replace(tzinfo=timezone.utc)
            return dt.astimezone(timezone.utc)

    epoch = float(raw)
    if epoch != epoch or epoch in (float("inf"), float("-inf")):
        return None
    if epoch > _EPOCH_MS_THRESHOLD:
        epoch = epoch / 1000.0
    try:
        return datetime.fromtimestamp(epoch, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None
