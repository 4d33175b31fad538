"""Umbrales de cultivo por tipo de sensor."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional

from .reading import SensorType


class ThresholdStatus(str, Enum):
    OK = "ok"
    LOW = "low"
    HIGH = "high"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class CropThreshold:
    """Rango deseable de un sensor para un cultivo (no es el rango físico)."""

    min_value: Optional[float] = None
    max_value: Optional[float] = None

    def evaluate(self, value: Optional[float]) -> ThresholdStatus:
        if value is None:
            return ThresholdStatus.UNKNOWN
        if self.min_value is not None and value < self.min_value:
            return ThresholdStatus.LOW
        if self.max_value is not None and value > self.max_value:
            return ThresholdStatus.HIGH
        return ThresholdStatus.OK


# crop -> sensor_type -> threshold
CropThresholds = Dict[str, Dict[SensorType, CropThreshold]]
