"""Normalización de payloads de dispositivos."""

from .normalizer import NormalizationResult, ReadingNormalizer, RejectedEntry
from .physical_ranges import PHYSICAL_LIMITS, PhysicalRange, canonical_sensor_type

__all__ = [
    "NormalizationResult",
    "PHYSICAL_LIMITS",
    "PhysicalRange",
    "ReadingNormalizer",
    "RejectedEntry",
    "canonical_sensor_type",
]
