"""Persistencia de lecturas de telemetría."""

from .telemetry_store import ReadingStats, TelemetryStore, WriteAck

__all__ = ["ReadingStats", "TelemetryStore", "WriteAck"]
