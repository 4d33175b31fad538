"""Consultas de telemetría (solo lectura)."""

from .telemetry import DashboardSummary, HistoryPage, SensorSummary, TelemetryQueries

__all__ = ["DashboardSummary", "HistoryPage", "SensorSummary", "TelemetryQueries"]
