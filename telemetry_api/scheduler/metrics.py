"""Métricas Prometheus del scheduler de ingesta."""

from prometheus_client import Counter, Gauge, Histogram

POLLS_TOTAL = Counter(
    "telemetry_polls_total",
    "Total device polls",
    ["outcome"],  # success, skipped, timeout, unreachable, http_error, malformed, store_error, error
)
POLL_LATENCY = Histogram(
    "telemetry_poll_latency_seconds",
    "Device HTTP call latency",
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)
READINGS_TOTAL = Counter(
    "telemetry_readings_total",
    "Readings processed by the scheduler",
    ["result"],  # stored, duplicate, rejected
)
POLLS_IN_FLIGHT = Gauge(
    "telemetry_polls_in_flight",
    "Polls currently running",
)
DEVICE_DEACTIVATIONS = Counter(
    "telemetry_device_deactivations_total",
    "Devices deactivated after consecutive failures",
)
