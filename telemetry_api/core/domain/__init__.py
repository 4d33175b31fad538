"""Modelos de dominio del pipeline de telemetría."""

from .crop import CropThreshold, CropThresholds, ThresholdStatus
from .device import Device, DeviceRuntime, DeviceSnapshot, DeviceState
from .errors import (
    AuthFailure,
    FailureKind,
    NetworkFailure,
    ParseFailure,
    StoreFailure,
    TelemetryError,
)
from .poll_attempt import PollAttempt, PollOutcome
from .reading import SensorReading, SensorType

__all__ = [
    "AuthFailure",
    "CropThreshold",
    "CropThresholds",
    "Device",
    "DeviceRuntime",
    "DeviceSnapshot",
    "DeviceState",
    "FailureKind",
    "NetworkFailure",
    "ParseFailure",
    "PollAttempt",
    "PollOutcome",
    "SensorReading",
    "SensorType",
    "StoreFailure",
    "TelemetryError",
    "ThresholdStatus",
]
