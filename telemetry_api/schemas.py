from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from .core.domain import (
    CropThreshold,
    DeviceSnapshot,
    DeviceState,
    PollOutcome,
    SensorReading,
    SensorType,
    ThresholdStatus,
)
from .queries import DashboardSummary, SensorSummary
from .storage import ReadingStats


class ReadingOut(BaseModel):
    device_id: str
    sensor_type: SensorType
    value: float
    unit: str
    collected_at: datetime
    ingested_at: datetime

    @classmethod
    def from_domain(cls, r: SensorReading) -> "ReadingOut":
        return cls(
            device_id=r.device_id,
            sensor_type=r.sensor_type,
            value=r.value,
            unit=r.unit,
            collected_at=r.collected_at,
            ingested_at=r.ingested_at,
        )


class LatestReadingsOut(BaseModel):
    device_id: str
    readings: List[ReadingOut] = Field(default_factory=list)


class HistoryOut(BaseModel):
    device_id: str
    sensor_type: SensorType
    start: datetime
    end: datetime
    count: int
    truncated: bool = False
    readings: List[ReadingOut] = Field(default_factory=list)


class StatsOut(BaseModel):
    count: int
    min: float
    max: float
    avg: float
    first_at: datetime
    last_at: datetime

    @classmethod
    def from_domain(cls, s: ReadingStats) -> "StatsOut":
        return cls(
            count=s.count,
            min=s.min_value,
            max=s.max_value,
            avg=s.avg_value,
            first_at=s.first_at,
            last_at=s.last_at,
        )


class WindowStatsOut(BaseModel):
    device_id: str
    sensor_type: SensorType
    start: datetime
    end: datetime
    stats: Optional[StatsOut] = None


class ThresholdOut(BaseModel):
    min: Optional[float] = None
    max: Optional[float] = None

    @classmethod
    def from_domain(cls, t: CropThreshold) -> "ThresholdOut":
        return cls(min=t.min_value, max=t.max_value)


class SensorSummaryOut(BaseModel):
    sensor_type: SensorType
    latest: Optional[ReadingOut] = None
    stats: Optional[StatsOut] = None
    threshold: Optional[ThresholdOut] = None
    threshold_status: ThresholdStatus

    @classmethod
    def from_domain(cls, s: SensorSummary) -> "SensorSummaryOut":
        return cls(
            sensor_type=s.sensor_type,
            latest=ReadingOut.from_domain(s.latest) if s.latest else None,
            stats=StatsOut.from_domain(s.stats) if s.stats else None,
            threshold=ThresholdOut.from_domain(s.threshold) if s.threshold else None,
            threshold_status=s.threshold_status,
        )


class LastAttemptOut(BaseModel):
    outcome: PollOutcome
    started_at: datetime
    latency_ms: float
    stored: int
    rejected: int
    status_code: Optional[int] = None
    error: Optional[str] = None


class DeviceStatusOut(BaseModel):
    device_id: str
    url: str
    crop: Optional[str] = None
    state: DeviceState
    active: bool
    consecutive_failures: int
    current_backoff_seconds: float
    last_success_at: Optional[datetime] = None
    deactivated_at: Optional[datetime] = None
    last_attempt: Optional[LastAttemptOut] = None

    @classmethod
    def from_domain(cls, s: DeviceSnapshot) -> "DeviceStatusOut":
        last = None
        if s.last_attempt is not None:
            a = s.last_attempt
            last = LastAttemptOut(
                outcome=a.outcome,
                started_at=a.started_at,
                latency_ms=round(a.latency_ms, 2),
                stored=a.stored,
                rejected=a.rejected,
                status_code=a.status_code,
                error=a.error,
            )
        return cls(
            device_id=s.device_id,
            url=s.device.url,
            crop=s.device.crop,
            state=s.state,
            active=s.is_active,
            consecutive_failures=s.consecutive_failures,
            current_backoff_seconds=s.current_backoff_seconds,
            last_success_at=s.last_success_at,
            deactivated_at=s.deactivated_at,
            last_attempt=last,
        )


class DashboardOut(BaseModel):
    device: DeviceStatusOut
    window_start: datetime
    window_end: datetime
    alerts: int
    sensors: List[SensorSummaryOut] = Field(default_factory=list)

    @classmethod
    def from_domain(cls, d: DashboardSummary) -> "DashboardOut":
        return cls(
            device=DeviceStatusOut.from_domain(d.device),
            window_start=d.window_start,
            window_end=d.window_end,
            alerts=len(d.alerts),
            sensors=[SensorSummaryOut.from_domain(s) for s in d.sensors],
        )
