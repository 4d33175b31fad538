"""Configuración del scheduler de ingesta."""

from __future__ import annotations

from dataclasses import dataclass

from common.config import Settings


@dataclass(frozen=True)
class SchedulerConfig:
    poll_interval_seconds: float = 30.0
    tick_seconds: float = 1.0
    max_in_flight: int = 8

    def __post_init__(self):
        if self.max_in_flight < 1:
            raise ValueError("max_in_flight must be >= 1")
        if self.tick_seconds <= 0:
            raise ValueError("tick_seconds must be > 0")
        if self.poll_interval_seconds <= 0:
            raise ValueError("poll_interval_seconds must be > 0")

    @classmethod
    def from_settings(cls, settings: Settings) -> "SchedulerConfig":
        return cls(
            poll_interval_seconds=settings.poll_interval_seconds,
            tick_seconds=settings.scheduler_tick_seconds,
            max_in_flight=settings.scheduler_max_in_flight,
        )
