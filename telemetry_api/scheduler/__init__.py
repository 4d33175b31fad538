"""Scheduler de ingesta por polling."""

from .backoff import BackoffPolicy
from .config import SchedulerConfig
from .scheduler import IngestionScheduler

__all__ = ["BackoffPolicy", "IngestionScheduler", "SchedulerConfig"]
