"""Resultado efímero de un intento de polling a un dispositivo."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

RAW_SNAPSHOT_MAX_CHARS = 512


class PollOutcome(str, Enum):
    SUCCESS = "success"
    SKIPPED = "skipped"
    TIMEOUT = "timeout"
    UNREACHABLE = "unreachable"
    HTTP_ERROR = "http_error"
    MALFORMED = "malformed"
    STORE_ERROR = "store_error"
    ERROR = "error"

    @property
    def is_failure(self) -> bool:
        """True si el resultado cuenta para el contador de fallos del dispositivo."""
        return self in (
            PollOutcome.TIMEOUT,
            PollOutcome.UNREACHABLE,
            PollOutcome.HTTP_ERROR,
            PollOutcome.STORE_ERROR,
            PollOutcome.ERROR,
        )


def snapshot_payload(raw: Optional[str]) -> Optional[str]:
    if raw is None:
        return None
    if len(raw) <= RAW_SNAPSHOT_MAX_CHARS:
        return raw
    return raw[:RAW_SNAPSHOT_MAX_CHARS] + "..."


@dataclass
class PollAttempt:
    """Intento de polling: alimenta el contador de fallos y el backoff.

    No se persiste; el registro guarda el último intento por dispositivo
    para diagnóstico y se loguea.
    """
    device_id: str
    outcome: PollOutcome
    latency_ms: float = 0.0
    raw_payload: Optional[str] = None
    status_code: Optional[int] = None
    stored: int = 0
    duplicates: int = 0
    rejected: int = 0
    error: Optional[str] = None
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self):
        self.raw_payload = snapshot_payload(self.raw_payload)
