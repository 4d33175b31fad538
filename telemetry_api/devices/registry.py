"""Registro de dispositivos y su estado de polling.

FUENTE ÚNICA DE VERDAD para el estado operacional de cada ESP32.

Concurrencia:
- Un ``threading.Lock`` por dispositivo protege su ``DeviceRuntime``. El
  scheduler (event loop) y los handlers HTTP (threadpool de FastAPI) mutan y
  leen el mismo estado, por eso no basta con un lock de asyncio.
- Ningún lock se mantiene durante un ``await``: todas las operaciones son
  transiciones cortas y síncronas.
- El lock del registro solo protege la membresía (alta de dispositivos).
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional

from ..core.domain import (
    Device,
    DeviceRuntime,
    DeviceSnapshot,
    DeviceState,
    PollAttempt,
)

logger = logging.getLogger(__name__)

DEFAULT_FAILURE_THRESHOLD = 3


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class _Entry:
    device: Device
    runtime: DeviceRuntime = field(default_factory=DeviceRuntime)
    lock: threading.Lock = field(default_factory=threading.Lock)

    def snapshot(self) -> DeviceSnapshot:
        rt = self.runtime
        return DeviceSnapshot(
            device=self.device,
            state=rt.state,
            consecutive_failures=rt.consecutive_failures,
            last_success_at=rt.last_success_at,
            current_backoff_seconds=rt.current_backoff_seconds,
            deactivated_at=rt.deactivated_at,
            last_attempt=rt.last_attempt,
        )


class UnknownDevice(KeyError):
    """El dispositivo no está registrado."""


class DeviceRegistry:
    """Registro de dispositivos con sincronización por dispositivo."""

    def __init__(
        self,
        devices: Iterable[Device] = (),
        failure_threshold: int = DEFAULT_FAILURE_THRESHOLD,
    ):
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        self._failure_threshold = int(failure_threshold)
        self._entries: Dict[str, _Entry] = {}
        self._lock = threading.Lock()

        for device in devices:
            self.add(device)

    @property
    def failure_threshold(self) -> int:
        return self._failure_threshold

    def add(self, device: Device) -> None:
        with self._lock:
            if device.device_id in self._entries:
                raise ValueError(f"Duplicate device_id: {device.device_id}")
            self._entries[device.device_id] = _Entry(device=device)
        logger.info("[REGISTRY] Device registered id=%s url=%s", device.device_id, device.url)

    def _entry(self, device_id: str) -> _Entry:
        with self._lock:
            entry = self._entries.get(device_id)
        if entry is None:
            raise UnknownDevice(device_id)
        return entry

    def _all_entries(self) -> List[_Entry]:
        with self._lock:
            return list(self._entries.values())

    def __contains__(self, device_id: object) -> bool:
        with self._lock:
            return device_id in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def device_ids(self) -> List[str]:
        return [e.device.device_id for e in self._all_entries()]

    def get(self, device_id: str) -> DeviceSnapshot:
        entry = self._entry(device_id)
        with entry.lock:
            return entry.snapshot()

    def snapshots(self) -> List[DeviceSnapshot]:
        result = []
        for entry in self._all_entries():
            with entry.lock:
                result.append(entry.snapshot())
        return result

    # ------------------------------------------------------------------
    # Transiciones de estado (usadas por el scheduler)
    # ------------------------------------------------------------------

    def try_begin_poll(self, device_id: str, now: float) -> Optional[Device]:
        """IDLE -> POLLING si el dispositivo es elegible.

        Returns:
            El Device si la transición ocurrió; None si está desactivado,
            ya tiene un poll en vuelo o aún no venció su próximo poll.
        """
        entry = self._entry(device_id)
        with entry.lock:
            rt = entry.runtime
            if rt.state != DeviceState.IDLE:
                return None
            if now < rt.next_poll_at:
                return None
            rt.state = DeviceState.POLLING
            return entry.device

    def record_success(
        self,
        device_id: str,
        attempt: PollAttempt,
        *,
        now: float,
        interval: float,
    ) -> DeviceSnapshot:
        """POLLING -> IDLE tras almacenar: resetea fallos y backoff."""
        entry = self._entry(device_id)
        with entry.lock:
            rt = entry.runtime
            rt.consecutive_failures = 0
            rt.current_backoff_seconds = interval
            rt.last_success_at = attempt.started_at
            rt.last_attempt = attempt
            rt.next_poll_at = now + interval
            rt.state = DeviceState.IDLE
            return entry.snapshot()

    def record_skip(
        self,
        device_id: str,
        attempt: PollAttempt,
        *,
        now: float,
        interval: float,
    ) -> DeviceSnapshot:
        """POLLING -> IDLE con payload inservible.

        El dispositivo respondió, así que no es un fallo de red: el contador
        de fallos no se incrementa ni se resetea.
        """
        entry = self._entry(device_id)
        with entry.lock:
            rt = entry.runtime
            rt.last_attempt = attempt
            rt.next_poll_at = now + max(interval, rt.current_backoff_seconds)
            rt.state = DeviceState.IDLE
            return entry.snapshot()

    def record_failure(
        self,
        device_id: str,
        attempt: PollAttempt,
        *,
        now: float,
        delay_for: Callable[[int], float],
    ) -> DeviceSnapshot:
        """POLLING -> IDLE con backoff, o -> DEACTIVATED al alcanzar el umbral.

        Args:
            delay_for: Calcula la espera a partir del número de fallos consecutivos.
        """
        entry = self._entry(device_id)
        with entry.lock:
            rt = entry.runtime
            rt.consecutive_failures += 1
            rt.last_attempt = attempt

            if rt.consecutive_failures >= self._failure_threshold:
                rt.state = DeviceState.DEACTIVATED
                rt.deactivated_at = _utc_now()
                logger.warning(
                    "[REGISTRY] DEVICE_DEACTIVATED id=%s failures=%d threshold=%d last_outcome=%s",
                    device_id,
                    rt.consecutive_failures,
                    self._failure_threshold,
                    attempt.outcome.value,
                )
                return entry.snapshot()

            delay = delay_for(rt.consecutive_failures)
            rt.current_backoff_seconds = delay
            rt.next_poll_at = now + delay
            rt.state = DeviceState.IDLE
            return entry.snapshot()

    def reactivate(self, device_id: str, *, now: float = 0.0) -> DeviceSnapshot:
        """Reactivación manual: vuelve a IDLE con contador y backoff en cero."""
        entry = self._entry(device_id)
        with entry.lock:
            rt = entry.runtime
            was = rt.state
            if rt.state == DeviceState.DEACTIVATED:
                rt.state = DeviceState.IDLE
            rt.consecutive_failures = 0
            rt.current_backoff_seconds = 0.0
            rt.deactivated_at = None
            rt.next_poll_at = now
            snapshot = entry.snapshot()

        logger.info("[REGISTRY] Device reactivated id=%s previous_state=%s", device_id, was.value)
        return snapshot
