"""Scheduler de ingesta: polling periódico de los ESP32.

Máquina de estados por dispositivo (estado en DeviceRegistry):

    IDLE -> POLLING -> {stored, skipped, failed} -> IDLE
                                          \\-> DEACTIVATED (N fallos consecutivos)

Garantías:
- Como máximo un poll en vuelo por dispositivo: la transición IDLE -> POLLING
  es atómica en el registro y se hace antes de crear la tarea.
- Un dispositivo lento no bloquea a los demás: cada poll es una tarea asyncio
  independiente, acotadas en conjunto por un semáforo (max_in_flight).
- Las lecturas de un dispositivo se escriben en el orden en que se parsearon.
- ``stop()`` deja de programar polls y espera a los que están en vuelo
  (acotados por el timeout del DeviceClient).
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Callable, List, Optional, Set

from ..core.domain import (
    Device,
    DeviceState,
    FailureKind,
    ParseFailure,
    PollAttempt,
    PollOutcome,
    StoreFailure,
)
from ..devices.client import DeviceClient
from ..devices.registry import DeviceRegistry
from ..normalization.normalizer import ReadingNormalizer
from ..storage.telemetry_store import TelemetryStore
from .backoff import BackoffPolicy
from .config import SchedulerConfig
from .metrics import (
    DEVICE_DEACTIVATIONS,
    POLL_LATENCY,
    POLLS_IN_FLIGHT,
    POLLS_TOTAL,
    READINGS_TOTAL,
)

logger = logging.getLogger(__name__)

_FAILURE_OUTCOMES = {
    FailureKind.TIMEOUT: PollOutcome.TIMEOUT,
    FailureKind.UNREACHABLE: PollOutcome.UNREACHABLE,
    FailureKind.HTTP_ERROR: PollOutcome.HTTP_ERROR,
}


@dataclass
class SchedulerStats:
    ticks: int = 0
    polls_started: int = 0
    polls_succeeded: int = 0
    polls_skipped: int = 0
    polls_failed: int = 0
    readings_stored: int = 0
    readings_duplicated: int = 0
    readings_rejected: int = 0
    deactivations: int = 0
    last_tick_at: Optional[float] = None


class IngestionScheduler:
    """Loop de polling con una tarea asyncio por poll.

    Uso:
        scheduler = IngestionScheduler(registry, client, normalizer, store)
        await scheduler.start()
        ...
        await scheduler.stop()
    """

    def __init__(
        self,
        registry: DeviceRegistry,
        client: DeviceClient,
        normalizer: ReadingNormalizer,
        store: TelemetryStore,
        config: Optional[SchedulerConfig] = None,
        backoff: Optional[BackoffPolicy] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._registry = registry
        self._client = client
        self._normalizer = normalizer
        self._store = store
        self._config = config or SchedulerConfig()
        self._backoff = backoff or BackoffPolicy()
        self._clock = clock

        self._running = False
        self._stopping = False
        self._task: Optional[asyncio.Task] = None
        self._in_flight: Set[asyncio.Task] = set()
        self._semaphore = asyncio.Semaphore(self._config.max_in_flight)
        self._stats = SchedulerStats()

        logger.info(
            "IngestionScheduler initialized: devices=%d, interval=%.1fs, tick=%.1fs, "
            "max_in_flight=%d, failure_threshold=%d",
            len(registry),
            self._config.poll_interval_seconds,
            self._config.tick_seconds,
            self._config.max_in_flight,
            registry.failure_threshold,
        )

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    def base_interval(self, device: Device) -> float:
        if device.poll_interval_seconds is not None:
            return float(device.poll_interval_seconds)
        return self._config.poll_interval_seconds

    # ------------------------------------------------------------------
    # Ciclo de vida
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Inicia el loop en background."""
        if self._running:
            return

        self._running = True
        self._stopping = False
        self._task = asyncio.create_task(self._run_loop(), name="ingestion-scheduler")
        logger.info("IngestionScheduler started")

    async def stop(self, timeout: Optional[float] = None) -> None:
        """Deja de programar polls y espera a los que están en vuelo.

        Args:
            timeout: Espera máxima por los polls en vuelo. None = hasta que
                terminen (cada uno está acotado por el timeout del cliente).
        """
        self._stopping = True
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        pending = set(self._in_flight)
        if pending:
            logger.info("IngestionScheduler draining in_flight=%d", len(pending))
            done, still_pending = await asyncio.wait(pending, timeout=timeout)
            for task in still_pending:
                task.cancel()
            if still_pending:
                await asyncio.gather(*still_pending, return_exceptions=True)
                logger.warning("IngestionScheduler cancelled polls=%d after timeout", len(still_pending))

        logger.info("IngestionScheduler stopped. %s", self.get_stats())

    async def _run_loop(self) -> None:
        """Loop principal: un tick global cada ``tick_seconds``."""
        while self._running:
            try:
                self.tick()
                await asyncio.sleep(self._config.tick_seconds)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.exception("IngestionScheduler tick error: %s", e)
                await asyncio.sleep(self._config.tick_seconds)

    # ------------------------------------------------------------------
    # Programación
    # ------------------------------------------------------------------

    def tick(self) -> List[asyncio.Task]:
        """Lanza un poll por cada dispositivo elegible.

        Debe llamarse dentro de un event loop en ejecución.

        Returns:
            Las tareas de poll creadas en este tick.
        """
        if self._stopping:
            return []

        now = self._clock()
        self._stats.ticks += 1
        self._stats.last_tick_at = now

        tasks = []
        for device_id in self._registry.device_ids():
            device = self._registry.try_begin_poll(device_id, now)
            if device is None:
                continue

            self._stats.polls_started += 1
            task = asyncio.create_task(self._poll_guarded(device), name=f"poll-{device_id}")
            self._in_flight.add(task)
            task.add_done_callback(self._on_poll_done)
            tasks.append(task)
        POLLS_IN_FLIGHT.set(len(self._in_flight))
        return tasks

    def _on_poll_done(self, task: asyncio.Task) -> None:
        self._in_flight.discard(task)
        POLLS_IN_FLIGHT.set(len(self._in_flight))

    async def run_once(self) -> List[PollAttempt]:
        """Un tick completo: lanza los polls elegibles y espera sus resultados."""
        tasks = self.tick()
        if not tasks:
            return []
        return list(await asyncio.gather(*tasks))

    async def _poll_guarded(self, device: Device) -> PollAttempt:
        """Ejecuta el poll y SIEMPRE devuelve el dispositivo a un estado estable."""
        try:
            async with self._semaphore:
                try:
                    attempt = await self.poll_device(device)
                except Exception as e:
                    logger.exception("[POLL] Unexpected error device=%s", device.device_id)
                    attempt = PollAttempt(
                        device_id=device.device_id,
                        outcome=PollOutcome.ERROR,
                        error=type(e).__name__,
                    )
        except asyncio.CancelledError:
            self._registry.record_skip(
                device.device_id,
                PollAttempt(device_id=device.device_id, outcome=PollOutcome.SKIPPED, error="cancelled"),
                now=self._clock(),
                interval=self.base_interval(device),
            )
            raise

        self._apply(device, attempt)
        return attempt

    # ------------------------------------------------------------------
    # Poll
    # ------------------------------------------------------------------

    async def poll_device(self, device: Device) -> PollAttempt:
        """DeviceClient -> Normalizer -> Store. No toca el registro."""
        started_at = datetime.now(timezone.utc)

        fetched = await self._client.fetch(device)
        if not fetched.ok:
            failure = fetched.failure
            return PollAttempt(
                device_id=device.device_id,
                outcome=_FAILURE_OUTCOMES[failure.kind],
                latency_ms=fetched.latency_ms,
                status_code=failure.status_code,
                error=str(failure),
                started_at=started_at,
            )

        received_at = datetime.now(timezone.utc)
        try:
            result = self._normalizer.parse(fetched.payload, device, received_at=received_at)
        except ParseFailure as e:
            return PollAttempt(
                device_id=device.device_id,
                outcome=PollOutcome.MALFORMED,
                latency_ms=fetched.latency_ms,
                raw_payload=fetched.payload,
                error=e.reason,
                started_at=started_at,
            )

        if not result.readings:
            return PollAttempt(
                device_id=device.device_id,
                outcome=PollOutcome.SKIPPED,
                latency_ms=fetched.latency_ms,
                raw_payload=fetched.payload,
                rejected=result.rejected_count,
                error=",".join(sorted({r.reason for r in result.rejected})),
                started_at=started_at,
            )

        try:
            ack = await asyncio.to_thread(self._store.write, result.readings)
        except StoreFailure as e:
            return PollAttempt(
                device_id=device.device_id,
                outcome=PollOutcome.STORE_ERROR,
                latency_ms=fetched.latency_ms,
                rejected=result.rejected_count,
                error=str(e),
                started_at=started_at,
            )

        return PollAttempt(
            device_id=device.device_id,
            outcome=PollOutcome.SUCCESS,
            latency_ms=fetched.latency_ms,
            stored=ack.inserted,
            duplicates=ack.duplicates,
            rejected=result.rejected_count,
            started_at=started_at,
        )

    def _apply(self, device: Device, attempt: PollAttempt) -> None:
        """Aplica la política del resultado al estado del dispositivo."""
        now = self._clock()
        base = self.base_interval(device)
        self._stats.readings_rejected += attempt.rejected
        POLLS_TOTAL.labels(outcome=attempt.outcome.value).inc()
        POLL_LATENCY.observe(attempt.latency_ms / 1000)
        READINGS_TOTAL.labels(result="rejected").inc(attempt.rejected)

        if attempt.outcome == PollOutcome.SUCCESS:
            self._registry.record_success(device.device_id, attempt, now=now, interval=base)
            self._stats.polls_succeeded += 1
            self._stats.readings_stored += attempt.stored
            self._stats.readings_duplicated += attempt.duplicates
            READINGS_TOTAL.labels(result="stored").inc(attempt.stored)
            READINGS_TOTAL.labels(result="duplicate").inc(attempt.duplicates)
            logger.info(
                "[POLL] device=%s outcome=success stored=%d duplicates=%d rejected=%d latency_ms=%.1f",
                device.device_id, attempt.stored, attempt.duplicates, attempt.rejected, attempt.latency_ms,
            )
            return

        if not attempt.outcome.is_failure:
            self._registry.record_skip(device.device_id, attempt, now=now, interval=base)
            self._stats.polls_skipped += 1
            logger.warning(
                "[POLL] device=%s outcome=%s rejected=%d reason=%s",
                device.device_id, attempt.outcome.value, attempt.rejected, attempt.error,
            )
            return

        snapshot = self._registry.record_failure(
            device.device_id,
            attempt,
            now=now,
            delay_for=lambda failures: self._backoff.delay_for(base, failures),
        )
        self._stats.polls_failed += 1
        if snapshot.state == DeviceState.DEACTIVATED:
            self._stats.deactivations += 1
            DEVICE_DEACTIVATIONS.inc()
            return

        logger.warning(
            "[POLL] device=%s outcome=%s failures=%d backoff=%.1fs err=%s",
            device.device_id,
            attempt.outcome.value,
            snapshot.consecutive_failures,
            snapshot.current_backoff_seconds,
            attempt.error,
        )

    def get_stats(self) -> dict:
        """Estadísticas del scheduler."""
        stats = asdict(self._stats)
        stats.update(
            {
                "running": self._running,
                "in_flight": len(self._in_flight),
                "devices": len(self._registry),
                "config": asdict(self._config),
            }
        )
        return stats
