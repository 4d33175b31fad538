"""Backoff exponencial para reintentos de polling.

Adaptado del RetryConfig de la capa de resiliencia: aquí el "intento" es el
número de fallos consecutivos del dispositivo y la espera parte de su
intervalo base de polling.
"""

from __future__ import annotations

import random
from dataclasses import dataclass

from common.config import Settings


@dataclass(frozen=True)
class BackoffPolicy:
    """Configuración de backoff por dispositivo."""

    factor: float = 2.0
    max_delay: float = 600.0  # segundos
    jitter: bool = False  # con jitter la espera deja de ser monótona

    @classmethod
    def from_settings(cls, settings: Settings) -> "BackoffPolicy":
        return cls(
            factor=settings.backoff_factor,
            max_delay=settings.backoff_max_seconds,
        )

    def delay_for(self, base_interval: float, failures: int) -> float:
        """Espera antes del próximo intento.

        Args:
            base_interval: Intervalo normal de polling del dispositivo.
            failures: Fallos consecutivos (0 = sin fallos).

        Returns:
            ``min(base * factor^failures, max_delay)``; nunca menor que la base.
        """
        if failures <= 0:
            return base_interval

        cap = max(self.max_delay, base_interval)
        try:
            delay = base_interval * (self.factor ** failures)
        except OverflowError:
            delay = cap
        delay = min(delay, cap)

        if self.jitter:
            # Añadir jitter de ±10%
            jitter_range = delay * 0.10
            delay += random.uniform(-jitter_range, jitter_range)

        return max(base_interval, delay)
