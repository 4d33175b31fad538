"""Cliente HTTP hacia los endpoints de los ESP32.

Nunca lanza excepciones hacia el scheduler: todo fallo se devuelve como
``FetchResult`` con ``failure`` para que el scheduler aplique su política
(backoff, desactivación).
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Optional

import httpx

from ..core.domain import Device, FailureKind, NetworkFailure

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 5.0


@dataclass
class FetchResult:
    """Resultado de una llamada al dispositivo."""

    device_id: str
    payload: Optional[str] = None
    failure: Optional[NetworkFailure] = None
    latency_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return self.failure is None


class DeviceClient:
    """Cliente asíncrono con timeout acotado por llamada.

    Uso:
        client = DeviceClient(timeout_seconds=5.0)
        result = await client.fetch(device)
        if result.ok:
            ...
        await client.close()
    """

    def __init__(
        self,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """Inicializa el cliente.

        Args:
            timeout_seconds: Timeout total por llamada. Debe ser menor que el
                intervalo de polling para no solapar ticks.
            http_client: Cliente httpx preconstruido (tests con MockTransport).
        """
        self._timeout = float(timeout_seconds)
        self._http = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(self._timeout),
            headers={"Accept": "application/json"},
        )

    async def fetch(self, device: Device) -> FetchResult:
        start = time.perf_counter()
        try:
            resp = await self._http.request(
                device.method.upper(),
                device.url,
                timeout=self._timeout,
            )
        except httpx.TimeoutException as e:
            return self._failed(device, start, FailureKind.TIMEOUT, e)
        except (httpx.TransportError, httpx.InvalidURL) as e:
            # Connection refused, DNS, reset, protocolo, URL inválida.
            return self._failed(device, start, FailureKind.UNREACHABLE, e)
        except httpx.HTTPError as e:
            return self._failed(device, start, FailureKind.UNREACHABLE, e)

        latency_ms = (time.perf_counter() - start) * 1000

        if not resp.is_success:
            logger.warning(
                "[DEVICE_CLIENT] HTTP error device=%s status=%d latency_ms=%.1f",
                device.device_id, resp.status_code, latency_ms,
            )
            return FetchResult(
                device_id=device.device_id,
                failure=NetworkFailure(
                    FailureKind.HTTP_ERROR,
                    detail=resp.reason_phrase,
                    status_code=resp.status_code,
                ),
                latency_ms=latency_ms,
            )

        logger.debug(
            "[DEVICE_CLIENT] OK device=%s bytes=%d latency_ms=%.1f",
            device.device_id, len(resp.content), latency_ms,
        )
        return FetchResult(
            device_id=device.device_id,
            payload=resp.text,
            latency_ms=latency_ms,
        )

    def _failed(
        self,
        device: Device,
        start: float,
        kind: FailureKind,
        error: Exception,
    ) -> FetchResult:
        latency_ms = (time.perf_counter() - start) * 1000
        logger.warning(
            "[DEVICE_CLIENT] %s device=%s url=%s latency_ms=%.1f err=%s",
            kind.value.upper(), device.device_id, device.url, latency_ms, type(error).__name__,
        )
        return FetchResult(
            device_id=device.device_id,
            failure=NetworkFailure(kind, detail=type(error).__name__),
            latency_ms=latency_ms,
        )

    async def close(self) -> None:
        await self._http.aclose()
