"""Taxonomía de errores del pipeline de telemetría.

- NetworkFailure: timeout / inalcanzable / HTTP no-2xx. Lo reintenta el scheduler con backoff.
- ParseFailure: payload mal formado. Se loguea y se descarta, el polling continúa.
- StoreFailure: persistencia no disponible o conflicto. Cuenta como fallo del dispositivo.
- AuthFailure: token inválido o expirado en el borde HTTP.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class FailureKind(str, Enum):
    """Tipos de fallo de red hacia un dispositivo."""
    TIMEOUT = "timeout"
    UNREACHABLE = "unreachable"
    HTTP_ERROR = "http_error"


class TelemetryError(Exception):
    """Base de todos los errores del dominio."""


class NetworkFailure(TelemetryError):
    def __init__(self, kind: FailureKind, detail: str = "", status_code: Optional[int] = None):
        self.kind = kind
        self.detail = detail
        self.status_code = status_code
        msg = kind.value if status_code is None else f"{kind.value}({status_code})"
        if detail:
            msg = f"{msg}: {detail}"
        super().__init__(msg)


class ParseFailure(TelemetryError):
    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class StoreFailure(TelemetryError):
    pass


class AuthFailure(TelemetryError):
    pass
