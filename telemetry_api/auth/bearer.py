"""Autenticación Bearer (JWT) para los endpoints de consulta.

El servicio de usuarios emite los tokens; aquí solo se verifican firma y
vigencia (HS256 con clave compartida). Emisor y audiencia no se validan.

SECURITY: Si JWT_KEY no está configurado, toda petición protegida falla con 500.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Sequence

import jwt
from fastapi import Header, HTTPException, Request

from ..core.domain import AuthFailure

logger = logging.getLogger(__name__)

_SUBJECT_CLAIMS = ("sub", "unique_name", "email")


@dataclass(frozen=True)
class Principal:
    """Usuario ya autenticado."""
    subject: str
    claims: Dict[str, Any] = field(default_factory=dict)


class BearerTokenVerifier:
    """Verificador de JWT firmado con clave simétrica."""

    def __init__(
        self,
        key: Optional[str],
        algorithms: Sequence[str] = ("HS256",),
        leeway_seconds: float = 0.0,
    ):
        self._key = key
        self._algorithms = list(algorithms)
        self._leeway = leeway_seconds

    @property
    def configured(self) -> bool:
        return bool(self._key)

    def verify(self, token: str) -> Principal:
        """Valida firma y expiración.

        Raises:
            AuthFailure: Token inválido, expirado o sin sujeto.
        """
        try:
            claims = jwt.decode(
                token,
                self._key,
                algorithms=self._algorithms,
                leeway=self._leeway,
                options={
                    "require": ["exp"],
                    "verify_aud": False,
                    "verify_iss": False,
                },
            )
        except jwt.ExpiredSignatureError:
            raise AuthFailure("Token expired")
        except jwt.InvalidTokenError as e:
            raise AuthFailure(f"Invalid token: {type(e).__name__}")

        subject = next((str(claims[c]) for c in _SUBJECT_CLAIMS if claims.get(c)), None)
        if subject is None:
            raise AuthFailure("Token without subject")
        return Principal(subject=subject, claims=claims)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=401,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def require_principal(
    request: Request,
    authorization: str | None = Header(default=None),
) -> Principal:
    """Dependencia FastAPI: exige ``Authorization: Bearer <token>`` válido."""
    verifier: Optional[BearerTokenVerifier] = getattr(request.app.state, "token_verifier", None)
    if verifier is None or not verifier.configured:
        logger.error("CRITICAL: JWT_KEY not configured - rejecting authenticated endpoint")
        raise HTTPException(status_code=500, detail="Server misconfiguration: token key not set")

    if not authorization:
        raise _unauthorized("Bearer token required")

    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise _unauthorized("Bearer token required")

    try:
        return verifier.verify(token.strip())
    except AuthFailure as e:
        logger.warning("[AUTH] Rejected request path=%s reason=%s", request.url.path, e)
        raise _unauthorized("Invalid or expired token")
