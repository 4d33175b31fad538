"""Módulo de autenticación para endpoints de consulta."""

from .bearer import BearerTokenVerifier, Principal, require_principal

__all__ = [
    "BearerTokenVerifier",
    "Principal",
    "require_principal",
]
