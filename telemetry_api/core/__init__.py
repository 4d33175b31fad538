"""Núcleo del dominio de telemetría."""
