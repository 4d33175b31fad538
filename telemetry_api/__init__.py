"""Servicio de telemetría de suelo: polling de ESP32, almacenamiento y consultas."""

__version__ = "0.1.0"
