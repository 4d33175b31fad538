"""Esquema SQL de la telemetría."""

from __future__ import annotations

from sqlalchemy import (
    Column,
    DateTime,
    Float,
    Integer,
    MetaData,
    String,
    Table,
    UniqueConstraint,
)

metadata = MetaData()

# Append-only. La restricción única es la clave de idempotencia y también el
# índice que usan las consultas "latest" y "range".
sensor_readings = Table(
    "sensor_readings",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("device_id", String(64), nullable=False),
    Column("sensor_type", String(32), nullable=False),
    Column("value", Float, nullable=False),
    Column("unit", String(16), nullable=False),
    Column("collected_at", DateTime, nullable=False),  # UTC naive
    Column("ingested_at", DateTime, nullable=False),  # UTC naive
    UniqueConstraint(
        "device_id",
        "sensor_type",
        "collected_at",
        name="uq_sensor_readings_device_type_ts",
    ),
)

IDEMPOTENCY_COLUMNS = ["device_id", "sensor_type", "collected_at"]
