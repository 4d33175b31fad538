"""Almacenamiento de lecturas de telemetría.

Concurrencia:
- ``write`` usa una transacción por llamada: los lectores solo ven registros
  confirmados, nunca una lectura a medio escribir.
- Las escrituras concurrentes sobre la misma clave (device, tipo, timestamp)
  las serializa la restricción única; el duplicado es un no-op.
- Las lecturas no toman locks de aplicación (snapshot del motor).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Iterable, Iterator, List, Optional

from sqlalchemy import func, insert, select, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..core.domain import SensorReading, SensorType, StoreFailure
from .models import IDEMPOTENCY_COLUMNS, metadata, sensor_readings

logger = logging.getLogger(__name__)

STREAM_BATCH_SIZE = 500


@dataclass(frozen=True)
class WriteAck:
    """Confirmación de escritura."""
    inserted: int
    duplicates: int

    @property
    def total(self) -> int:
        return self.inserted + self.duplicates


@dataclass(frozen=True)
class ReadingStats:
    """Estadísticas de una ventana de lecturas."""
    count: int
    min_value: float
    max_value: float
    avg_value: float
    first_at: datetime
    last_at: datetime


def _to_db_ts(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def _from_db_ts(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _dialect_insert(dialect_name: str):
    if dialect_name == "sqlite":
        from sqlalchemy.dialects.sqlite import insert as sqlite_insert
        return sqlite_insert
    if dialect_name == "postgresql":
        from sqlalchemy.dialects.postgresql import insert as pg_insert
        return pg_insert
    return None


class TelemetryStore:
    """Store de lecturas sobre SQLAlchemy Core.

    Uso:
        store = TelemetryStore(engine)
        store.initialize()
        ack = store.write(readings)
        last = store.latest("esp32-01", SensorType.MOISTURE)
    """

    def __init__(self, engine: Engine):
        self._engine = engine
        self._dialect_insert = _dialect_insert(engine.dialect.name)

    def initialize(self) -> None:
        """Crea el esquema y prueba la conexión.

        Raises:
            StoreFailure: Si la BD no es utilizable (fatal al arrancar).
        """
        try:
            metadata.create_all(self._engine)
            with self._engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            logger.exception("[STORE] Initialization failed")
            raise StoreFailure(f"Store initialization failed: {type(e).__name__}") from e
        logger.info("[STORE] Initialized dialect=%s", self._engine.dialect.name)

    def ping(self) -> bool:
        try:
            with self._engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError:
            logger.exception("[STORE] Ping failed")
            return False

    # ------------------------------------------------------------------
    # Escritura
    # ------------------------------------------------------------------

    def write(self, readings: Iterable[SensorReading]) -> WriteAck:
        """Persiste lecturas en orden, ignorando duplicados.

        Raises:
            StoreFailure: Si la transacción no se pudo confirmar.
        """
        rows = [self._reading_to_row(r) for r in readings]
        if not rows:
            return WriteAck(inserted=0, duplicates=0)

        try:
            with self._engine.begin() as conn:
                inserted = self._insert_ignoring_duplicates(conn, rows)
        except SQLAlchemyError as e:
            logger.exception("[STORE] Write failed rows=%d", len(rows))
            raise StoreFailure(f"Write failed: {type(e).__name__}") from e

        ack = WriteAck(inserted=inserted, duplicates=len(rows) - inserted)
        if ack.duplicates:
            logger.debug("[STORE] Duplicates skipped=%d inserted=%d", ack.duplicates, ack.inserted)
        return ack

    def _insert_ignoring_duplicates(self, conn: Connection, rows: List[dict]) -> int:
        inserted = 0
        if self._dialect_insert is not None:
            for row in rows:
                stmt = (
                    self._dialect_insert(sensor_readings)
                    .values(**row)
                    .on_conflict_do_nothing(index_elements=IDEMPOTENCY_COLUMNS)
                )
                result = conn.execute(stmt)
                inserted += max(result.rowcount, 0)
            return inserted

        # Otros motores: savepoint por fila y el duplicado se descarta.
        for row in rows:
            try:
                with conn.begin_nested():
                    conn.execute(insert(sensor_readings).values(**row))
                inserted += 1
            except IntegrityError:
                continue
        return inserted

    @staticmethod
    def _reading_to_row(r: SensorReading) -> dict:
        return {
            "device_id": r.device_id,
            "sensor_type": r.sensor_type.value,
            "value": float(r.value),
            "unit": r.unit,
            "collected_at": _to_db_ts(r.collected_at),
            "ingested_at": _to_db_ts(r.ingested_at),
        }

    @staticmethod
    def _row_to_reading(row) -> SensorReading:
        return SensorReading(
            device_id=row.device_id,
            sensor_type=SensorType(row.sensor_type),
            value=float(row.value),
            unit=row.unit,
            collected_at=_from_db_ts(row.collected_at),
            ingested_at=_from_db_ts(row.ingested_at),
        )

    # ------------------------------------------------------------------
    # Lectura
    # ------------------------------------------------------------------

    def latest(self, device_id: str, sensor_type: SensorType) -> Optional[SensorReading]:
        """Lectura más reciente (por collected_at) de un sensor."""
        stmt = (
            select(sensor_readings)
            .where(
                sensor_readings.c.device_id == device_id,
                sensor_readings.c.sensor_type == sensor_type.value,
            )
            .order_by(sensor_readings.c.collected_at.desc(), sensor_readings.c.id.desc())
            .limit(1)
        )
        try:
            with self._engine.connect() as conn:
                row = conn.execute(stmt).fetchone()
        except SQLAlchemyError as e:
            raise StoreFailure(f"Query failed: {type(e).__name__}") from e

        if not row:
            return None
        return self._row_to_reading(row)

    def sensor_types(self, device_id: str) -> List[SensorType]:
        stmt = (
            select(sensor_readings.c.sensor_type)
            .where(sensor_readings.c.device_id == device_id)
            .distinct()
        )
        try:
            with self._engine.connect() as conn:
                values = conn.execute(stmt).scalars().all()
        except SQLAlchemyError as e:
            raise StoreFailure(f"Query failed: {type(e).__name__}") from e
        return sorted((SensorType(v) for v in values), key=lambda t: t.value)

    def latest_per_sensor(self, device_id: str) -> Dict[SensorType, SensorReading]:
        result: Dict[SensorType, SensorReading] = {}
        for sensor_type in self.sensor_types(device_id):
            reading = self.latest(device_id, sensor_type)
            if reading is not None:
                result[sensor_type] = reading
        return result

    def range(
        self,
        device_id: str,
        sensor_type: SensorType,
        start: datetime,
        end: datetime,
        limit: Optional[int] = None,
    ) -> Iterator[SensorReading]:
        """Lecturas en [start, end] en orden cronológico.

        Con ``limit`` se devuelven las ``limit`` lecturas más recientes de la
        ventana, también en orden cronológico.

        Devuelve un iterador perezoso: las filas se leen de la BD a medida que
        se consumen. La conexión se libera al agotar o cerrar el iterador.

        Raises:
            ValueError: Si start > end.
        """
        if start > end:
            raise ValueError("start must be <= end")

        c = sensor_readings.c
        window = select(sensor_readings).where(
            c.device_id == device_id,
            c.sensor_type == sensor_type.value,
            c.collected_at >= _to_db_ts(start),
            c.collected_at <= _to_db_ts(end),
        )
        if limit is None:
            return self._stream(window.order_by(c.collected_at.asc(), c.id.asc()))

        newest = window.order_by(c.collected_at.desc(), c.id.desc()).limit(limit).subquery()
        stmt = select(newest).order_by(newest.c.collected_at.asc(), newest.c.id.asc())
        return self._stream(stmt)

    def _stream(self, stmt) -> Iterator[SensorReading]:
        try:
            with self._engine.connect() as conn:
                result = conn.execution_options(
                    stream_results=True, yield_per=STREAM_BATCH_SIZE
                ).execute(stmt)
                for row in result:
                    yield self._row_to_reading(row)
        except SQLAlchemyError as e:
            raise StoreFailure(f"Query failed: {type(e).__name__}") from e

    def aggregate(
        self,
        device_id: str,
        sensor_type: SensorType,
        start: datetime,
        end: datetime,
    ) -> Optional[ReadingStats]:
        """MIN/MAX/AVG/COUNT calculados en la BD. None si no hay lecturas."""
        if start > end:
            raise ValueError("start must be <= end")

        c = sensor_readings.c
        stmt = select(
            func.count(c.id).label("n"),
            func.min(c.value).label("min_value"),
            func.max(c.value).label("max_value"),
            func.avg(c.value).label("avg_value"),
            func.min(c.collected_at).label("first_at"),
            func.max(c.collected_at).label("last_at"),
        ).where(
            c.device_id == device_id,
            c.sensor_type == sensor_type.value,
            c.collected_at >= _to_db_ts(start),
            c.collected_at <= _to_db_ts(end),
        )
        try:
            with self._engine.connect() as conn:
                row = conn.execute(stmt).one()
        except SQLAlchemyError as e:
            raise StoreFailure(f"Query failed: {type(e).__name__}") from e

        if not row.n:
            return None

        return ReadingStats(
            count=int(row.n),
            min_value=float(row.min_value),
            max_value=float(row.max_value),
            avg_value=float(row.avg_value),
            first_at=_from_db_ts(row.first_at),
            last_at=_from_db_ts(row.last_at),
        )
