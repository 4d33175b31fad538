from __future__ import annotations

from typing import Optional
import logging

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url

from .config import Settings, get_settings


logger = logging.getLogger(__name__)

# Singleton engine
_engine: Optional[Engine] = None


def build_engine(database_url: str) -> Engine:
    url = make_url(database_url)

    connect_args: dict = {}
    if url.get_backend_name() == "sqlite":
        # El scheduler escribe desde hilos de trabajo y FastAPI lee desde su threadpool.
        connect_args = {"check_same_thread": False, "timeout": 15}

    # Log básico de parámetros de conexión (sin contraseña)
    logger.info(
        "[DB] Crear engine backend=%s host=%s db=%s",
        url.get_backend_name(),
        url.host,
        url.database,
    )

    engine = create_engine(
        url,
        pool_pre_ping=True,
        connect_args=connect_args,
        future=True,
    )

    if url.get_backend_name() == "sqlite":
        @event.listens_for(engine, "connect")
        def _sqlite_pragmas(dbapi_conn, _record):
            cursor = dbapi_conn.cursor()
            # WAL: lectores no bloquean al escritor ni viceversa.
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.close()

    return engine


def get_engine(settings: Optional[Settings] = None) -> Engine:
    """Obtiene el engine compartido (singleton)."""
    global _engine

    if _engine is not None:
        return _engine

    settings = settings or get_settings()
    _engine = build_engine(settings.database_url)
    return _engine


def dispose_engine() -> None:
    global _engine
    if _engine is not None:
        _engine.dispose()
        _engine = None
        logger.info("[DB] Engine liberado")
