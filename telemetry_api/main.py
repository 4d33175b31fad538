from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from common.config import Settings, get_settings
from common.db import dispose_engine, get_engine

from . import __version__
from .auth import BearerTokenVerifier
from .core.domain import CropThresholds, StoreFailure
from .devices import DeviceClient, DeviceRegistry, load_registry_config
from .endpoints import devices_router, health_router, telemetry_router
from .normalization import ReadingNormalizer
from .queries import TelemetryQueries
from .scheduler import BackoffPolicy, IngestionScheduler, SchedulerConfig
from .storage import TelemetryStore

logger = logging.getLogger(__name__)


def build_scheduler(
    settings: Settings,
    registry: DeviceRegistry,
    store: TelemetryStore,
    client: DeviceClient,
) -> IngestionScheduler:
    return IngestionScheduler(
        registry=registry,
        client=client,
        normalizer=ReadingNormalizer(),
        store=store,
        config=SchedulerConfig.from_settings(settings),
        backoff=BackoffPolicy.from_settings(settings),
    )


def build_registry(settings: Settings) -> tuple[DeviceRegistry, CropThresholds]:
    registry_config = load_registry_config(settings)
    registry = DeviceRegistry(
        registry_config.devices,
        failure_threshold=settings.device_failure_threshold,
    )
    return registry, registry_config.crops


def create_app(
    settings: Optional[Settings] = None,
    *,
    store: Optional[TelemetryStore] = None,
    registry: Optional[DeviceRegistry] = None,
    crops: Optional[CropThresholds] = None,
    client: Optional[DeviceClient] = None,
    scheduler_enabled: Optional[bool] = None,
) -> FastAPI:
    """Construye la app con sus componentes explícitos (sin contenedor global).

    El scheduler arranca y se detiene con el lifespan de la app. Sin
    argumentos, todo se construye desde la configuración del entorno.
    """
    settings = settings or get_settings()
    if scheduler_enabled is None:
        scheduler_enabled = settings.scheduler_enabled

    owns_engine = store is None
    if owns_engine:
        store = TelemetryStore(get_engine(settings))
    if registry is None:
        registry, loaded_crops = build_registry(settings)
        crops = crops if crops is not None else loaded_crops

    queries = TelemetryQueries(store, registry, crops)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        try:
            store.initialize()
        except StoreFailure:
            logger.critical("[STARTUP] Telemetry store unavailable - aborting")
            raise

        scheduler: Optional[IngestionScheduler] = None
        device_client = client
        if scheduler_enabled:
            device_client = device_client or DeviceClient(settings.device_timeout_seconds)
            scheduler = build_scheduler(settings, registry, store, device_client)
            await scheduler.start()
        app.state.scheduler = scheduler

        try:
            yield
        finally:
            if scheduler is not None:
                await scheduler.stop()
            if device_client is not None:
                await device_client.close()
            if owns_engine:
                dispose_engine()

    app = FastAPI(title="Soil Telemetry Service", version=__version__, lifespan=lifespan)

    app.state.settings = settings
    app.state.store = store
    app.state.registry = registry
    app.state.queries = queries
    app.state.scheduler = None
    app.state.token_verifier = BearerTokenVerifier(settings.jwt_key)

    app.include_router(health_router)
    app.include_router(devices_router)
    app.include_router(telemetry_router)

    return app
