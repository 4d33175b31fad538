"""Fixtures compartidas para los tests del servicio de telemetría."""

from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Union

import jwt
import pytest

from common.config import Settings
from common.db import build_engine
from telemetry_api.core.domain import Device, FailureKind, NetworkFailure
from telemetry_api.devices.client import FetchResult
from telemetry_api.storage import TelemetryStore

JWT_TEST_KEY = "test-signing-key-with-enough-entropy-0123456789"


# =============================================================================
# CONFIG
# =============================================================================

def make_settings(**overrides) -> Settings:
    base = Settings(
        database_url="sqlite://",
        jwt_key=JWT_TEST_KEY,
        device_registry_file=None,
        esp32_url=None,
        esp32_device_id="esp32-01",
        poll_interval_seconds=30.0,
        device_timeout_seconds=1.0,
        device_failure_threshold=3,
        backoff_factor=2.0,
        backoff_max_seconds=600.0,
        scheduler_tick_seconds=1.0,
        scheduler_max_in_flight=8,
        scheduler_enabled=False,
    )
    return replace(base, **overrides)


@pytest.fixture
def settings() -> Settings:
    return make_settings()


# =============================================================================
# STORE
# =============================================================================

@pytest.fixture
def store(tmp_path) -> TelemetryStore:
    """Store SQLite en archivo: admite conexiones desde varios hilos."""
    engine = build_engine(f"sqlite:///{tmp_path / 'telemetry.db'}")
    s = TelemetryStore(engine)
    s.initialize()
    yield s
    engine.dispose()


# =============================================================================
# DEVICES
# =============================================================================

@pytest.fixture
def device() -> Device:
    return Device(device_id="esp32-solo-01", url="http://esp32-solo-01.local/leituras", crop="tomate")


@pytest.fixture
def other_device() -> Device:
    return Device(device_id="esp32-solo-02", url="http://esp32-solo-02.local/leituras")


class FakeClock:
    """Reloj monotónico controlado manualmente."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


Scripted = Union[str, FetchResult, Callable[[Device], "asyncio.Future"]]


class ScriptedDeviceClient:
    """DeviceClient falso: responde según un guion por dispositivo.

    Cada entrada del guion puede ser un payload (str), un FetchResult o una
    corrutina ``async def handler(device) -> FetchResult``. La última entrada
    se repite cuando el guion se agota.
    """

    def __init__(self, script: Dict[str, List[Scripted]] | None = None):
        self.script: Dict[str, List[Scripted]] = script or {}
        self.calls: List[str] = []
        self.closed = False

    async def fetch(self, device: Device) -> FetchResult:
        self.calls.append(device.device_id)
        steps = self.script.get(device.device_id) or [timeout_result(device.device_id)]
        step = steps.pop(0) if len(steps) > 1 else steps[0]
        if isinstance(step, str):
            return FetchResult(device_id=device.device_id, payload=step, latency_ms=1.0)
        if isinstance(step, FetchResult):
            return step
        return await step(device)

    def calls_for(self, device_id: str) -> int:
        return self.calls.count(device_id)

    async def close(self) -> None:
        self.closed = True


def timeout_result(device_id: str) -> FetchResult:
    return FetchResult(
        device_id=device_id,
        failure=NetworkFailure(FailureKind.TIMEOUT, detail="ReadTimeout"),
        latency_ms=1000.0,
    )


def unreachable_result(device_id: str) -> FetchResult:
    return FetchResult(
        device_id=device_id,
        failure=NetworkFailure(FailureKind.UNREACHABLE, detail="ConnectError"),
        latency_ms=2.0,
    )


# =============================================================================
# AUTH
# =============================================================================

def make_token(
    subject: str = "agronomo@example.com",
    *,
    key: str = JWT_TEST_KEY,
    expires_in: timedelta = timedelta(hours=1),
    **claims,
) -> str:
    now = datetime.now(timezone.utc)
    payload = {"sub": subject, "iat": now, "exp": now + expires_in}
    payload.update(claims)
    return jwt.encode(payload, key, algorithm="HS256")


@pytest.fixture
def auth_headers() -> Dict[str, str]:
    return {"Authorization": f"Bearer {make_token()}"}


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def epoch(dt: datetime) -> int:
    return int(dt.timestamp())

