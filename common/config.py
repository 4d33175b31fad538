from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


def _default_env_file() -> str:
    # .env en la raíz del repo; las variables reales del entorno tienen prioridad.
    repo_root = Path(__file__).resolve().parents[1]
    return str(repo_root / ".env")


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    database_url: str

    jwt_key: Optional[str]

    device_registry_file: Optional[str]
    esp32_url: Optional[str]
    esp32_device_id: str

    poll_interval_seconds: float
    device_timeout_seconds: float
    device_failure_threshold: int
    backoff_factor: float
    backoff_max_seconds: float
    scheduler_tick_seconds: float
    scheduler_max_in_flight: int
    scheduler_enabled: bool


def get_settings() -> Settings:
    # Load env file (if present) but still allow overriding via real environment variables.
    env_file = os.getenv("TELEMETRY_ENV_FILE", _default_env_file())
    if env_file and Path(env_file).exists():
        load_dotenv(env_file, override=False)

    database_url = os.getenv("DATABASE_URL", "sqlite:///./telemetry.db")

    # Misma clave simétrica con la que el servicio de usuarios firma los JWT.
    jwt_key = os.getenv("JWT_KEY") or None

    # Registro de dispositivos: archivo JSON o, en su defecto, un único ESP32.
    device_registry_file = os.getenv("DEVICE_REGISTRY_FILE") or None
    esp32_url = os.getenv("ESP32_URL") or None
    esp32_device_id = os.getenv("ESP32_DEVICE_ID", "esp32-01")

    return Settings(
        database_url=database_url,
        jwt_key=jwt_key,
        device_registry_file=device_registry_file,
        esp32_url=esp32_url,
        esp32_device_id=esp32_device_id,
        poll_interval_seconds=float(os.getenv("POLL_INTERVAL_SECONDS", "30")),
        device_timeout_seconds=float(os.getenv("DEVICE_TIMEOUT_SECONDS", "5")),
        device_failure_threshold=int(os.getenv("DEVICE_FAILURE_THRESHOLD", "3")),
        backoff_factor=float(os.getenv("BACKOFF_FACTOR", "2")),
        backoff_max_seconds=float(os.getenv("BACKOFF_MAX_SECONDS", "600")),
        scheduler_tick_seconds=float(os.getenv("SCHEDULER_TICK_SECONDS", "1")),
        scheduler_max_in_flight=int(os.getenv("SCHEDULER_MAX_IN_FLIGHT", "8")),
        scheduler_enabled=_env_bool("SCHEDULER_ENABLED", "true"),
    )
