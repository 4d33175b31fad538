"""Carga del registro de dispositivos y umbrales de cultivo.

Formato del archivo (``DEVICE_REGISTRY_FILE``):

    {
        "devices": [
            {"id": "esp32-solo-01", "url": "http://192.168.0.50/leituras",
             "method": "GET", "poll_interval_seconds": 30, "crop": "tomate"}
        ],
        "crops": {
            "tomate": {"moisture": {"min": 60, "max": 80}, "ph": {"min": 5.5, "max": 6.8}}
        }
    }

Sin archivo se registra un único ESP32 desde ``ESP32_URL``.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import AliasChoices, BaseModel, Field, ValidationError, field_validator, model_validator

from common.config import Settings

from ..core.domain import CropThreshold, CropThresholds, Device
from ..normalization.physical_ranges import canonical_sensor_type

logger = logging.getLogger(__name__)


class ConfigError(ValueError):
    """Configuración de dispositivos inválida."""


class DeviceConfigIn(BaseModel):
    id: str = Field(..., min_length=1, validation_alias=AliasChoices("id", "device_id"))
    url: str
    method: str = "GET"
    poll_interval_seconds: Optional[float] = Field(default=None, gt=0)
    crop: Optional[str] = None

    @field_validator("url")
    @classmethod
    def validate_url(cls, v):
        v = v.strip()
        if not (v.startswith("http://") or v.startswith("https://")):
            raise ValueError("url must be http:// or https://")
        return v

    @field_validator("method")
    @classmethod
    def validate_method(cls, v):
        v = v.strip().upper()
        if v not in ("GET", "POST"):
            raise ValueError("method must be GET or POST")
        return v

    def to_device(self) -> Device:
        return Device(
            device_id=self.id,
            url=self.url,
            method=self.method,
            poll_interval_seconds=self.poll_interval_seconds,
            crop=self.crop,
        )


class ThresholdIn(BaseModel):
    min: Optional[float] = None
    max: Optional[float] = None

    @model_validator(mode="after")
    def check_bounds(self):
        if self.min is not None and self.max is not None and self.min > self.max:
            raise ValueError("min must be <= max")
        return self


class RegistryFileIn(BaseModel):
    devices: List[DeviceConfigIn] = Field(default_factory=list)
    crops: Dict[str, Dict[str, ThresholdIn]] = Field(default_factory=dict)


@dataclass
class RegistryConfig:
    devices: List[Device] = field(default_factory=list)
    crops: CropThresholds = field(default_factory=dict)


def parse_registry(data: dict) -> RegistryConfig:
    """Valida el contenido del registro ya decodificado."""
    try:
        parsed = RegistryFileIn.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid device registry: {e}") from e

    ids = [d.id for d in parsed.devices]
    duplicates = sorted({i for i in ids if ids.count(i) > 1})
    if duplicates:
        raise ConfigError(f"Duplicate device ids: {duplicates}")

    crops: CropThresholds = {}
    for crop_name, sensors in parsed.crops.items():
        thresholds = {}
        for raw_type, thr in sensors.items():
            sensor_type = canonical_sensor_type(raw_type)
            if sensor_type is None:
                raise ConfigError(f"Unknown sensor type '{raw_type}' in crop '{crop_name}'")
            thresholds[sensor_type] = CropThreshold(min_value=thr.min, max_value=thr.max)
        crops[crop_name] = thresholds

    for d in parsed.devices:
        if d.crop and d.crop not in crops:
            logger.warning("[CONFIG] Device %s references crop without thresholds: %s", d.id, d.crop)

    return RegistryConfig(devices=[d.to_device() for d in parsed.devices], crops=crops)


def load_registry_config(settings: Settings) -> RegistryConfig:
    """Carga el registro desde archivo o, en su defecto, desde ESP32_URL."""
    if settings.device_registry_file:
        path = Path(settings.device_registry_file)
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError as e:
            raise ConfigError(f"Device registry file not found: {path}") from e
        except json.JSONDecodeError as e:
            raise ConfigError(f"Device registry is not valid JSON: {path}: {e.msg}") from e

        config = parse_registry(data)
        logger.info(
            "[CONFIG] Registry loaded file=%s devices=%d crops=%d",
            path, len(config.devices), len(config.crops),
        )
        return config

    if settings.esp32_url:
        config = parse_registry(
            {"devices": [{"id": settings.esp32_device_id, "url": settings.esp32_url}]}
        )
        logger.info("[CONFIG] Single device from ESP32_URL id=%s", settings.esp32_device_id)
        return config

    logger.warning("[CONFIG] No DEVICE_REGISTRY_FILE nor ESP32_URL configured - nothing to poll")
    return RegistryConfig()
