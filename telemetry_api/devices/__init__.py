"""Dispositivos ESP32: cliente HTTP, registro y configuración."""

from .client import DeviceClient, FetchResult
from .config_loader import ConfigError, RegistryConfig, load_registry_config, parse_registry
from .registry import DeviceRegistry, UnknownDevice

__all__ = [
    "ConfigError",
    "DeviceClient",
    "DeviceRegistry",
    "FetchResult",
    "RegistryConfig",
    "UnknownDevice",
    "load_registry_config",
    "parse_registry",
]
