"""Rangos físicos, unidades canónicas y conversiones por tipo de sensor."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, Optional

from ..core.domain import SensorType


@dataclass(frozen=True)
class PhysicalRange:
    """Rango físico del sensor (hard limits) en su unidad canónica."""

    min_value: float
    max_value: float
    unit: str

    def violates(self, value: float) -> bool:
        """Verifica si un valor viola el rango físico."""
        return value < self.min_value or value > self.max_value


# Límites de los sensores de suelo usados con el ESP32
# (capacitivo de humedad, DS18B20/DHT22, sonda de pH, EC, LDR/BH1750).
PHYSICAL_LIMITS: Dict[SensorType, PhysicalRange] = {
    SensorType.MOISTURE: PhysicalRange(0.0, 100.0, "%"),
    SensorType.TEMPERATURE: PhysicalRange(-40.0, 85.0, "°C"),
    SensorType.HUMIDITY: PhysicalRange(0.0, 100.0, "%"),
    SensorType.PH: PhysicalRange(0.0, 14.0, "pH"),
    SensorType.CONDUCTIVITY: PhysicalRange(0.0, 20000.0, "µS/cm"),
    SensorType.LIGHT: PhysicalRange(0.0, 200000.0, "lux"),
}

_TYPE_ALIASES: Dict[str, SensorType] = {
    "moisture": SensorType.MOISTURE,
    "soil_moisture": SensorType.MOISTURE,
    "umidade": SensorType.MOISTURE,
    "umidade_solo": SensorType.MOISTURE,
    "humedad_suelo": SensorType.MOISTURE,
    "temperature": SensorType.TEMPERATURE,
    "temp": SensorType.TEMPERATURE,
    "soil_temperature": SensorType.TEMPERATURE,
    "temperatura": SensorType.TEMPERATURE,
    "humidity": SensorType.HUMIDITY,
    "air_humidity": SensorType.HUMIDITY,
    "umidade_ar": SensorType.HUMIDITY,
    "ph": SensorType.PH,
    "conductivity": SensorType.CONDUCTIVITY,
    "ec": SensorType.CONDUCTIVITY,
    "condutividade": SensorType.CONDUCTIVITY,
    "light": SensorType.LIGHT,
    "luminosity": SensorType.LIGHT,
    "luminosidade": SensorType.LIGHT,
    "lux": SensorType.LIGHT,
}

_Conversion = Callable[[float], float]

# Unidad reportada (normalizada) -> conversión a la unidad canónica.
# None como unidad significa "no informada": se asume la canónica.
_UNIT_CONVERSIONS: Dict[SensorType, Dict[str, _Conversion]] = {
    SensorType.MOISTURE: {
        "%": lambda v: v,
        "percent": lambda v: v,
        "fraction": lambda v: v * 100.0,
    },
    SensorType.TEMPERATURE: {
        "°c": lambda v: v,
        "c": lambda v: v,
        "celsius": lambda v: v,
        "°f": lambda v: (v - 32.0) * 5.0 / 9.0,
        "f": lambda v: (v - 32.0) * 5.0 / 9.0,
        "fahrenheit": lambda v: (v - 32.0) * 5.0 / 9.0,
        "k": lambda v: v - 273.15,
        "kelvin": lambda v: v - 273.15,
    },
    SensorType.HUMIDITY: {
        "%": lambda v: v,
        "%rh": lambda v: v,
        "rh": lambda v: v,
        "percent": lambda v: v,
        "fraction": lambda v: v * 100.0,
    },
    SensorType.PH: {
        "ph": lambda v: v,
    },
    SensorType.CONDUCTIVITY: {
        "µs/cm": lambda v: v,
        "us/cm": lambda v: v,
        "ms/cm": lambda v: v * 1000.0,
        "ds/m": lambda v: v * 1000.0,
    },
    SensorType.LIGHT: {
        "lux": lambda v: v,
        "lx": lambda v: v,
        "klux": lambda v: v * 1000.0,
    },
}


def canonical_sensor_type(raw: Optional[str]) -> Optional[SensorType]:
    """Mapea el nombre reportado por el firmware a un SensorType, o None."""
    if not raw:
        return None
    key = raw.strip().lower().replace("-", "_").replace(" ", "_")
    return _TYPE_ALIASES.get(key)


def convert_to_canonical(sensor_type: SensorType, value: float, unit: Optional[str]) -> Optional[float]:
    """Convierte ``value`` a la unidad canónica del tipo.

    Returns:
        El valor convertido, o None si la unidad no es reconocida.
    """
    if unit is None or not unit.strip():
        return value
    key = unit.strip().lower().replace(" ", "")
    # "μ" (mu griego) y "µ" (micro) llegan indistintamente desde el firmware.
    key = key.replace("μ", "µ")
    conversion = _UNIT_CONVERSIONS.get(sensor_type, {}).get(key)
    if conversion is None:
        return None
    return conversion(value)
