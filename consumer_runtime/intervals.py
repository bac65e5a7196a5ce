"""Intervalos de agregación soportados."""

from __future__ import annotations

from enum import Enum
from typing import Any

from .errors import InvalidAggregationIntervalError


class AggregationInterval(str, Enum):
    HOURLY = "HOURLY"
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    YEARLY = "YEARLY"


def parse_interval(value: Any) -> AggregationInterval:
    """Convierte un valor de configuración en AggregationInterval.

    Acepta el enum o su nombre sin importar mayúsculas ("hourly" del
    sistema original incluido).

    Raises:
        InvalidAggregationIntervalError: si el valor no es un intervalo conocido.
    """
    if isinstance(value, AggregationInterval):
        return value
    if isinstance(value, str):
        try:
            return AggregationInterval(value.strip().upper())
        except ValueError:
            pass
    raise InvalidAggregationIntervalError(value)
