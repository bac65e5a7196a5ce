"""Lectura de pines GPIO vía sysfs."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

from consumer_runtime.errors import GpioReadError
from consumer_runtime.models import PinState

logger = logging.getLogger(__name__)

DEFAULT_BASE_PATH = "/sys/class"


class SysfsGpio:
    """Lee `<base>/gpio/gpio<N>/value`; cualquier byte distinto de '0' es HIGH."""

    def __init__(self, base_path: Optional[str] = None):
        base = base_path or os.getenv("GPIO_BASE_PATH") or DEFAULT_BASE_PATH
        self._gpio_path = Path(base) / "gpio"

    def value_path(self, gpio_number: int) -> Path:
        return self._gpio_path / f"gpio{gpio_number}" / "value"

    def read(self, gpio_number: int) -> PinState:
        path = self.value_path(gpio_number)
        try:
            with open(path, "rb") as fh:
                raw = fh.read(1)
        except OSError as e:
            raise GpioReadError(str(path), e) from e

        try:
            value = int(raw.decode("ascii"))
        except (UnicodeDecodeError, ValueError) as e:
            raise GpioReadError(str(path), e) from e
        return PinState.HIGH if value else PinState.LOW
