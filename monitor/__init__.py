"""Monitoreo de pines GPIO y cableado del servicio."""

from .channel import ConsumerChannel
from .checkpoint import MidnightCheckpoint
from .gpio import SysfsGpio
from .pin_watcher import PinWatcher

__all__ = ["ConsumerChannel", "MidnightCheckpoint", "PinWatcher", "SysfsGpio"]
