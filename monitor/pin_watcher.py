"""Polling asyncio de pines GPIO.

Cada pin tiene su propia tarea; los handlers se esperan en línea, así las
observaciones de un mismo pin se procesan en orden de llegada.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Dict, List, Optional

from consumer_runtime.errors import GpioReadError
from consumer_runtime.models import PinState

from .gpio import SysfsGpio

logger = logging.getLogger(__name__)

StateHandler = Callable[[PinState], Awaitable[None]]


class PinWatcher:
    """Emite el estado inicial y cada cambio de los pines registrados."""

    DEFAULT_POLL_INTERVAL = 0.05

    def __init__(self, gpio: SysfsGpio, poll_interval_seconds: float = DEFAULT_POLL_INTERVAL):
        self._gpio = gpio
        self._poll_interval = poll_interval_seconds
        self._handlers: Dict[int, List[StateHandler]] = {}
        self._tasks: Dict[int, asyncio.Task] = {}
        self._running = False
        self._stop_event: Optional[asyncio.Event] = None

    @property
    def running(self) -> bool:
        return self._running

    def watch(self, gpio_number: int, handler: StateHandler) -> None:
        """Registra un handler; si el watcher ya corre, empieza a leer el pin."""
        self._handlers.setdefault(gpio_number, []).append(handler)
        if self._running and gpio_number not in self._tasks:
            self._spawn(gpio_number)

    def _spawn(self, gpio_number: int) -> None:
        self._tasks[gpio_number] = asyncio.create_task(
            self._poll_pin(gpio_number), name=f"gpio-{gpio_number}",
        )
        logger.debug("[GPIO] watching %s", self._gpio.value_path(gpio_number))

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._stop_event = asyncio.Event()
        for gpio_number in self._handlers:
            self._spawn(gpio_number)
        logger.info("[GPIO] watcher started pins=%s poll=%.3fs", sorted(self._handlers), self._poll_interval)

    async def stop(self) -> None:
        """Detiene el polling; un handler en curso termina antes."""
        if not self._running:
            return
        self._running = False
        if self._stop_event is not None:
            self._stop_event.set()
        tasks = list(self._tasks.values())
        self._tasks.clear()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("[GPIO] watcher stopped")

    async def _poll_pin(self, gpio_number: int) -> None:
        last_state: Optional[PinState] = None
        last_error: Optional[str] = None

        while self._running:
            try:
                state = self._gpio.read(gpio_number)
            except GpioReadError as e:
                if str(e) != last_error:
                    logger.warning("[GPIO] read failed pin=%d: %s", gpio_number, e)
                    last_error = str(e)
            else:
                last_error = None
                if state != last_state and await self._notify(gpio_number, state):
                    last_state = state

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._poll_interval)
            except asyncio.TimeoutError:
                pass

    async def _notify(self, gpio_number: int, state: PinState) -> bool:
        """Llama a los handlers; False si alguno falló (se reintenta en el próximo poll)."""
        logger.debug("[GPIO] pin=%d state=%s", gpio_number, state.name)
        delivered = True
        for handler in self._handlers.get(gpio_number, []):
            try:
                await handler(state)
            except Exception:
                logger.exception("[GPIO] handler failed pin=%d state=%s", gpio_number, state.name)
                delivered = False
        return delivered
