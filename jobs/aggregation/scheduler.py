"""Scheduler asyncio de la agregación de runtimes.

Objeto explícito, propiedad del proceso: los canales se registran y se
quitan con llamadas de ciclo de vida, no con estado global.

Uso:
    scheduler = AggregationScheduler(aggregator, AggregationConfig())
    scheduler.register_channel("burner")
    await scheduler.start()
    ...
    await scheduler.stop()   # espera a que termine el tick en curso
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Dict, List, Optional

from consumer_runtime import metrics
from consumer_runtime.models import AggregationPassResult
from consumer_runtime.runtime_aggregator import RuntimeAggregator

from .config import AggregationConfig

logger = logging.getLogger(__name__)


@dataclass
class AggregationSchedulerStats:
    """Estadísticas del scheduler."""
    ticks_completed: int = 0
    ticks_skipped: int = 0
    passes_ok: int = 0
    passes_failed: int = 0
    last_tick_at: Optional[float] = None
    last_tick_ms: Optional[float] = None


class AggregationScheduler:
    """Ejecuta una pasada de agregación por canal cada `interval_seconds`.

    Los ticks nunca se solapan: si llega uno mientras otro corre, se
    descarta (sin cola). El trabajo es cooperativo en el event loop.
    """

    def __init__(
        self,
        aggregator: RuntimeAggregator,
        config: Optional[AggregationConfig] = None,
    ):
        self._aggregator = aggregator
        self._config = config or AggregationConfig()

        self._channels: Dict[str, None] = {}
        self._running = False
        self._tick_in_progress = False
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None
        self._stats = AggregationSchedulerStats()

    @property
    def running(self) -> bool:
        return self._running

    @property
    def channels(self) -> List[str]:
        return list(self._channels)

    @property
    def tick_in_progress(self) -> bool:
        return self._tick_in_progress

    def register_channel(self, channel_id: str) -> None:
        if channel_id not in self._channels:
            self._channels[channel_id] = None
            logger.info("[AGG] registered channel=%s", channel_id)

    def unregister_channel(self, channel_id: str) -> None:
        if channel_id in self._channels:
            del self._channels[channel_id]
            logger.info("[AGG] unregistered channel=%s", channel_id)

    async def start(self) -> None:
        """Inicia el loop en background."""
        if self._running:
            return
        self._running = True
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run_loop(), name="aggregation-scheduler")
        logger.info(
            "[AGG] scheduler started interval=%.1fs limit=%d intervals=%s",
            self._config.interval_seconds,
            self._config.batch_limit,
            ",".join(i.value for i in self._config.intervals),
        )

    async def stop(self) -> None:
        """Detiene el loop; un tick en curso termina antes de retornar."""
        if not self._running:
            return
        self._running = False
        if self._stop_event is not None:
            self._stop_event.set()
        if self._task is not None:
            await self._task
            self._task = None
        logger.info("[AGG] scheduler stopped %s", self.get_stats())

    async def _run_loop(self) -> None:
        while self._running:
            try:
                await self.tick()
            except Exception:
                logger.exception("[AGG] tick failed")
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._config.interval_seconds)
            except asyncio.TimeoutError:
                pass

    async def tick(self) -> Optional[List[AggregationPassResult]]:
        """Una pasada por cada canal registrado. None si se descartó."""
        if self._tick_in_progress:
            self._stats.ticks_skipped += 1
            metrics.AGGREGATION_TICKS_SKIPPED.inc()
            logger.debug("[AGG] tick skipped: previous tick still running")
            return None

        self._tick_in_progress = True
        t0 = time.monotonic()
        results: List[AggregationPassResult] = []
        try:
            for channel_id in list(self._channels):
                results.append(await self.run_aggregation_pass(channel_id))
        finally:
            self._tick_in_progress = False

        self._stats.ticks_completed += 1
        self._stats.last_tick_at = time.time()
        self._stats.last_tick_ms = (time.monotonic() - t0) * 1000
        failed = sum(1 for r in results if not r.ok)
        logger.debug(
            "[AGG] tick ms=%.1f channels=%d failed=%d",
            self._stats.last_tick_ms, len(results), failed,
        )
        return results

    async def run_aggregation_pass(self, channel_id: str) -> AggregationPassResult:
        """Pasada para un canal; cede el loop al terminar."""
        result = self._aggregator.run_aggregation_pass(channel_id, self._config.batch_limit)
        if result.ok:
            self._stats.passes_ok += 1
        else:
            self._stats.passes_failed += 1
        await asyncio.sleep(0)
        return result

    def get_stats(self) -> dict:
        """Estadísticas del scheduler."""
        return {
            "running": self._running,
            "channels": self.channels,
            "ticks_completed": self._stats.ticks_completed,
            "ticks_skipped": self._stats.ticks_skipped,
            "passes_ok": self._stats.passes_ok,
            "passes_failed": self._stats.passes_failed,
            "last_tick_at": self._stats.last_tick_at,
            "last_tick_ms": self._stats.last_tick_ms,
            "config": {
                "interval_seconds": self._config.interval_seconds,
                "batch_limit": self._config.batch_limit,
                "intervals": [i.value for i in self._config.intervals],
            },
        }
