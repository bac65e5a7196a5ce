"""Checkpoint diario de runtimes abiertos a medianoche local."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Iterable, List, Optional

from consumer_runtime.calendar_policy import CalendarPolicy
from consumer_runtime.models import ObservationResult
from consumer_runtime.state_tracker import StateTracker, epoch_ms

logger = logging.getLogger(__name__)

# Margen tras medianoche: el timer puede dispararse un poco antes.
DEFAULT_MARGIN_SECONDS = 30.0


class MidnightCheckpoint:
    """Cierra y reabre los runtimes HIGH de cada canal en la medianoche local."""

    def __init__(
        self,
        tracker: StateTracker,
        calendar: CalendarPolicy,
        channels: Callable[[], Iterable[str]],
        margin_seconds: float = DEFAULT_MARGIN_SECONDS,
        clock: Callable[[], int] = epoch_ms,
    ):
        self._tracker = tracker
        self._calendar = calendar
        self._channels = channels
        self._margin = margin_seconds
        self._clock = clock
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None

    def run_checkpoint(self, boundary: int) -> List[ObservationResult]:
        results = []
        for channel_id in list(self._channels()):
            try:
                results.append(self._tracker.checkpoint_open_runtime(channel_id, boundary))
            except Exception:
                logger.exception("[CHECKPOINT] failed channel=%s boundary=%d", channel_id, boundary)
        closed = sum(1 for r in results if r.runtime is not None)
        logger.info("[CHECKPOINT] boundary=%d channels=%d closed=%d", boundary, len(results), closed)
        return results

    def seconds_until_next(self) -> tuple[int, float]:
        now = self._clock()
        boundary = self._calendar.next_local_midnight(now)
        return boundary, max(0.0, (boundary - now) / 1000 + self._margin)

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run_loop(), name="midnight-checkpoint")
        logger.info("[CHECKPOINT] started timezone=%s", self._calendar.timezone)

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        if self._stop_event is not None:
            self._stop_event.set()
        if self._task is not None:
            await self._task
            self._task = None
        logger.info("[CHECKPOINT] stopped")

    async def _run_loop(self) -> None:
        while self._running:
            boundary, delay = self.seconds_until_next()
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
                return
            except asyncio.TimeoutError:
                pass
            self.run_checkpoint(boundary)
