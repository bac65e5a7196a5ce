"""Proceso de monitoreo: pines -> estados -> runtimes -> agregados.

Todo corre en un único event loop. Al detenerse, los loops se paran en
orden inverso y el tick de agregación en curso termina antes de cerrar
el engine.
"""

from __future__ import annotations

import asyncio
import logging
import signal
from typing import Callable, Dict, Optional

from common.config import ServiceConfig
from common.db import create_sqlite_engine
from consumer_runtime.calendar_policy import CalendarPolicy
from consumer_runtime.persistence import SqlConsumerRepository, ensure_schema
from consumer_runtime.runtime_aggregator import RuntimeAggregator
from consumer_runtime.state_tracker import StateTracker, epoch_ms
from jobs.aggregation import AggregationConfig, AggregationScheduler
from jobs.export import CsvExporter, CsvExportLoop

from .channel import ConsumerChannel
from .checkpoint import MidnightCheckpoint
from .gpio import SysfsGpio
from .pin_watcher import PinWatcher

logger = logging.getLogger(__name__)


class ConsumerMonitorService:
    def __init__(self, config: ServiceConfig, clock: Callable[[], int] = epoch_ms):
        self.config = config
        self.engine = create_sqlite_engine(config.database.file_path)
        ensure_schema(self.engine)
        self.repository = SqlConsumerRepository(self.engine)
        self.calendar = CalendarPolicy(timezone=config.timezone, week_start=config.week_start)
        self.tracker = StateTracker(self.repository, clock=clock)

        agg_cfg = AggregationConfig.from_settings(config.aggregation)
        self.aggregator = RuntimeAggregator(
            self.repository,
            calendar=self.calendar,
            intervals=agg_cfg.intervals,
            batch_limit=agg_cfg.batch_limit,
        )
        self.scheduler = AggregationScheduler(self.aggregator, agg_cfg)
        self.watcher = PinWatcher(SysfsGpio(config.gpio_base_path), config.poll_interval_seconds)

        self.channels: Dict[str, ConsumerChannel] = {}
        for name, consumer in config.consumers.items():
            channel = ConsumerChannel(name=name, gpio=consumer.gpio, tracker=self.tracker)
            self.channels[name] = channel
            self.watcher.watch(consumer.gpio, channel.handle_state_change)
            self.scheduler.register_channel(name)

        self.checkpoint: Optional[MidnightCheckpoint] = None
        if config.checkpoint_midnight:
            self.checkpoint = MidnightCheckpoint(
                self.tracker, self.calendar, lambda: self.scheduler.channels, clock=clock,
            )

        self.export_loop: Optional[CsvExportLoop] = None
        if config.export.enabled:
            exporter = CsvExporter(
                self.repository,
                directory=config.export.directory,
                interval=config.export.interval,
                calendar=self.calendar,
                clock=clock,
            )
            self.export_loop = CsvExportLoop(exporter, config.export.check_seconds)

        self._api_server = None
        self._api_task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None

    async def start(self) -> None:
        self._stop_event = asyncio.Event()
        await self.watcher.start()
        await self.scheduler.start()
        if self.checkpoint is not None:
            await self.checkpoint.start()
        if self.export_loop is not None:
            await self.export_loop.start()
        if self.config.api.enabled:
            self._start_api()
        logger.info(
            "[MONITOR] started consumers=%s db=%s timezone=%s",
            ",".join(self.channels), self.config.database.file_path, self.config.timezone,
        )

    def _start_api(self) -> None:
        import uvicorn

        from runtime_api.main import create_app

        app = create_app(self.repository, self.aggregator, self.scheduler)
        self._api_server = uvicorn.Server(uvicorn.Config(
            app,
            host=self.config.api.host,
            port=self.config.api.port,
            log_level=self.config.log_level.lower(),
        ))
        self._api_task = asyncio.create_task(self._api_server.serve(), name="runtime-api")
        # uvicorn captura SIGINT/SIGTERM mientras sirve; su salida detiene el servicio.
        self._api_task.add_done_callback(lambda _task: self.request_stop())
        logger.info("[MONITOR] api listening on %s:%d", self.config.api.host, self.config.api.port)

    def request_stop(self) -> None:
        if self._stop_event is not None and not self._stop_event.is_set():
            logger.info("[MONITOR] stop requested")
            self._stop_event.set()

    async def stop(self) -> None:
        await self.watcher.stop()
        if self.checkpoint is not None:
            await self.checkpoint.stop()
        if self.export_loop is not None:
            await self.export_loop.stop()
        await self.scheduler.stop()
        if self._api_server is not None:
            self._api_server.should_exit = True
            await asyncio.gather(self._api_task, return_exceptions=True)
            self._api_server = None
            self._api_task = None
        self.engine.dispose()
        logger.info("[MONITOR] stopped")

    async def run(self) -> None:
        """Corre hasta SIGINT/SIGTERM (o `request_stop`)."""
        await self.start()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.request_stop)
            except NotImplementedError:
                logger.warning("[MONITOR] signal handlers not supported; use Ctrl+C")
                break
        try:
            await self._stop_event.wait()
        finally:
            for sig in (signal.SIGINT, signal.SIGTERM):
                try:
                    loop.remove_signal_handler(sig)
                except NotImplementedError:
                    break
            await self.stop()
