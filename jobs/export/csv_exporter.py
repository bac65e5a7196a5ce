"""Exportación periódica a CSV de estados, runtimes y agregados.

Las ventanas se alinean a los buckets del calendario (HOURLY, DAILY, ...)
y sólo se exportan ventanas completas y asentadas: ningún runtime que empiece
antes del fin de la ventana sigue abierto o sin agregar. El archivo `.status`
guarda el fin de la última ventana exportada; una ventana que falla no se
registra y se reintenta en la siguiente ejecución.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Callable, List, Optional, Tuple

import pandas as pd

from consumer_runtime.calendar_policy import UTC_CALENDAR, CalendarPolicy
from consumer_runtime.intervals import AggregationInterval
from consumer_runtime.persistence import ReportingRepository
from consumer_runtime.state_tracker import epoch_ms

logger = logging.getLogger(__name__)

STATUS_FILE = ".status"

STATE_COLUMNS = ["channel_id", "changed_at_iso", "changed_at", "state"]
RUNTIME_COLUMNS = [
    "channel_id", "started_at_iso", "started_at", "stopped_at_iso", "stopped_at",
    "duration_seconds", "is_aggregated",
]
AGGREGATE_COLUMNS = ["channel_id", "bucket_start_iso", "bucket_start", "interval", "duration_seconds"]

Window = Tuple[int, int]


class CsvExporter:
    """Exporta las tablas del pipeline por ventana de `interval`."""

    def __init__(
        self,
        repository: ReportingRepository,
        directory: Optional[str] = None,
        interval: AggregationInterval = AggregationInterval.DAILY,
        calendar: CalendarPolicy = UTC_CALENDAR,
        clock: Callable[[], int] = epoch_ms,
    ):
        self._repo = repository
        self._directory = Path(directory or os.getenv("FILE_EXPORT_BASE_PATH", "/app/data/exports"))
        self._interval = AggregationInterval(interval)
        self._calendar = calendar
        self._clock = clock

    @property
    def directory(self) -> Path:
        return self._directory

    @property
    def status_path(self) -> Path:
        return self._directory / STATUS_FILE

    def read_status(self) -> Optional[int]:
        """Fin (epoch ms) de la última ventana exportada, o None."""
        if not self.status_path.exists():
            return None
        with open(self.status_path, "r", encoding="utf-8") as fh:
            data = json.load(fh)
        value = data.get("last_export_end")
        return int(value) if value is not None else None

    def write_status(self, window_end: int) -> None:
        self._directory.mkdir(parents=True, exist_ok=True)
        payload = {
            "last_export_end": window_end,
            "last_export_end_iso": self._iso(window_end),
            "interval": self._interval.value,
        }
        tmp = self.status_path.with_suffix(".tmp")
        with open(tmp, "w", encoding="utf-8") as fh:
            json.dump(payload, fh)
        os.replace(tmp, self.status_path)

    def window_settled(self, end: int) -> bool:
        """True si los runtimes y agregados de todo lo anterior a `end` son definitivos."""
        return (
            self._repo.count_open_before(end) == 0
            and self._repo.count_unaggregated_before(end) == 0
        )

    def pending_windows(self, now: Optional[int] = None, limit: Optional[int] = None) -> List[Window]:
        """Ventanas completas (end <= now) y asentadas, aún no exportadas.

        Con `limit` devuelve como máximo esa cantidad (las más antiguas).
        """
        now = self._clock() if now is None else now

        start = self.read_status()
        if start is None:
            first = self._repo.get_first_state()
            if first is None:
                return []
            start = self._calendar.bucket_start(self._interval, first.changed_at)

        windows: List[Window] = []
        while True:
            end = self._calendar.next_bucket_start(self._interval, start)
            if end > now:
                return windows
            if not self.window_settled(end):
                logger.debug(
                    "[EXPORT] window ending %s waiting for open or unaggregated runtimes",
                    self._iso(end),
                )
                return windows
            windows.append((start, end))
            if limit is not None and len(windows) >= limit:
                return windows
            start = end

    def export_window(self, start: int, end: int) -> List[Path]:
        """Escribe los CSV de una ventana [start, end). Devuelve los archivos escritos."""
        self._directory.mkdir(parents=True, exist_ok=True)
        label = self._calendar.to_datetime(start).strftime("%Y%m%dT%H%M%S")

        frames = {
            "consumer_states": self._states_frame(start, end),
            "consumer_runtimes": self._runtimes_frame(start, end),
            "consumer_runtime_aggregates": self._aggregates_frame(start, end),
        }

        written: List[Path] = []
        for table, df in frames.items():
            if df.empty:
                continue
            path = self._directory / f"{table}_{label}_{self._interval.value}.csv"
            df.to_csv(path, index=False)
            written.append(path)

        logger.info(
            "[EXPORT] window=%s..%s files=%d",
            self._iso(start), self._iso(end), len(written),
        )
        return written

    def export_and_record(self, start: int, end: int) -> List[Path]:
        written = self.export_window(start, end)
        self.write_status(end)
        return written

    def run_once(self, now: Optional[int] = None) -> List[Path]:
        """Exporta todas las ventanas pendientes, registrando cada una al terminar."""
        written: List[Path] = []
        for start, end in self.pending_windows(now):
            written.extend(self.export_and_record(start, end))
        return written

    def _iso(self, ts_ms: int) -> str:
        return self._calendar.to_datetime(ts_ms).isoformat()

    def _states_frame(self, start: int, end: int) -> pd.DataFrame:
        rows = [
            {
                "channel_id": s.channel_id,
                "changed_at_iso": self._iso(s.changed_at),
                "changed_at": s.changed_at,
                "state": s.state.name,
            }
            for s in self._repo.list_states(from_ts=start, to_ts=end)
        ]
        return pd.DataFrame(rows, columns=STATE_COLUMNS)

    def _runtimes_frame(self, start: int, end: int) -> pd.DataFrame:
        rows = [
            {
                "channel_id": r.channel_id,
                "started_at_iso": self._iso(r.started_at),
                "started_at": r.started_at,
                "stopped_at_iso": self._iso(r.stopped_at),
                "stopped_at": r.stopped_at,
                "duration_seconds": r.duration_seconds,
                "is_aggregated": bool(r.is_aggregated),
            }
            for r in self._repo.list_runtimes(from_ts=start, to_ts=end)
        ]
        return pd.DataFrame(rows, columns=RUNTIME_COLUMNS)

    def _aggregates_frame(self, start: int, end: int) -> pd.DataFrame:
        rows = [
            {
                "channel_id": a.channel_id,
                "bucket_start_iso": self._iso(a.bucket_start),
                "bucket_start": a.bucket_start,
                "interval": a.interval.value,
                "duration_seconds": a.duration_seconds,
            }
            for a in self._repo.list_aggregates(from_ts=start, to_ts=end)
        ]
        return pd.DataFrame(rows, columns=AGGREGATE_COLUMNS)


class CsvExportLoop:
    """Exporta las ventanas pendientes cada `check_seconds` en el event loop.

    Procesa como máximo `max_windows_per_check` ventanas por chequeo y cede
    el loop entre una y otra, así un backlog largo no frena el polling de pines.
    """

    def __init__(self, exporter: CsvExporter, check_seconds: float = 60.0, max_windows_per_check: int = 24):
        self._exporter = exporter
        self._check_seconds = check_seconds
        self._max_windows = max_windows_per_check
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run_loop(), name="csv-export")
        logger.info("[EXPORT] started directory=%s every=%.1fs", self._exporter.directory, self._check_seconds)

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        if self._stop_event is not None:
            self._stop_event.set()
        if self._task is not None:
            await self._task
            self._task = None
        logger.info("[EXPORT] stopped")

    async def check(self) -> int:
        """Un chequeo: exporta hasta `max_windows_per_check` ventanas. Devuelve cuántas."""
        exported = 0
        for start, end in self._exporter.pending_windows(limit=self._max_windows):
            self._exporter.export_and_record(start, end)
            exported += 1
            await asyncio.sleep(0)
            if not self._running:
                break
        return exported

    async def _run_loop(self) -> None:
        while self._running:
            try:
                await self.check()
            except Exception:
                logger.exception("[EXPORT] run failed; retrying next check")
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._check_seconds)
            except asyncio.TimeoutError:
                pass
