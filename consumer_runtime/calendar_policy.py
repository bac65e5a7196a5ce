"""Política de calendario explícita para alinear buckets.

Reemplaza la dependencia de la zona horaria del sistema: la zona y el
primer día de la semana se inyectan, así los tests son deterministas.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any
from zoneinfo import ZoneInfo

from .errors import InvalidAggregationIntervalError
from .intervals import AggregationInterval

MS_PER_HOUR = 60 * 60 * 1000

SUNDAY = 6  # datetime.weekday(): lunes=0 ... domingo=6


def _to_ms(dt: datetime) -> int:
    return int(dt.timestamp()) * 1000


@dataclass(frozen=True)
class CalendarPolicy:
    """Trunca timestamps al inicio de su bucket en una zona horaria dada.

    Attributes:
        timezone: nombre IANA ("UTC", "Europe/Berlin", ...)
        week_start: día en que empieza la semana (0=lunes, 6=domingo)
    """

    timezone: str = "UTC"
    week_start: int = SUNDAY
    _tz: Any = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if not 0 <= self.week_start <= 6:
            raise ValueError(f"week_start must be 0..6, got {self.week_start}")
        object.__setattr__(self, "_tz", ZoneInfo(self.timezone))

    def to_datetime(self, ts_ms: int) -> datetime:
        """Hora local (aware) de un epoch ms."""
        return datetime.fromtimestamp(ts_ms // 1000, tz=timezone.utc).astimezone(self._tz)

    def _local_midnight(self, year: int, month: int, day: int) -> datetime:
        return datetime(year, month, day, tzinfo=self._tz)

    def bucket_start(self, interval: AggregationInterval, ts_ms: int) -> int:
        """Inicio del bucket que contiene ts_ms (getLastIntervalStart).

        Raises:
            InvalidAggregationIntervalError: intervalo desconocido.
        """
        local = self.to_datetime(ts_ms)

        if interval == AggregationInterval.HOURLY:
            # replace() conserva fold: la hora repetida del cambio de horario
            # produce dos buckets distintos.
            start = local.replace(minute=0, second=0, microsecond=0)
        elif interval == AggregationInterval.DAILY:
            start = self._local_midnight(local.year, local.month, local.day)
        elif interval == AggregationInterval.WEEKLY:
            offset = (local.weekday() - self.week_start) % 7
            day = local.date() - timedelta(days=offset)
            start = self._local_midnight(day.year, day.month, day.day)
        elif interval == AggregationInterval.MONTHLY:
            start = self._local_midnight(local.year, local.month, 1)
        elif interval == AggregationInterval.YEARLY:
            start = self._local_midnight(local.year, 1, 1)
        else:
            raise InvalidAggregationIntervalError(interval)

        return _to_ms(start)

    def next_bucket_start(self, interval: AggregationInterval, bucket_start_ms: int) -> int:
        """Inicio del bucket siguiente a uno ya alineado."""
        if interval == AggregationInterval.HOURLY:
            # Realinear: con cambios de horario de 30 min la hora local no
            # cae en hora UTC entera.
            return self.bucket_start(interval, bucket_start_ms + MS_PER_HOUR)

        local = self.to_datetime(bucket_start_ms)
        if interval == AggregationInterval.DAILY:
            day = local.date() + timedelta(days=1)
            nxt = self._local_midnight(day.year, day.month, day.day)
        elif interval == AggregationInterval.WEEKLY:
            day = local.date() + timedelta(days=7)
            nxt = self._local_midnight(day.year, day.month, day.day)
        elif interval == AggregationInterval.MONTHLY:
            if local.month == 12:
                nxt = self._local_midnight(local.year + 1, 1, 1)
            else:
                nxt = self._local_midnight(local.year, local.month + 1, 1)
        elif interval == AggregationInterval.YEARLY:
            nxt = self._local_midnight(local.year + 1, 1, 1)
        else:
            raise InvalidAggregationIntervalError(interval)

        return _to_ms(nxt)

    def next_local_midnight(self, ts_ms: int) -> int:
        """Primera medianoche local estrictamente posterior a ts_ms."""
        today = self.bucket_start(AggregationInterval.DAILY, ts_ms)
        return self.next_bucket_start(AggregationInterval.DAILY, today)


UTC_CALENDAR = CalendarPolicy()
