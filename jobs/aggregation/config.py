"""Configuración del job de agregación."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Tuple

from consumer_runtime.intervals import AggregationInterval, parse_interval


def _intervals_from_env(raw: str) -> Tuple[AggregationInterval, ...]:
    return tuple(parse_interval(part) for part in raw.split(",") if part.strip())


@dataclass(frozen=True)
class AggregationConfig:
    """Configuración del scheduler de agregación."""
    interval_seconds: float = 60.0
    batch_limit: int = 100
    intervals: Tuple[AggregationInterval, ...] = field(
        default_factory=lambda: (AggregationInterval.HOURLY,)
    )

    @classmethod
    def from_env(cls) -> "AggregationConfig":
        return cls(
            interval_seconds=float(os.getenv("AGGREGATION_INTERVAL_SEC", "60")),
            batch_limit=int(os.getenv("AGGREGATION_BATCH_LIMIT", "100")),
            intervals=_intervals_from_env(os.getenv("AGGREGATION_INTERVALS", "HOURLY")),
        )

    @classmethod
    def from_settings(cls, settings) -> "AggregationConfig":
        """Desde common.config.AggregationSettings."""
        return cls(
            interval_seconds=settings.interval_seconds,
            batch_limit=settings.batch_limit,
            intervals=tuple(settings.intervals),
        )
