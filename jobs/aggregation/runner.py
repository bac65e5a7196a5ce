"""Ciclo del job de agregación standalone."""

from __future__ import annotations

import logging
import time
from typing import Optional, Sequence

from consumer_runtime.calendar_policy import CalendarPolicy
from consumer_runtime.persistence import SqlConsumerRepository
from consumer_runtime.runtime_aggregator import RuntimeAggregator

from .config import AggregationConfig

logger = logging.getLogger(__name__)


def build_aggregator(
    repository: SqlConsumerRepository,
    cfg: AggregationConfig,
    calendar: Optional[CalendarPolicy] = None,
) -> RuntimeAggregator:
    return RuntimeAggregator(
        repository,
        calendar=calendar or CalendarPolicy(),
        intervals=cfg.intervals,
        batch_limit=cfg.batch_limit,
    )


def run_once(
    repository: SqlConsumerRepository,
    aggregator: RuntimeAggregator,
    channels: Optional[Sequence[str]] = None,
) -> dict:
    """Una pasada por canal. Sin canales explícitos, usa los que tienen pendientes."""
    channel_ids = list(channels) if channels else repository.list_channels_with_unaggregated()

    t0 = time.monotonic()
    ok, failed, aggregated = 0, 0, 0
    for channel_id in channel_ids:
        result = aggregator.run_aggregation_pass(channel_id)
        if result.ok:
            ok += 1
            aggregated += result.runtimes_aggregated
        else:
            failed += 1
            logger.error("aggregation_channel_failed channel=%s err=%s", channel_id, result.error)

    cycle_ms = (time.monotonic() - t0) * 1000
    logger.info(
        "aggregation_cycle ms=%.1f channels=%d ok=%d fail=%d runtimes=%d",
        cycle_ms, len(channel_ids), ok, failed, aggregated,
    )
    return {
        "channels": len(channel_ids),
        "ok": ok,
        "failed": failed,
        "runtimes_aggregated": aggregated,
        "cycle_ms": cycle_ms,
    }
