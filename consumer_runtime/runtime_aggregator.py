"""Agregador de runtimes en buckets de tiempo fijos.

Una pasada por canal:
1. Lee hasta `batch_limit` runtimes no agregados (del más antiguo al más nuevo)
2. Divide cada runtime en porciones alineadas al bucket de cada intervalo
3. Acumula las porciones por bucket (partiendo del agregado existente)
4. Confirma en UNA transacción los upserts aditivos y la marca is_aggregated

Si el batch falla nada queda visible: los runtimes siguen sin agregar y se
reintentan en el siguiente tick. Por eso la pasada es idempotente.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

from . import metrics
from .calendar_policy import UTC_CALENDAR, CalendarPolicy
from .errors import InvalidAggregationIntervalError
from .intervals import AggregationInterval
from .models import (
    AggregationPassResult,
    ConsumerRuntime,
    ConsumerRuntimeAggregate,
    PassStatus,
)
from .persistence.contracts import (
    BatchOperation,
    ConsumerRepository,
    MarkRuntimeAggregated,
    UpsertAggregate,
)
from .runtime_splitter import split_runtimes

logger = logging.getLogger(__name__)


@dataclass
class BucketAccumulator:
    """Total del bucket (existente + nuevo) y delta de esta pasada."""
    aggregate: ConsumerRuntimeAggregate
    delta_seconds: int = 0

    def add(self, seconds: int) -> None:
        self.aggregate.duration_seconds += seconds
        self.delta_seconds += seconds


class RuntimeAggregator:
    """Convierte runtimes en ConsumerRuntimeAggregate por canal."""

    DEFAULT_BATCH_LIMIT = 100

    def __init__(
        self,
        repository: ConsumerRepository,
        calendar: CalendarPolicy = UTC_CALENDAR,
        intervals: Sequence[AggregationInterval] = (AggregationInterval.HOURLY,),
        batch_limit: int = DEFAULT_BATCH_LIMIT,
    ) -> None:
        if not intervals:
            raise ValueError("at least one aggregation interval is required")
        self._repo = repository
        self._calendar = calendar
        self._intervals = tuple(intervals)
        self._batch_limit = batch_limit

    @property
    def intervals(self) -> tuple:
        return self._intervals

    def _check_intervals(self) -> None:
        for interval in self._intervals:
            if not isinstance(interval, AggregationInterval):
                raise InvalidAggregationIntervalError(interval)

    def accumulate(
        self,
        runtimes: Iterable[ConsumerRuntime],
        interval: AggregationInterval,
    ) -> list[BucketAccumulator]:
        """Agrupa las porciones por bucket, cargando cada bucket una sola vez."""
        buckets: dict[int, BucketAccumulator] = {}

        for piece in split_runtimes(runtimes, interval, self._calendar):
            acc = buckets.get(piece.bucket_start)
            if acc is None:
                existing = self._repo.get_aggregate(piece.channel_id, piece.bucket_start, interval)
                if existing is not None:
                    aggregate = ConsumerRuntimeAggregate(
                        channel_id=existing.channel_id,
                        bucket_start=existing.bucket_start,
                        interval=interval,
                        duration_seconds=existing.duration_seconds,
                    )
                else:
                    aggregate = ConsumerRuntimeAggregate(
                        channel_id=piece.channel_id,
                        bucket_start=piece.bucket_start,
                        interval=interval,
                        duration_seconds=0,
                    )
                acc = BucketAccumulator(aggregate=aggregate)
                buckets[piece.bucket_start] = acc
            acc.add(piece.duration_seconds)

        return [buckets[key] for key in sorted(buckets)]

    def build_batch(
        self, runtimes: Sequence[ConsumerRuntime],
    ) -> tuple[list[ConsumerRuntimeAggregate], list[BatchOperation]]:
        """Construye el batch: upserts de cada bucket y luego las marcas."""
        aggregates: list[ConsumerRuntimeAggregate] = []
        operations: list[BatchOperation] = []

        for interval in self._intervals:
            for acc in self.accumulate(runtimes, interval):
                aggregates.append(acc.aggregate)
                operations.append(UpsertAggregate.for_aggregate(acc.aggregate, acc.delta_seconds))

        for runtime in runtimes:
            operations.append(
                MarkRuntimeAggregated(channel_id=runtime.channel_id, started_at=runtime.started_at)
            )
        return aggregates, operations

    def run_aggregation_pass(self, channel_id: str, limit: Optional[int] = None) -> AggregationPassResult:
        """Una pasada completa para un canal. Nunca lanza: reporta el resultado."""
        try:
            self._check_intervals()
        except InvalidAggregationIntervalError as e:
            logger.error("[AGG] invalid interval channel=%s: %s", channel_id, e)
            return self._finish(AggregationPassResult(
                channel_id=channel_id, status=PassStatus.INVALID_INTERVAL, error=str(e),
            ))

        try:
            runtimes = self._repo.get_unaggregated_runtimes(channel_id, limit or self._batch_limit)
        except Exception as e:
            logger.exception("[AGG] fetch failed channel=%s", channel_id)
            return self._finish(AggregationPassResult(
                channel_id=channel_id, status=PassStatus.FAILED, error=str(e),
            ))

        metrics.UNAGGREGATED_BACKLOG.labels(channel=channel_id).set(len(runtimes))
        if not runtimes:
            return self._finish(AggregationPassResult(channel_id=channel_id, status=PassStatus.EMPTY))

        try:
            aggregates, operations = self.build_batch(runtimes)
            self._repo.run_batch(operations)
        except InvalidAggregationIntervalError as e:
            logger.error("[AGG] invalid interval channel=%s: %s", channel_id, e)
            return self._finish(AggregationPassResult(
                channel_id=channel_id, status=PassStatus.INVALID_INTERVAL, error=str(e),
            ))
        except Exception as e:
            logger.warning(
                "[AGG] batch discarded channel=%s runtimes=%d err=%s (retry next tick)",
                channel_id, len(runtimes), e,
            )
            return self._finish(AggregationPassResult(
                channel_id=channel_id, status=PassStatus.FAILED, error=str(e),
            ))

        metrics.UNAGGREGATED_BACKLOG.labels(channel=channel_id).set(0)
        logger.info(
            "[AGG] pass channel=%s runtimes=%d buckets=%d intervals=%s",
            channel_id,
            len(runtimes),
            len(aggregates),
            ",".join(i.value for i in self._intervals),
        )
        return self._finish(AggregationPassResult(
            channel_id=channel_id,
            status=PassStatus.OK,
            runtimes_aggregated=len(runtimes),
            aggregates=aggregates,
        ))

    @staticmethod
    def _finish(result: AggregationPassResult) -> AggregationPassResult:
        metrics.AGGREGATION_PASSES.labels(channel=result.channel_id, status=result.status.value).inc()
        return result
