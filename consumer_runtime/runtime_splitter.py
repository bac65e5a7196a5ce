"""División de runtimes en porciones alineadas a buckets."""

from __future__ import annotations

from typing import Iterable, Iterator

from .calendar_policy import CalendarPolicy
from .intervals import AggregationInterval
from .models import ConsumerRuntime, RuntimeSlice, round_ms_to_seconds


def split_runtime(
    runtime: ConsumerRuntime,
    interval: AggregationInterval,
    calendar: CalendarPolicy,
) -> Iterator[RuntimeSlice]:
    """Divide un runtime en una porción por cada bucket que toca.

    Los segundos de cada porción se calculan con redondeo acumulado, de
    modo que la suma de las porciones es exactamente duration_seconds.
    """
    origin = runtime.started_at
    bucket = calendar.bucket_start(interval, runtime.started_at)
    credited = 0

    while True:
        next_bucket = calendar.next_bucket_start(interval, bucket)
        if next_bucket <= bucket:
            raise RuntimeError(
                f"calendar did not advance interval={interval.value} bucket={bucket}"
            )

        piece_start = max(runtime.started_at, bucket)
        piece_end = min(runtime.stopped_at, next_bucket)
        if piece_end >= runtime.stopped_at:
            cumulative = runtime.duration_seconds
        else:
            cumulative = round_ms_to_seconds(piece_end - origin)

        yield RuntimeSlice(
            channel_id=runtime.channel_id,
            bucket_start=bucket,
            started_at=piece_start,
            stopped_at=piece_end,
            duration_seconds=cumulative - credited,
        )
        credited = cumulative

        if next_bucket >= runtime.stopped_at:
            return
        bucket = next_bucket


def split_runtimes(
    runtimes: Iterable[ConsumerRuntime],
    interval: AggregationInterval,
    calendar: CalendarPolicy,
) -> list[RuntimeSlice]:
    slices: list[RuntimeSlice] = []
    for runtime in runtimes:
        slices.extend(split_runtime(runtime, interval, calendar))
    return slices
