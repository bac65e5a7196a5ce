"""Consulta de estados, runtimes y agregados por canal."""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from consumer_runtime.errors import InvalidAggregationIntervalError
from consumer_runtime.intervals import parse_interval
from consumer_runtime.persistence import SqlConsumerRepository
from consumer_runtime.runtime_aggregator import RuntimeAggregator

from ..dependencies import get_aggregator, get_repository
from ..schemas import AggregateOut, AggregationPassOut, RuntimeOut, StateOut

router = APIRouter(prefix="/channels", tags=["channels"])


def _aggregate_out(a) -> AggregateOut:
    return AggregateOut(
        channel_id=a.channel_id,
        bucket_start=a.bucket_start,
        interval=a.interval.value,
        duration_seconds=a.duration_seconds,
    )


@router.get("/{channel_id}/states", response_model=List[StateOut])
def list_states(
    channel_id: str,
    from_ts: Optional[int] = Query(None, alias="from"),
    to_ts: Optional[int] = Query(None, alias="to"),
    repository: SqlConsumerRepository = Depends(get_repository),
):
    return [
        StateOut(channel_id=s.channel_id, changed_at=s.changed_at, state=s.state.name)
        for s in repository.list_states(channel_id, from_ts, to_ts)
    ]


@router.get("/{channel_id}/runtimes", response_model=List[RuntimeOut])
def list_runtimes(
    channel_id: str,
    from_ts: Optional[int] = Query(None, alias="from"),
    to_ts: Optional[int] = Query(None, alias="to"),
    repository: SqlConsumerRepository = Depends(get_repository),
):
    return [
        RuntimeOut(
            channel_id=r.channel_id,
            started_at=r.started_at,
            stopped_at=r.stopped_at,
            duration_seconds=r.duration_seconds,
            is_aggregated=r.is_aggregated,
        )
        for r in repository.list_runtimes(channel_id, from_ts, to_ts)
    ]


@router.get("/{channel_id}/aggregates", response_model=List[AggregateOut])
def list_aggregates(
    channel_id: str,
    interval: str = Query("HOURLY"),
    from_ts: Optional[int] = Query(None, alias="from"),
    to_ts: Optional[int] = Query(None, alias="to"),
    repository: SqlConsumerRepository = Depends(get_repository),
):
    try:
        parsed = parse_interval(interval)
    except InvalidAggregationIntervalError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return [
        _aggregate_out(a)
        for a in repository.list_aggregates(channel_id, parsed, from_ts, to_ts)
    ]


@router.post("/{channel_id}/aggregate", response_model=AggregationPassOut)
async def aggregate_channel(
    channel_id: str,
    aggregator: RuntimeAggregator = Depends(get_aggregator),
):
    """Una pasada de agregación a demanda.

    Corre en el event loop, igual que el scheduler, así nunca se
    intercala con un tick en curso.
    """
    result = aggregator.run_aggregation_pass(channel_id)
    return AggregationPassOut(
        channel_id=result.channel_id,
        status=result.status.value,
        runtimes_aggregated=result.runtimes_aggregated,
        aggregates=[_aggregate_out(a) for a in result.aggregates],
        error=result.error,
    )
