"""Contrato de persistencia consumido por el core.

El core sólo conoce este Protocol; SqlConsumerRepository es la
implementación con SQLAlchemy. Las operaciones de batch son valores
inmutables que el repositorio ejecuta dentro de una única transacción.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol, Sequence, Union

from ..intervals import AggregationInterval
from ..models import ConsumerRuntime, ConsumerRuntimeAggregate, ConsumerState


@dataclass(frozen=True)
class CreateState:
    state: ConsumerState


@dataclass(frozen=True)
class CreateRuntime:
    runtime: ConsumerRuntime


@dataclass(frozen=True)
class UpsertAggregate:
    """Upsert con merge aditivo: inserta `delta_seconds` o lo suma al existente."""
    channel_id: str
    bucket_start: int
    interval: AggregationInterval
    delta_seconds: int

    @classmethod
    def for_aggregate(cls, aggregate: ConsumerRuntimeAggregate, delta_seconds: int) -> "UpsertAggregate":
        return cls(
            channel_id=aggregate.channel_id,
            bucket_start=aggregate.bucket_start,
            interval=aggregate.interval,
            delta_seconds=delta_seconds,
        )


@dataclass(frozen=True)
class MarkRuntimeAggregated:
    channel_id: str
    started_at: int


BatchOperation = Union[CreateState, CreateRuntime, UpsertAggregate, MarkRuntimeAggregated]


class ConsumerRepository(Protocol):
    """Operaciones que usan StateTracker y RuntimeAggregator."""

    def get_latest_state_before(self, channel_id: str, timestamp: int) -> Optional[ConsumerState]:
        ...

    def create_state(self, state: ConsumerState) -> None:
        ...

    def create_runtime(self, runtime: ConsumerRuntime) -> None:
        ...

    def get_unaggregated_runtimes(self, channel_id: str, limit: int) -> list[ConsumerRuntime]:
        """Runtimes con is_aggregated = false, del más antiguo al más nuevo."""
        ...

    def get_aggregate(
        self, channel_id: str, bucket_start: int, interval: AggregationInterval,
    ) -> Optional[ConsumerRuntimeAggregate]:
        ...

    def run_batch(self, operations: Sequence[BatchOperation]) -> None:
        """Todo o nada: si una operación falla ninguna queda visible."""
        ...


class ReportingRepository(ConsumerRepository, Protocol):
    """Lecturas de sólo consulta para exportación y API."""

    def get_first_state(self) -> Optional[ConsumerState]:
        ...

    def list_states(
        self,
        channel_id: Optional[str] = None,
        from_ts: Optional[int] = None,
        to_ts: Optional[int] = None,
    ) -> list[ConsumerState]:
        ...

    def list_runtimes(
        self,
        channel_id: Optional[str] = None,
        from_ts: Optional[int] = None,
        to_ts: Optional[int] = None,
    ) -> list[ConsumerRuntime]:
        ...

    def list_aggregates(
        self,
        channel_id: Optional[str] = None,
        interval: Optional[AggregationInterval] = None,
        from_ts: Optional[int] = None,
        to_ts: Optional[int] = None,
    ) -> list[ConsumerRuntimeAggregate]:
        ...

    def count_unaggregated(self, channel_id: str) -> int:
        ...

    def count_unaggregated_before(self, timestamp: int) -> int:
        ...

    def count_open_before(self, timestamp: int) -> int:
        ...
