"""Modelos del pipeline estado → runtime → agregado.

Todos los timestamps son epoch milliseconds (UTC). La conversión a hora
local ocurre únicamente en CalendarPolicy.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Optional

from .intervals import AggregationInterval


class PinState(IntEnum):
    """Estado discreto de un contacto."""
    LOW = 0
    HIGH = 1


def round_ms_to_seconds(ms: int) -> int:
    """Redondeo half-up de milisegundos a segundos (ms >= 0)."""
    return (int(ms) + 500) // 1000


@dataclass(frozen=True)
class ConsumerState:
    """Una transición observada y persistida."""
    channel_id: str
    changed_at: int
    state: PinState


@dataclass(frozen=True)
class ConsumerRuntime:
    """Un intervalo HIGH cerrado."""
    channel_id: str
    started_at: int
    stopped_at: int
    duration_seconds: int
    is_aggregated: bool = False

    @classmethod
    def between(cls, channel_id: str, started_at: int, stopped_at: int) -> "ConsumerRuntime":
        return cls(
            channel_id=channel_id,
            started_at=started_at,
            stopped_at=stopped_at,
            duration_seconds=round_ms_to_seconds(stopped_at - started_at),
        )


@dataclass
class ConsumerRuntimeAggregate:
    """Duración acumulada de un canal en un bucket fijo."""
    channel_id: str
    bucket_start: int
    interval: AggregationInterval
    duration_seconds: int


@dataclass(frozen=True)
class RuntimeSlice:
    """Porción de un runtime que cae dentro de un único bucket."""
    channel_id: str
    bucket_start: int
    started_at: int
    stopped_at: int
    duration_seconds: int


@dataclass
class ObservationResult:
    """Resultado de procesar una observación de estado."""
    channel_id: str
    state: Optional[ConsumerState] = None
    runtime: Optional[ConsumerRuntime] = None
    previous: Optional[ConsumerState] = None

    @property
    def accepted(self) -> bool:
        return self.state is not None


class PassStatus(str, Enum):
    OK = "ok"
    EMPTY = "empty"
    FAILED = "failed"
    INVALID_INTERVAL = "invalid_interval"


@dataclass
class AggregationPassResult:
    """Resultado de una pasada de agregación para un canal."""
    channel_id: str
    status: PassStatus
    runtimes_aggregated: int = 0
    aggregates: list[ConsumerRuntimeAggregate] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status in (PassStatus.OK, PassStatus.EMPTY)
