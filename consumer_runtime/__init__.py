"""Pipeline de runtimes de consumidores.

Módulos:
- models: ConsumerState, ConsumerRuntime, ConsumerRuntimeAggregate, PinState
- intervals / calendar_policy: intervalos de agregación y alineación de buckets
- state_tracker: deduplicación y persistencia de transiciones
- runtime_deriver: runtimes a partir de HIGH -> LOW
- runtime_splitter / runtime_aggregator: agregación idempotente por buckets
- persistence: contrato del repositorio + implementación SQLAlchemy
"""

from .calendar_policy import CalendarPolicy
from .errors import (
    BatchExecutionError,
    ConsumerRuntimeError,
    GpioReadError,
    InvalidAggregationIntervalError,
    InvalidConfigError,
)
from .intervals import AggregationInterval, parse_interval
from .models import (
    AggregationPassResult,
    ConsumerRuntime,
    ConsumerRuntimeAggregate,
    ConsumerState,
    ObservationResult,
    PassStatus,
    PinState,
)
from .runtime_aggregator import RuntimeAggregator
from .runtime_deriver import RuntimeDeriver
from .state_tracker import StateTracker

__all__ = [
    "AggregationInterval",
    "AggregationPassResult",
    "BatchExecutionError",
    "CalendarPolicy",
    "ConsumerRuntime",
    "ConsumerRuntimeAggregate",
    "ConsumerRuntimeError",
    "ConsumerState",
    "GpioReadError",
    "InvalidAggregationIntervalError",
    "InvalidConfigError",
    "ObservationResult",
    "PassStatus",
    "PinState",
    "RuntimeAggregator",
    "RuntimeDeriver",
    "StateTracker",
    "parse_interval",
]
