"""Persistencia de estados, runtimes y agregados.

Contiene:
- ConsumerRepository / ReportingRepository: contratos (Protocol)
- Operaciones de batch: CreateState, CreateRuntime, UpsertAggregate, MarkRuntimeAggregated
- SqlConsumerRepository: implementación SQLAlchemy
- ensure_schema: DDL idempotente
"""

from .contracts import (
    BatchOperation,
    ConsumerRepository,
    CreateRuntime,
    CreateState,
    MarkRuntimeAggregated,
    ReportingRepository,
    UpsertAggregate,
)
from .schema import ensure_schema
from .sql_repository import SqlConsumerRepository

__all__ = [
    "BatchOperation",
    "ConsumerRepository",
    "CreateRuntime",
    "CreateState",
    "MarkRuntimeAggregated",
    "ReportingRepository",
    "UpsertAggregate",
    "ensure_schema",
    "SqlConsumerRepository",
]
