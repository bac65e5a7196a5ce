"""Repositorio de consumidores sobre SQLAlchemy (SQLite).

Todas las consultas usan text() y transacciones engine.begin(). run_batch
ejecuta un lote completo en una sola transacción: si una operación falla,
el rollback descarta todas.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional, Sequence

from sqlalchemy import text
from sqlalchemy.engine import Connection, Engine

from ..errors import BatchExecutionError
from ..intervals import AggregationInterval
from ..models import ConsumerRuntime, ConsumerRuntimeAggregate, ConsumerState, PinState
from .contracts import (
    BatchOperation,
    CreateRuntime,
    CreateState,
    MarkRuntimeAggregated,
    UpsertAggregate,
)
from .retry import call_with_retry

logger = logging.getLogger(__name__)

MAX_RUNTIME_LIMIT = 1000


def _iso(ts_ms: int) -> str:
    return datetime.fromtimestamp(ts_ms / 1000, tz=timezone.utc).isoformat(timespec="milliseconds")


_INSERT_STATE = text("""
    INSERT INTO consumer_states (channel_id, changed_iso, changed_at, state)
    VALUES (:channel_id, :changed_iso, :changed_at, :state)
""")

_INSERT_RUNTIME = text("""
    INSERT INTO consumer_runtimes (
        channel_id, started_iso, started_at, stopped_iso, stopped_at,
        duration_seconds, is_aggregated
    ) VALUES (
        :channel_id, :started_iso, :started_at, :stopped_iso, :stopped_at,
        :duration_seconds, :is_aggregated
    )
""")

_UPSERT_AGGREGATE = text("""
    INSERT INTO consumer_runtime_aggregates (
        channel_id, bucket_iso, bucket_start, bucket_interval, duration_seconds
    ) VALUES (
        :channel_id, :bucket_iso, :bucket_start, :bucket_interval, :delta_seconds
    )
    ON CONFLICT (channel_id, bucket_start, bucket_interval) DO UPDATE SET
        duration_seconds = consumer_runtime_aggregates.duration_seconds + excluded.duration_seconds
""")

_MARK_AGGREGATED = text("""
    UPDATE consumer_runtimes
    SET is_aggregated = 1
    WHERE channel_id = :channel_id AND started_at = :started_at AND is_aggregated = 0
""")


def _state_params(state: ConsumerState) -> dict:
    return {
        "channel_id": state.channel_id,
        "changed_iso": _iso(state.changed_at),
        "changed_at": state.changed_at,
        "state": int(state.state),
    }


def _runtime_params(runtime: ConsumerRuntime) -> dict:
    return {
        "channel_id": runtime.channel_id,
        "started_iso": _iso(runtime.started_at),
        "started_at": runtime.started_at,
        "stopped_iso": _iso(runtime.stopped_at),
        "stopped_at": runtime.stopped_at,
        "duration_seconds": runtime.duration_seconds,
        "is_aggregated": 1 if runtime.is_aggregated else 0,
    }


def _row_to_state(row) -> ConsumerState:
    return ConsumerState(
        channel_id=row.channel_id,
        changed_at=int(row.changed_at),
        state=PinState(int(row.state)),
    )


def _row_to_runtime(row) -> ConsumerRuntime:
    return ConsumerRuntime(
        channel_id=row.channel_id,
        started_at=int(row.started_at),
        stopped_at=int(row.stopped_at),
        duration_seconds=int(row.duration_seconds),
        is_aggregated=bool(row.is_aggregated),
    )


def _row_to_aggregate(row) -> ConsumerRuntimeAggregate:
    return ConsumerRuntimeAggregate(
        channel_id=row.channel_id,
        bucket_start=int(row.bucket_start),
        interval=AggregationInterval(row.bucket_interval),
        duration_seconds=int(row.duration_seconds),
    )


def _range_clause(column: str, params: dict, from_ts: Optional[int], to_ts: Optional[int]) -> list[str]:
    clauses = []
    if from_ts is not None:
        clauses.append(f"{column} >= :from_ts")
        params["from_ts"] = from_ts
    if to_ts is not None:
        clauses.append(f"{column} < :to_ts")
        params["to_ts"] = to_ts
    return clauses


def _where(clauses: list[str]) -> str:
    return ("WHERE " + " AND ".join(clauses)) if clauses else ""


class SqlConsumerRepository:
    """Acceso a BD para estados, runtimes y agregados."""

    def __init__(self, engine: Engine, max_retries: int = 3):
        self._engine = engine
        self._max_retries = max_retries

    @property
    def engine(self) -> Engine:
        return self._engine

    # ------------------------------------------------------------------
    # Contrato del core
    # ------------------------------------------------------------------

    def get_latest_state_before(self, channel_id: str, timestamp: int) -> Optional[ConsumerState]:
        with self._engine.connect() as conn:
            row = conn.execute(
                text("""
                    SELECT channel_id, changed_at, state
                    FROM consumer_states
                    WHERE channel_id = :channel_id AND changed_at < :timestamp
                    ORDER BY changed_at DESC
                    LIMIT 1
                """),
                {"channel_id": channel_id, "timestamp": timestamp},
            ).fetchone()
        return _row_to_state(row) if row else None

    def create_state(self, state: ConsumerState) -> None:
        def _write() -> None:
            with self._engine.begin() as conn:
                conn.execute(_INSERT_STATE, _state_params(state))

        call_with_retry(_write, self._max_retries, label="create_state")

    def create_runtime(self, runtime: ConsumerRuntime) -> None:
        def _write() -> None:
            with self._engine.begin() as conn:
                conn.execute(_INSERT_RUNTIME, _runtime_params(runtime))

        call_with_retry(_write, self._max_retries, label="create_runtime")

    def get_unaggregated_runtimes(self, channel_id: str, limit: int) -> list[ConsumerRuntime]:
        with self._engine.connect() as conn:
            rows = conn.execute(
                text("""
                    SELECT channel_id, started_at, stopped_at, duration_seconds, is_aggregated
                    FROM consumer_runtimes
                    WHERE channel_id = :channel_id AND is_aggregated = 0
                    ORDER BY started_at ASC
                    LIMIT :limit
                """),
                {"channel_id": channel_id, "limit": max(0, min(limit, MAX_RUNTIME_LIMIT))},
            ).fetchall()
        return [_row_to_runtime(r) for r in rows]

    def get_aggregate(
        self, channel_id: str, bucket_start: int, interval: AggregationInterval,
    ) -> Optional[ConsumerRuntimeAggregate]:
        with self._engine.connect() as conn:
            row = conn.execute(
                text("""
                    SELECT channel_id, bucket_start, bucket_interval, duration_seconds
                    FROM consumer_runtime_aggregates
                    WHERE channel_id = :channel_id
                    AND bucket_start = :bucket_start
                    AND bucket_interval = :bucket_interval
                """),
                {
                    "channel_id": channel_id,
                    "bucket_start": bucket_start,
                    "bucket_interval": AggregationInterval(interval).value,
                },
            ).fetchone()
        return _row_to_aggregate(row) if row else None

    def run_batch(self, operations: Sequence[BatchOperation]) -> None:
        """Ejecuta todas las operaciones en una única transacción."""
        if not operations:
            return
        with self._engine.begin() as conn:
            for index, operation in enumerate(operations):
                try:
                    self._execute_operation(conn, operation)
                except Exception as e:
                    # El context manager hace rollback al propagar.
                    raise BatchExecutionError(index, operation, e) from e
        logger.debug("[DB] batch committed operations=%d", len(operations))

    def _execute_operation(self, conn: Connection, operation: BatchOperation) -> None:
        if isinstance(operation, CreateState):
            conn.execute(_INSERT_STATE, _state_params(operation.state))
        elif isinstance(operation, CreateRuntime):
            conn.execute(_INSERT_RUNTIME, _runtime_params(operation.runtime))
        elif isinstance(operation, UpsertAggregate):
            conn.execute(
                _UPSERT_AGGREGATE,
                {
                    "channel_id": operation.channel_id,
                    "bucket_iso": _iso(operation.bucket_start),
                    "bucket_start": operation.bucket_start,
                    "bucket_interval": AggregationInterval(operation.interval).value,
                    "delta_seconds": operation.delta_seconds,
                },
            )
        elif isinstance(operation, MarkRuntimeAggregated):
            result = conn.execute(
                _MARK_AGGREGATED,
                {"channel_id": operation.channel_id, "started_at": operation.started_at},
            )
            if result.rowcount == 0:
                raise LookupError(
                    f"runtime not found or already aggregated channel={operation.channel_id} started_at={operation.started_at}"
                )
        else:
            raise TypeError(f"unsupported batch operation: {type(operation).__name__}")

    # ------------------------------------------------------------------
    # Lecturas para exportación y API
    # ------------------------------------------------------------------

    def get_first_state(self) -> Optional[ConsumerState]:
        with self._engine.connect() as conn:
            row = conn.execute(
                text("""
                    SELECT channel_id, changed_at, state
                    FROM consumer_states
                    ORDER BY changed_at ASC
                    LIMIT 1
                """)
            ).fetchone()
        return _row_to_state(row) if row else None

    def list_states(
        self,
        channel_id: Optional[str] = None,
        from_ts: Optional[int] = None,
        to_ts: Optional[int] = None,
    ) -> list[ConsumerState]:
        params: dict = {}
        clauses = _range_clause("changed_at", params, from_ts, to_ts)
        if channel_id is not None:
            clauses.append("channel_id = :channel_id")
            params["channel_id"] = channel_id
        with self._engine.connect() as conn:
            rows = conn.execute(
                text(f"""
                    SELECT channel_id, changed_at, state
                    FROM consumer_states
                    {_where(clauses)}
                    ORDER BY changed_at ASC, channel_id ASC
                """),
                params,
            ).fetchall()
        return [_row_to_state(r) for r in rows]

    def list_runtimes(
        self,
        channel_id: Optional[str] = None,
        from_ts: Optional[int] = None,
        to_ts: Optional[int] = None,
    ) -> list[ConsumerRuntime]:
        params: dict = {}
        clauses = _range_clause("started_at", params, from_ts, to_ts)
        if channel_id is not None:
            clauses.append("channel_id = :channel_id")
            params["channel_id"] = channel_id
        with self._engine.connect() as conn:
            rows = conn.execute(
                text(f"""
                    SELECT channel_id, started_at, stopped_at, duration_seconds, is_aggregated
                    FROM consumer_runtimes
                    {_where(clauses)}
                    ORDER BY started_at ASC, channel_id ASC
                """),
                params,
            ).fetchall()
        return [_row_to_runtime(r) for r in rows]

    def list_aggregates(
        self,
        channel_id: Optional[str] = None,
        interval: Optional[AggregationInterval] = None,
        from_ts: Optional[int] = None,
        to_ts: Optional[int] = None,
    ) -> list[ConsumerRuntimeAggregate]:
        params: dict = {}
        clauses = _range_clause("bucket_start", params, from_ts, to_ts)
        if channel_id is not None:
            clauses.append("channel_id = :channel_id")
            params["channel_id"] = channel_id
        if interval is not None:
            clauses.append("bucket_interval = :bucket_interval")
            params["bucket_interval"] = AggregationInterval(interval).value
        with self._engine.connect() as conn:
            rows = conn.execute(
                text(f"""
                    SELECT channel_id, bucket_start, bucket_interval, duration_seconds
                    FROM consumer_runtime_aggregates
                    {_where(clauses)}
                    ORDER BY bucket_start ASC, channel_id ASC, bucket_interval ASC
                """),
                params,
            ).fetchall()
        return [_row_to_aggregate(r) for r in rows]

    def list_channels_with_unaggregated(self) -> list[str]:
        with self._engine.connect() as conn:
            rows = conn.execute(
                text("""
                    SELECT DISTINCT channel_id FROM consumer_runtimes
                    WHERE is_aggregated = 0
                    ORDER BY channel_id ASC
                """)
            ).fetchall()
        return [r[0] for r in rows]

    def count_unaggregated(self, channel_id: str) -> int:
        with self._engine.connect() as conn:
            row = conn.execute(
                text("""
                    SELECT COUNT(*) AS cnt FROM consumer_runtimes
                    WHERE channel_id = :channel_id AND is_aggregated = 0
                """),
                {"channel_id": channel_id},
            ).fetchone()
        return int(row.cnt) if row and row.cnt else 0

    def count_unaggregated_before(self, timestamp: int) -> int:
        """Runtimes sin agregar que empezaron antes de `timestamp` (todos los canales)."""
        with self._engine.connect() as conn:
            row = conn.execute(
                text("""
                    SELECT COUNT(*) AS cnt FROM consumer_runtimes
                    WHERE is_aggregated = 0 AND started_at < :timestamp
                """),
                {"timestamp": timestamp},
            ).fetchone()
        return int(row.cnt) if row and row.cnt else 0

    def count_open_before(self, timestamp: int) -> int:
        """Canales cuyo último estado es un HIGH anterior a `timestamp` (runtime abierto)."""
        with self._engine.connect() as conn:
            row = conn.execute(
                text("""
                    SELECT COUNT(*) AS cnt FROM consumer_states s
                    WHERE s.state = 1
                    AND s.changed_at < :timestamp
                    AND s.changed_at = (
                        SELECT MAX(changed_at) FROM consumer_states
                        WHERE channel_id = s.channel_id
                    )
                """),
                {"timestamp": timestamp},
            ).fetchone()
        return int(row.cnt) if row and row.cnt else 0
