"""DDL idempotente para las tablas de consumidores."""

from __future__ import annotations

import logging

from sqlalchemy import text
from sqlalchemy.engine import Engine

logger = logging.getLogger(__name__)


SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS consumer_states (
        channel_id TEXT NOT NULL,
        changed_iso TEXT NOT NULL,
        changed_at INTEGER NOT NULL,
        state INTEGER NOT NULL,
        PRIMARY KEY (channel_id, changed_at)
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS consumer_states_changed_at
    ON consumer_states (changed_at)
    """,
    """
    CREATE TABLE IF NOT EXISTS consumer_runtimes (
        channel_id TEXT NOT NULL,
        started_iso TEXT NOT NULL,
        started_at INTEGER NOT NULL,
        stopped_iso TEXT NOT NULL,
        stopped_at INTEGER NOT NULL,
        duration_seconds INTEGER NOT NULL,
        is_aggregated INTEGER NOT NULL DEFAULT 0,
        PRIMARY KEY (channel_id, started_at),
        CHECK (stopped_at >= started_at)
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS consumer_runtimes_unaggregated
    ON consumer_runtimes (channel_id, is_aggregated, started_at)
    """,
    """
    CREATE TABLE IF NOT EXISTS consumer_runtime_aggregates (
        channel_id TEXT NOT NULL,
        bucket_iso TEXT NOT NULL,
        bucket_start INTEGER NOT NULL,
        bucket_interval TEXT NOT NULL,
        duration_seconds INTEGER NOT NULL,
        PRIMARY KEY (channel_id, bucket_start, bucket_interval)
    )
    """,
)


def ensure_schema(engine: Engine) -> None:
    """Crea tablas e índices si no existen. Seguro de llamar varias veces."""
    logger.info("[DB] Ensuring consumer schema exists")
    with engine.begin() as conn:
        for statement in SCHEMA_STATEMENTS:
            conn.execute(text(statement))
    logger.info("[DB] Consumer schema OK")
