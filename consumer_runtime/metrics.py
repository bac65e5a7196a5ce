"""Métricas Prometheus del pipeline de runtimes."""

from __future__ import annotations

from prometheus_client import Counter, Gauge

STATES_RECORDED = Counter(
    "consumer_states_recorded_total",
    "State transitions persisted",
    ["channel", "state"],
)
STATES_SUPPRESSED = Counter(
    "consumer_states_suppressed_total",
    "Observations dropped because the state did not change",
    ["channel"],
)
RUNTIMES_CREATED = Counter(
    "consumer_runtimes_created_total",
    "Runtime spans derived from HIGH->LOW transitions",
    ["channel"],
)
AGGREGATION_PASSES = Counter(
    "consumer_aggregation_passes_total",
    "Aggregation passes per channel",
    ["channel", "status"],  # ok, empty, failed, invalid_interval
)
AGGREGATION_TICKS_SKIPPED = Counter(
    "consumer_aggregation_ticks_skipped_total",
    "Aggregation ticks skipped because the previous tick was still running",
)
UNAGGREGATED_BACKLOG = Gauge(
    "consumer_unaggregated_runtimes",
    "Runtimes fetched but not yet aggregated in the last pass",
    ["channel"],
)
