"""Aggregation job package.

Modules:
- config: AggregationConfig dataclass
- scheduler: AggregationScheduler (asyncio, used by the monitor service)
- runner: standalone cycle (run_once)
- cli: CLI entry point (main)
"""

from .config import AggregationConfig
from .runner import build_aggregator, run_once
from .scheduler import AggregationScheduler

__all__ = ["AggregationConfig", "AggregationScheduler", "build_aggregator", "run_once"]
