"""CLI entry point for the standalone aggregation job."""

from __future__ import annotations

import argparse
import logging
import time

from common.db import create_sqlite_engine
from consumer_runtime.calendar_policy import CalendarPolicy
from consumer_runtime.intervals import AggregationInterval
from consumer_runtime.persistence import SqlConsumerRepository, ensure_schema

from .config import AggregationConfig
from .runner import build_aggregator, run_once

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Consumer runtime aggregation job")
    p.add_argument("--db-path", required=True, help="SQLite database file")
    p.add_argument("--channel", action="append", default=[], help="channel to aggregate (repeatable)")
    p.add_argument(
        "--interval",
        action="append",
        choices=[i.value for i in AggregationInterval],
        default=[],
        help="aggregation interval (repeatable, default HOURLY)",
    )
    p.add_argument("--limit", type=int, default=100)
    p.add_argument("--timezone", default="UTC")
    p.add_argument("--week-start", type=int, default=6, help="0=Monday ... 6=Sunday")
    p.add_argument("--sleep-seconds", type=float, default=60.0)
    p.add_argument("--once", action="store_true", help="run a single iteration and exit")
    return p


def main(argv=None) -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler()],
    )

    args = build_parser().parse_args(argv)
    intervals = tuple(AggregationInterval(i) for i in args.interval) or (AggregationInterval.HOURLY,)
    cfg = AggregationConfig(
        interval_seconds=args.sleep_seconds,
        batch_limit=args.limit,
        intervals=intervals,
    )

    engine = create_sqlite_engine(args.db_path)
    ensure_schema(engine)
    repository = SqlConsumerRepository(engine)
    aggregator = build_aggregator(
        repository, cfg, CalendarPolicy(timezone=args.timezone, week_start=args.week_start),
    )

    logger.info("Aggregation job started")
    logger.info(
        "Config: limit=%d, intervals=%s, sleep=%.1fs",
        cfg.batch_limit, ",".join(i.value for i in cfg.intervals), cfg.interval_seconds,
    )

    while True:
        try:
            run_once(repository, aggregator, args.channel)
            if args.once:
                return
            logger.info("Iteración completada, esperando %.1fs...", cfg.interval_seconds)
            time.sleep(cfg.interval_seconds)
        except KeyboardInterrupt:
            logger.info("Interrumpido, saliendo...")
            return
        except Exception as e:
            logger.error("Error en iteración: %s", e)
            if args.once:
                raise
            logger.info("Continuando con siguiente iteración...")
            time.sleep(cfg.interval_seconds)


if __name__ == "__main__":
    main()
