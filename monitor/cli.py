"""CLI entry point for the consumer monitor service."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from common.config import load_config
from consumer_runtime.errors import InvalidConfigError

from .service import ConsumerMonitorService

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Consumer GPIO monitor and runtime aggregation service")
    p.add_argument("--config", required=True, help="JSON configuration file")
    return p


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler()],
    )

    try:
        config = load_config(args.config)
    except (OSError, ValueError, InvalidConfigError) as e:
        logger.error("Config inválida (%s): %s", args.config, e)
        return 2

    logging.getLogger().setLevel(config.log_level)
    logger.info("Consumer monitor started")
    logger.info(
        "Config: consumers=%d, db=%s, intervals=%s",
        len(config.consumers),
        config.database.file_path,
        ",".join(i.value for i in config.aggregation.intervals),
    )

    try:
        asyncio.run(ConsumerMonitorService(config).run())
    except KeyboardInterrupt:
        logger.info("Interrumpido, saliendo...")
    return 0


if __name__ == "__main__":
    sys.exit(main())
