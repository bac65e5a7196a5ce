from __future__ import annotations

from typing import Optional

from fastapi import FastAPI

from consumer_runtime.persistence import SqlConsumerRepository
from consumer_runtime.runtime_aggregator import RuntimeAggregator

from .endpoints import channels_router, health_router


def create_app(
    repository: Optional[SqlConsumerRepository] = None,
    aggregator: Optional[RuntimeAggregator] = None,
    scheduler=None,
) -> FastAPI:
    """App de consulta; sin repositorio explícito usa CONSUMER_DB_PATH."""
    application = FastAPI(title="Consumer Runtime API", version="0.1.0")
    application.state.repository = repository
    application.state.aggregator = aggregator
    application.state.scheduler = scheduler
    application.include_router(health_router)
    application.include_router(channels_router)
    return application


app = create_app()
