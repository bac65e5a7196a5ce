"""Dependencias FastAPI: repositorio y agregador del proceso.

El servicio inyecta los suyos en `app.state`; si no hay ninguno (app
servida sola con uvicorn) se construyen desde la configuración de entorno.
"""

from __future__ import annotations

from typing import Optional

from fastapi import Request

from common.db import get_engine
from consumer_runtime.persistence import SqlConsumerRepository, ensure_schema
from consumer_runtime.runtime_aggregator import RuntimeAggregator

_default_repository: Optional[SqlConsumerRepository] = None


def _build_default_repository() -> SqlConsumerRepository:
    global _default_repository
    if _default_repository is None:
        engine = get_engine()
        ensure_schema(engine)
        _default_repository = SqlConsumerRepository(engine)
    return _default_repository


def get_repository(request: Request) -> SqlConsumerRepository:
    repository = getattr(request.app.state, "repository", None)
    if repository is None:
        repository = _build_default_repository()
        request.app.state.repository = repository
    return repository


def get_aggregator(request: Request) -> RuntimeAggregator:
    aggregator = getattr(request.app.state, "aggregator", None)
    if aggregator is None:
        aggregator = RuntimeAggregator(get_repository(request))
        request.app.state.aggregator = aggregator
    return aggregator
