"""Health, readiness y métricas Prometheus."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy import text

from consumer_runtime.persistence import SqlConsumerRepository

from ..dependencies import get_repository

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health")
def health():
    """Liveness: ok mientras el proceso responda."""
    return {"status": "ok"}


@router.get("/ready")
def ready(request: Request, repository: SqlConsumerRepository = Depends(get_repository)):
    """Readiness: la base responde a SELECT 1."""
    try:
        with repository.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception:
        logger.exception("[API] readiness check failed")
        raise HTTPException(status_code=503, detail="not ready")

    body = {"status": "ready"}
    scheduler = getattr(request.app.state, "scheduler", None)
    if scheduler is not None:
        body["scheduler"] = scheduler.get_stats()
    return body


@router.get("/metrics")
def metrics():
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
