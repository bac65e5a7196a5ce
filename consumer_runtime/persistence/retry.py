"""Retry para escrituras cuando SQLite reporta la base bloqueada."""

from __future__ import annotations

import logging
import random
import time
from typing import Callable, TypeVar

from sqlalchemy.exc import OperationalError

logger = logging.getLogger(__name__)

T = TypeVar("T")

_LOCKED_MARKERS = ("database is locked", "database table is locked")


def is_locked_error(error: OperationalError) -> bool:
    message = str(getattr(error, "orig", error)).lower()
    return any(marker in message for marker in _LOCKED_MARKERS)


def call_with_retry(fn: Callable[[], T], max_retries: int = 3, label: str = "write") -> T:
    """Ejecuta fn con retry + exponential backoff si la base está bloqueada."""
    for attempt in range(1, max_retries + 1):
        try:
            return fn()
        except OperationalError as e:
            if is_locked_error(e) and attempt < max_retries:
                delay = min(100 * (2 ** (attempt - 1)), 2000)
                jitter = random.uniform(0, delay * 0.1)
                total_delay = (delay + jitter) / 1000.0
                logger.warning(
                    "[DB] %s: base bloqueada (intento %d/%d), reintentando en %.2fs...",
                    label, attempt, max_retries, total_delay,
                )
                time.sleep(total_delay)
                continue
            logger.error("[DB] %s falló (intento %d/%d): %s", label, attempt, max_retries, e)
            raise
    raise OperationalError(f"{label}: max retries exceeded", {}, None)
