from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

from .config import Settings, get_settings


logger = logging.getLogger(__name__)

MEMORY_PATH = ":memory:"

_engine: Optional[Engine] = None


def build_sqlalchemy_url(db_path: str) -> str:
    if not db_path or db_path == MEMORY_PATH:
        return "sqlite://"
    return f"sqlite:///{Path(db_path).expanduser()}"


def _set_sqlite_pragmas(dbapi_conn, _record) -> None:
    cursor = dbapi_conn.cursor()
    try:
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA busy_timeout=5000")
    finally:
        cursor.close()


def create_sqlite_engine(db_path: str) -> Engine:
    """Engine SQLite para un archivo o en memoria (":memory:")."""
    url = build_sqlalchemy_url(db_path)

    if url == "sqlite://":
        # Una sola conexión compartida; si no, cada conexión ve otra base vacía.
        engine = create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
            future=True,
        )
    else:
        Path(db_path).expanduser().parent.mkdir(parents=True, exist_ok=True)
        engine = create_engine(url, pool_pre_ping=True, future=True)

    event.listen(engine, "connect", _set_sqlite_pragmas)
    return engine


def get_engine(settings: Optional[Settings] = None) -> Engine:
    """Engine singleton a partir de la configuración de entorno."""
    global _engine

    if _engine is not None:
        return _engine

    settings = settings or get_settings()
    logger.info("[DB] Crear engine SQLite path=%s", settings.db_path)

    engine = create_sqlite_engine(settings.db_path)

    # Test de conexión: ayuda a ver en logs si el servicio llega a la BD
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        logger.info("[DB] Test de conexión OK")
    except Exception:
        logger.exception("[DB] Test de conexión FALLÓ")

    _engine = engine
    return _engine
