from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from consumer_runtime.errors import InvalidAggregationIntervalError, InvalidConfigError
from consumer_runtime.intervals import AggregationInterval, parse_interval


def _default_env_file() -> str:
    return str(Path.cwd() / ".env")


@dataclass(frozen=True)
class Settings:
    """Overrides tomados del entorno (o del .env)."""
    db_path: str
    gpio_base_path: Optional[str]
    log_level: Optional[str]
    aggregation_interval_seconds: Optional[float]
    aggregation_batch_limit: Optional[int]
    export_base_path: Optional[str]


def _optional_float(name: str) -> Optional[float]:
    raw = os.getenv(name)
    return float(raw) if raw not in (None, "") else None


def _optional_int(name: str) -> Optional[int]:
    raw = os.getenv(name)
    return int(raw) if raw not in (None, "") else None


def get_settings() -> Settings:
    # Load env file (if present) but still allow overriding via real environment variables.
    env_file = os.getenv("CONSUMER_ENV_FILE", _default_env_file())
    if env_file and Path(env_file).exists():
        load_dotenv(env_file, override=False)

    return Settings(
        db_path=os.getenv("CONSUMER_DB_PATH", ""),
        gpio_base_path=os.getenv("GPIO_BASE_PATH") or None,
        log_level=os.getenv("LOG_LEVEL") or None,
        aggregation_interval_seconds=_optional_float("AGGREGATION_INTERVAL_SEC"),
        aggregation_batch_limit=_optional_int("AGGREGATION_BATCH_LIMIT"),
        export_base_path=os.getenv("FILE_EXPORT_BASE_PATH") or None,
    )


# ---------------------------------------------------------------------------
# Esquema del archivo de configuración
# ---------------------------------------------------------------------------


class _StrictModel(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class ConsumerConfig(_StrictModel):
    gpio: int = Field(..., ge=0)


class DatabaseConfig(_StrictModel):
    file_path: str = "/var/data/consumers.sqlite"


class AggregationSettings(_StrictModel):
    interval_seconds: float = Field(60.0, gt=0)
    batch_limit: int = Field(100, ge=1, le=1000)
    intervals: List[AggregationInterval] = Field(
        default_factory=lambda: [AggregationInterval.HOURLY], min_length=1,
    )

    @field_validator("intervals", mode="before")
    @classmethod
    def _parse_intervals(cls, value):
        if not isinstance(value, (list, tuple)):
            raise ValueError("intervals must be a list")
        try:
            return [parse_interval(v) for v in value]
        except InvalidAggregationIntervalError as e:
            raise ValueError(str(e)) from e


class ExportSettings(_StrictModel):
    enabled: bool = False
    interval: AggregationInterval = AggregationInterval.DAILY
    directory: str = "/app/data/exports"
    check_seconds: float = Field(60.0, gt=0)

    @field_validator("interval", mode="before")
    @classmethod
    def _parse_interval(cls, value):
        try:
            return parse_interval(value)
        except InvalidAggregationIntervalError as e:
            raise ValueError(str(e)) from e


class ApiSettings(_StrictModel):
    enabled: bool = False
    host: str = "127.0.0.1"
    port: int = Field(8080, ge=1, le=65535)


class ServiceConfig(_StrictModel):
    consumers: Dict[str, ConsumerConfig]
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    gpio_base_path: str = "/sys/class"
    poll_interval_seconds: float = Field(0.05, gt=0)
    log_level: str = Field("info", validate_default=True)
    timezone: str = "UTC"
    week_start: int = Field(6, ge=0, le=6)
    aggregation: AggregationSettings = Field(default_factory=AggregationSettings)
    export: ExportSettings = Field(default_factory=ExportSettings)
    checkpoint_midnight: bool = True
    api: ApiSettings = Field(default_factory=ApiSettings)

    @field_validator("timezone")
    @classmethod
    def _check_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"unknown timezone: {value}") from e
        return value

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, value: str) -> str:
        level = value.strip().upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"unknown log level: {value}")
        return level


def apply_settings(config: ServiceConfig, settings: Settings) -> ServiceConfig:
    """Aplica los overrides de entorno sobre la configuración del archivo."""
    update: dict = {}
    if settings.db_path:
        update["database"] = config.database.model_copy(update={"file_path": settings.db_path})
    if settings.gpio_base_path:
        update["gpio_base_path"] = settings.gpio_base_path
    if settings.log_level:
        update["log_level"] = settings.log_level.upper()

    aggregation_update: dict = {}
    if settings.aggregation_interval_seconds is not None:
        aggregation_update["interval_seconds"] = settings.aggregation_interval_seconds
    if settings.aggregation_batch_limit is not None:
        aggregation_update["batch_limit"] = settings.aggregation_batch_limit
    if aggregation_update:
        update["aggregation"] = config.aggregation.model_copy(update=aggregation_update)

    if settings.export_base_path:
        update["export"] = config.export.model_copy(update={"directory": settings.export_base_path})

    if not update:
        return config
    return parse_config(config.model_copy(update=update).model_dump(), source="environment")


def parse_config(data: object, source: str = "") -> ServiceConfig:
    try:
        return ServiceConfig.model_validate(data)
    except ValidationError as e:
        raise InvalidConfigError(e.errors(), source=source) from e


def load_config(file_path: str, settings: Optional[Settings] = None) -> ServiceConfig:
    """Lee y valida el archivo JSON; luego aplica overrides de entorno."""
    with open(file_path, "r", encoding="utf-8") as fh:
        data = json.load(fh)
    config = parse_config(data, source=file_path)
    return apply_settings(config, settings or get_settings())
