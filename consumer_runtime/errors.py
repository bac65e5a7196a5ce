"""Excepciones del dominio de runtimes de consumidores."""

from __future__ import annotations

from typing import Any


class ConsumerRuntimeError(Exception):
    """Base para todos los errores del servicio."""


class InvalidAggregationIntervalError(ConsumerRuntimeError):
    """Intervalo de agregación desconocido (error de configuración)."""

    def __init__(self, interval: Any):
        self.interval = interval
        super().__init__(f"Invalid aggregation interval: {interval}")


class BatchExecutionError(ConsumerRuntimeError):
    """Un batch transaccional falló y fue revertido completo."""

    def __init__(self, index: int, operation: Any, cause: Exception):
        self.index = index
        self.operation = operation
        self.cause = cause
        super().__init__(
            f"{type(cause).__name__}: {cause} in operation #{index} "
            f"({type(operation).__name__})"
        )


class GpioReadError(ConsumerRuntimeError):
    """No se pudo leer el valor de un pin GPIO."""

    def __init__(self, file_path: str, cause: Exception):
        self.file_path = file_path
        self.cause = cause
        super().__init__(f"Failed to read from file {file_path}: {cause}")


class InvalidConfigError(ConsumerRuntimeError):
    """El archivo de configuración no pasó la validación."""

    def __init__(self, validation_errors: list[dict[str, Any]], source: str = ""):
        self.validation_errors = validation_errors
        self.source = source
        details = "; ".join(
            f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg')}"
            for err in validation_errors
        )
        where = f" ({source})" if source else ""
        super().__init__(f"Invalid config{where}: {details}")
