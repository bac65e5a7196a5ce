"""Tracker de estados de consumidores.

ÚNICO PUNTO DE ESCRITURA para transiciones de estado:
- Suprime lecturas repetidas (chatter del sensor, reescrituras manuales del gpio)
- Persiste sólo transiciones reales
- Deriva el runtime cuando una LOW sigue a una HIGH
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from . import metrics
from .models import ConsumerState, ObservationResult, PinState
from .persistence.contracts import ConsumerRepository, CreateRuntime, CreateState
from .runtime_deriver import RuntimeDeriver

logger = logging.getLogger(__name__)

Clock = Callable[[], int]


def epoch_ms() -> int:
    return int(time.time() * 1000)


class StateTracker:
    """Deduplica y persiste transiciones por canal.

    Asume un único escritor por canal: la secuencia leer-decidir-escribir
    no está protegida contra escritores concurrentes.
    """

    def __init__(
        self,
        repository: ConsumerRepository,
        deriver: Optional[RuntimeDeriver] = None,
        clock: Clock = epoch_ms,
    ) -> None:
        self._repo = repository
        self._deriver = deriver or RuntimeDeriver()
        self._clock = clock

    def record_observed_state(
        self,
        channel_id: str,
        state: PinState,
        observed_at: Optional[int] = None,
    ) -> ObservationResult:
        """Registra una observación; escribe 0 o 1 transición.

        Los errores de persistencia se propagan sin modificar: la
        observación se considera descartada.
        """
        state = PinState(state)
        if observed_at is None:
            observed_at = self._clock()

        previous = self._repo.get_latest_state_before(channel_id, observed_at)
        if previous is not None and previous.state == state:
            metrics.STATES_SUPPRESSED.labels(channel=channel_id).inc()
            logger.debug(
                "[STATE] duplicate suppressed channel=%s state=%s at=%d",
                channel_id, state.name, observed_at,
            )
            return ObservationResult(channel_id=channel_id, previous=previous)

        current = ConsumerState(channel_id=channel_id, changed_at=observed_at, state=state)
        runtime = self._deriver.derive(previous, current)

        if runtime is None:
            self._repo.create_state(current)
        else:
            self._repo.run_batch([CreateState(current), CreateRuntime(runtime)])
            metrics.RUNTIMES_CREATED.labels(channel=channel_id).inc()

        metrics.STATES_RECORDED.labels(channel=channel_id, state=state.name).inc()
        logger.info(
            "[STATE] channel=%s %s -> %s at=%d runtime_s=%s",
            channel_id,
            previous.state.name if previous else "NONE",
            state.name,
            observed_at,
            runtime.duration_seconds if runtime else "-",
        )
        return ObservationResult(
            channel_id=channel_id, state=current, runtime=runtime, previous=previous,
        )

    def checkpoint_open_runtime(self, channel_id: str, at: int) -> ObservationResult:
        """Cierra un runtime abierto en `at` y lo reabre en `at + 1`.

        Sólo actúa si el último estado del canal es HIGH y no hay ninguna
        transición registrada desde `at`; así un quemador que funciona
        durante días sigue generando runtimes diarios.
        """
        latest = self._repo.get_latest_state_before(channel_id, max(self._clock(), at) + 2)
        if latest is None or latest.state != PinState.HIGH:
            return ObservationResult(channel_id=channel_id, previous=latest)
        if latest.changed_at >= at:
            logger.debug(
                "[STATE] checkpoint skipped channel=%s: transition at %d after boundary %d",
                channel_id, latest.changed_at, at,
            )
            return ObservationResult(channel_id=channel_id, previous=latest)

        low = ConsumerState(channel_id=channel_id, changed_at=at, state=PinState.LOW)
        high = ConsumerState(channel_id=channel_id, changed_at=at + 1, state=PinState.HIGH)
        runtime = self._deriver.derive(latest, low)

        self._repo.run_batch([CreateState(low), CreateRuntime(runtime), CreateState(high)])

        metrics.RUNTIMES_CREATED.labels(channel=channel_id).inc()
        logger.info(
            "[STATE] checkpoint channel=%s at=%d runtime_s=%d",
            channel_id, at, runtime.duration_seconds,
        )
        return ObservationResult(
            channel_id=channel_id, state=high, runtime=runtime, previous=latest,
        )
