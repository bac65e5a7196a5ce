"""Canal monitoreado: un consumidor configurado ligado a su pin."""

from __future__ import annotations

from dataclasses import dataclass

from consumer_runtime.models import ObservationResult, PinState
from consumer_runtime.state_tracker import StateTracker


@dataclass
class ConsumerChannel:
    name: str
    gpio: int
    tracker: StateTracker

    async def handle_state_change(self, state: PinState) -> ObservationResult:
        return self.tracker.record_observed_state(self.name, state)
