"""Derivación de runtimes a partir de transiciones HIGH → LOW."""

from __future__ import annotations

from typing import Optional

from .models import ConsumerRuntime, ConsumerState, PinState


class RuntimeDeriver:
    """Emite un ConsumerRuntime cuando una transición LOW sigue a una HIGH.

    Usa la transición previa del canal sin importar cuán atrás esté; la
    deduplicación de StateTracker garantiza que la previa es la última HIGH.
    """

    def derive(
        self,
        previous: Optional[ConsumerState],
        current: ConsumerState,
    ) -> Optional[ConsumerRuntime]:
        if previous is None:
            return None
        if previous.channel_id != current.channel_id:
            raise ValueError(
                f"channel mismatch: {previous.channel_id} != {current.channel_id}"
            )
        if previous.state != PinState.HIGH or current.state != PinState.LOW:
            return None
        if current.changed_at < previous.changed_at:
            raise ValueError(
                f"out-of-order transition channel={current.channel_id} "
                f"started={previous.changed_at} stopped={current.changed_at}"
            )
        return ConsumerRuntime.between(
            current.channel_id, previous.changed_at, current.changed_at,
        )
