"""Translation of sampled-velocity ``control`` frames into linear moves.

Duration comes from displacement and requested speed:
``duration = |position - last| / (speed * 5.0 units/s)``, bounded to
``[20, 120]`` ms. The first move after a selection change and moves that
barely change position use the 20 ms minimum; final positioning frames use
a fixed 150 ms.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

LOGGER = logging.getLogger(__name__)

MIN_DURATION_MS = 20
MAX_DURATION_MS = 120
FINAL_DURATION_MS = 150
REFERENCE_MAX_SPEED = 5.0
MIN_SPEED = 0.05
MIN_DISPLACEMENT = 0.001


@dataclass(slots=True, frozen=True)
class LinearMove:
    position: float
    duration_ms: int


class ControlTranslator:
    """Stateful position/speed to position/duration converter."""

    def __init__(self) -> None:
        self._last_position: Optional[float] = None

    @property
    def last_position(self) -> Optional[float]:
        return self._last_position

    def reset(self) -> None:
        self._last_position = None

    def translate(self, position: float, speed: float, *, is_final: bool = False) -> LinearMove:
        target = max(0.0, min(1.0, float(position)))

        if is_final:
            duration = FINAL_DURATION_MS
        elif self._last_position is None:
            duration = MIN_DURATION_MS
        else:
            displacement = abs(target - self._last_position)
            if displacement < MIN_DISPLACEMENT:
                duration = MIN_DURATION_MS
            else:
                effective_speed = max(float(speed), MIN_SPEED) * REFERENCE_MAX_SPEED
                duration = int(displacement / effective_speed * 1000)
            duration = max(MIN_DURATION_MS, min(MAX_DURATION_MS, duration))

        LOGGER.debug(
            "control -> LinearCmd position=%.3f speed=%.3f final=%s duration=%dms",
            target,
            speed,
            is_final,
            duration,
        )
        self._last_position = target
        return LinearMove(position=target, duration_ms=duration)
