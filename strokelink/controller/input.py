"""Pointer input mapping."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(slots=True, frozen=True)
class InputSurface:
    """Vertical extent of the drag surface in pointer coordinates.

    The top edge maps to 1.0 and the bottom edge to 0.0; samples outside the
    surface are clamped.
    """

    top: float = 0.0
    height: float = 1.0

    def normalize(self, y: float) -> float:
        if self.height <= 0:
            return 0.5
        position = 1.0 - (y - self.top) / self.height
        return max(0.0, min(1.0, position))
