"""Domain models shared by the bridge and controller roles."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, FrozenSet, Mapping, Optional

LINEAR_CAPABILITY = "LinearCmd"


@dataclass(slots=True, frozen=True)
class DeviceDescriptor:
    """A device reported by the hardware-control endpoint."""

    index: int
    name: str = ""
    capabilities: FrozenSet[str] = field(default_factory=frozenset)

    @property
    def supports_linear(self) -> bool:
        return LINEAR_CAPABILITY in self.capabilities

    @classmethod
    def from_message(cls, body: Mapping[str, Any]) -> "DeviceDescriptor":
        """Build a descriptor from a ``DeviceList`` entry or ``DeviceAdded`` body.

        Raises:
            ValueError: If the body does not carry an integer ``DeviceIndex``.
        """

        index = body.get("DeviceIndex")
        if isinstance(index, bool) or not isinstance(index, int):
            raise ValueError(f"Device entry without integer DeviceIndex: {body!r}")

        messages = body.get("DeviceMessages") or {}
        if isinstance(messages, Mapping):
            capabilities = frozenset(str(name) for name in messages)
        else:
            capabilities = frozenset(str(name) for name in messages or ())

        return cls(
            index=index,
            name=str(body.get("DeviceName") or ""),
            capabilities=capabilities,
        )


class CommandKind(str, Enum):
    STOP = "stop"
    MOVE = "move"


@dataclass(slots=True, frozen=True)
class CommandEnvelope:
    """A single hardware command addressed to the selected device."""

    id: int
    device_index: int
    kind: CommandKind
    position: Optional[float] = None
    duration_ms: Optional[int] = None

    def __post_init__(self) -> None:
        if self.kind is CommandKind.MOVE:
            if self.position is None or self.duration_ms is None:
                raise ValueError("Move commands need a position and a duration")
            if not 0.0 <= self.position <= 1.0:
                raise ValueError(f"Position {self.position!r} outside [0, 1]")


@dataclass(slots=True, frozen=True)
class StrokeRange:
    """Operator-selected travel window, applied as an affine map."""

    min: float = 0.0
    max: float = 1.0

    def __post_init__(self) -> None:
        if not 0.0 <= self.min <= self.max <= 1.0:
            raise ValueError(
                f"Stroke range must satisfy 0 <= min <= max <= 1 (got {self.min}, {self.max})"
            )

    def map(self, normalized: float) -> float:
        clamped = max(0.0, min(1.0, normalized))
        effective = self.min + clamped * (self.max - self.min)
        # Guard against float drift past the handles.
        return max(self.min, min(self.max, effective))

    def with_min(self, value: float) -> "StrokeRange":
        """Move the lower handle; it never crosses the upper one."""
        return replace(self, min=min(max(0.0, min(1.0, value)), self.max))

    def with_max(self, value: float) -> "StrokeRange":
        """Move the upper handle; it never crosses the lower one."""
        return replace(self, max=max(max(0.0, min(1.0, value)), self.min))


@dataclass(slots=True)
class MotionLimits:
    """Operator-adjustable safety limits read by every command build."""

    stroke: StrokeRange = field(default_factory=StrokeRange)
    max_speed: float = 1.0
    sample_interval_ms: int = 50

    def clamp_speed(self, speed: float) -> float:
        return max(0.0, min(speed, self.max_speed, 1.0))
