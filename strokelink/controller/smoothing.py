"""Motion smoothing models for the controller.

Both models take the same inputs (press, move and release with a timestamp,
plus clock ticks) and produce :class:`MotionOutput` values holding a
normalized position and speed. They never see stroke or speed limits and
never build commands; the engine does that as the last step.

``SpringDamperSmoother`` runs a spring/damper simulation once per frame and
emits on every frame while it moves. ``SampledVelocitySmoother`` records
frame-rate samples while dragging, emits once per send interval with the
measured speed, and can coast after release with a decaying momentum.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Deque, Optional

LOGGER = logging.getLogger(__name__)


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


class CommandFraming(str, Enum):
    COMMAND_PAIR = "commands"
    """Serialized stop/move hardware pair built by the controller."""

    CONTROL = "control"
    """Position/speed frame the relay turns into a hardware move."""


@dataclass(slots=True, frozen=True)
class MotionOutput:
    position: float
    speed: float
    is_final: bool = False


class MotionSmoother(ABC):
    """Common contract of the interchangeable smoothing models."""

    name: str = ""
    framing: CommandFraming = CommandFraming.CONTROL
    uses_send_interval: bool = False

    @property
    @abstractmethod
    def dragging(self) -> bool: ...

    @property
    @abstractmethod
    def needs_frames(self) -> bool:
        """Whether the engine should keep delivering frame ticks."""

    @property
    def momentum_active(self) -> bool:
        return False

    @abstractmethod
    def press(self, target: float, now: float) -> None: ...

    @abstractmethod
    def move(self, target: float, now: float) -> None: ...

    @abstractmethod
    def release(self, now: float) -> list[MotionOutput]: ...

    @abstractmethod
    def on_frame(self, now: float) -> list[MotionOutput]: ...

    def on_send_interval(self, now: float) -> list[MotionOutput]:
        return []

    def on_momentum_tick(self, dt: Optional[float] = None) -> list[MotionOutput]:
        return []

    def cancel_momentum(self) -> None:
        return None


@dataclass(slots=True, frozen=True)
class SpringConstants:
    spring: float = 0.1
    friction: float = 0.85
    max_velocity: float = 0.1
    duration_ms: int = 50
    rest_tolerance: float = 1e-4


class SpringDamperSmoother(MotionSmoother):
    """Virtual actuator pulled towards the pointer by a damped spring."""

    name = "spring"
    framing = CommandFraming.COMMAND_PAIR

    def __init__(self, constants: Optional[SpringConstants] = None) -> None:
        self.constants = constants or SpringConstants()
        self.position = 0.5
        self.velocity = 0.0
        self.target = 0.5
        self.last_force = 0.0
        self._dragging = False

    @property
    def dragging(self) -> bool:
        return self._dragging

    @property
    def at_rest(self) -> bool:
        tolerance = self.constants.rest_tolerance
        return abs(self.velocity) < tolerance and abs(self.target - self.position) < tolerance

    @property
    def needs_frames(self) -> bool:
        return self._dragging or not self.at_rest

    def press(self, target: float, now: float) -> None:
        self._dragging = True
        self.target = _clamp(target)

    def move(self, target: float, now: float) -> None:
        if self._dragging:
            self.target = _clamp(target)

    def release(self, now: float) -> list[MotionOutput]:
        # The simulation keeps running until the residual motion dies out.
        self._dragging = False
        return []

    def step(self) -> float:
        """Advance the simulation by one frame and return the spring force."""

        c = self.constants
        force = (self.target - self.position) * c.spring
        velocity = (self.velocity + force) * c.friction
        self.velocity = _clamp(velocity, -c.max_velocity, c.max_velocity)
        self.position = _clamp(self.position + self.velocity)
        self.last_force = force
        return force

    def on_frame(self, now: float) -> list[MotionOutput]:
        if not self.needs_frames:
            return []
        self.step()
        speed = min(1.0, abs(self.velocity) / self.constants.max_velocity)
        return [MotionOutput(position=self.position, speed=speed)]


@dataclass(slots=True, frozen=True)
class SampledConstants:
    buffer_size: int = 5
    reference_max_speed: float = 5.0
    min_speed: float = 0.05
    momentum_threshold: float = 0.3
    momentum_decay: float = 0.95
    momentum_stop_speed: float = 0.02
    momentum_hz: float = 50.0
    final_speed: float = 0.05


@dataclass(slots=True)
class _Momentum:
    position: float
    speed: float
    direction: int


class SampledVelocitySmoother(MotionSmoother):
    """Velocity measured over a short sample window, with release momentum."""

    name = "sampled"
    framing = CommandFraming.CONTROL
    uses_send_interval = True

    def __init__(self, constants: Optional[SampledConstants] = None) -> None:
        self.constants = constants or SampledConstants()
        self._samples: Deque[tuple[float, float]] = deque(maxlen=self.constants.buffer_size)
        self._target = 0.5
        self._dragging = False
        self._last_speed = 0.0
        self._direction = 0
        self._momentum: Optional[_Momentum] = None

    @property
    def dragging(self) -> bool:
        return self._dragging

    @property
    def needs_frames(self) -> bool:
        return self._dragging

    @property
    def momentum_active(self) -> bool:
        return self._momentum is not None

    @property
    def last_speed(self) -> float:
        """Last measured speed, floored but not yet capped or limited."""
        return self._last_speed

    @property
    def samples(self) -> list[tuple[float, float]]:
        return list(self._samples)

    @property
    def momentum_position(self) -> Optional[float]:
        return self._momentum.position if self._momentum is not None else None

    def press(self, target: float, now: float) -> None:
        self.cancel_momentum()
        self._samples.clear()
        self._target = _clamp(target)
        self._dragging = True
        self._last_speed = 0.0
        self._direction = 0
        self._samples.append((now, self._target))

    def move(self, target: float, now: float) -> None:
        if self._dragging:
            self._target = _clamp(target)

    def on_frame(self, now: float) -> list[MotionOutput]:
        if self._dragging:
            self._samples.append((now, self._target))
        return []

    def on_send_interval(self, now: float) -> list[MotionOutput]:
        if not self._dragging or not self._samples:
            return []
        speed = self._measure()
        latest = self._samples[-1][1]
        return [MotionOutput(position=latest, speed=min(1.0, speed))]

    def release(self, now: float) -> list[MotionOutput]:
        if not self._dragging:
            return []
        self._dragging = False

        position = self._samples[-1][1] if self._samples else self._target
        c = self.constants
        if self._last_speed > c.momentum_threshold and self._direction != 0:
            self._momentum = _Momentum(
                position=position, speed=self._last_speed, direction=self._direction
            )
            LOGGER.debug(
                "Starting momentum at %.3f, speed %.3f, direction %+d",
                position,
                self._last_speed,
                self._direction,
            )
            return []

        return [MotionOutput(position=position, speed=c.final_speed, is_final=True)]

    def on_momentum_tick(self, dt: Optional[float] = None) -> list[MotionOutput]:
        momentum = self._momentum
        if momentum is None:
            return []

        c = self.constants
        step = dt if dt is not None else 1.0 / c.momentum_hz
        momentum.position = _clamp(momentum.position + momentum.direction * momentum.speed * step)
        momentum.speed *= c.momentum_decay

        if (
            momentum.speed < c.momentum_stop_speed
            or momentum.position <= 0.0
            or momentum.position >= 1.0
        ):
            self._momentum = None
            return [MotionOutput(position=momentum.position, speed=c.final_speed, is_final=True)]

        return [MotionOutput(position=momentum.position, speed=min(1.0, momentum.speed))]

    def cancel_momentum(self) -> None:
        self._momentum = None

    def _measure(self) -> float:
        if len(self._samples) < 2:
            self._last_speed = 0.0
            return 0.0

        oldest_time, oldest_position = self._samples[0]
        latest_time, latest_position = self._samples[-1]
        elapsed = latest_time - oldest_time
        delta = latest_position - oldest_position

        speed = 0.0
        if elapsed > 0:
            speed = abs(delta) / elapsed / self.constants.reference_max_speed
        if speed > 0:
            speed = max(speed, self.constants.min_speed)
        if delta:
            self._direction = 1 if delta > 0 else -1

        self._last_speed = speed
        return speed


def build_smoother(model: str) -> MotionSmoother:
    """Create the smoother named by the ``[motion] model`` setting."""

    if model == SpringDamperSmoother.name:
        return SpringDamperSmoother()
    if model == SampledVelocitySmoother.name:
        return SampledVelocitySmoother()
    raise ValueError(f"Unknown motion model: {model!r}")
