"""Controller role: pointer input, motion smoothing and command framing."""

from .console import ConsoleCommandError, OperatorConsole
from .engine import MotionControlEngine
from .input import InputSurface
from .smoothing import (
    CommandFraming,
    MotionOutput,
    MotionSmoother,
    SampledVelocitySmoother,
    SpringDamperSmoother,
    build_smoother,
)

__all__ = [
    "CommandFraming",
    "ConsoleCommandError",
    "InputSurface",
    "MotionControlEngine",
    "MotionOutput",
    "MotionSmoother",
    "OperatorConsole",
    "SampledVelocitySmoother",
    "SpringDamperSmoother",
    "build_smoother",
]
