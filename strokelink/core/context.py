"""Per-session context handed to every component."""

from __future__ import annotations

from dataclasses import dataclass, field

from ..session import Role, SessionStateTracker
from .ids import CommandIdAllocator
from .models import MotionLimits


@dataclass(slots=True)
class SessionContext:
    """Everything one bridge or controller session shares between components."""

    key: str
    role: Role
    tracker: SessionStateTracker = field(default_factory=SessionStateTracker)
    ids: CommandIdAllocator = field(default_factory=CommandIdAllocator)
    limits: MotionLimits = field(default_factory=MotionLimits)

    def __post_init__(self) -> None:
        if not self.key:
            raise ValueError("Session key must not be empty")
