"""Core primitives for strokelink."""

from .context import SessionContext
from .ids import CommandIdAllocator
from .models import (
    LINEAR_CAPABILITY,
    CommandEnvelope,
    CommandKind,
    DeviceDescriptor,
    MotionLimits,
    StrokeRange,
)
from .protocols import CallbackType, MessageSink

__all__ = [
    "CallbackType",
    "CommandEnvelope",
    "CommandIdAllocator",
    "CommandKind",
    "DeviceDescriptor",
    "LINEAR_CAPABILITY",
    "MessageSink",
    "MotionLimits",
    "SessionContext",
    "StrokeRange",
]
