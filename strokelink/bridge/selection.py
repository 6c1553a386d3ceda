"""Device selection policy."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Optional, Sequence

from ..core.models import DeviceDescriptor

LOGGER = logging.getLogger(__name__)


class SelectionPolicy(str, Enum):
    PREFER_LINEAR = "prefer_linear"
    """First linear-capable device, else the first device of any kind."""

    LINEAR_ONLY = "linear_only"
    """First linear-capable device, else nothing."""


class DeviceSelector:
    """Picks the device a bridge session drives."""

    def __init__(self, policy: SelectionPolicy = SelectionPolicy.PREFER_LINEAR) -> None:
        self.policy = SelectionPolicy(policy)

    def choose(self, devices: Sequence[DeviceDescriptor]) -> Optional[DeviceDescriptor]:
        if not devices:
            return None

        for device in devices:
            if device.supports_linear:
                return device

        if self.policy is SelectionPolicy.PREFER_LINEAR:
            fallback = devices[0]
            LOGGER.warning(
                "No linear-capable device found; falling back to %r (index %d)",
                fallback.name,
                fallback.index,
            )
            return fallback

        LOGGER.warning("No linear-capable device among %d device(s)", len(devices))
        return None
