"""Bridge role: hardware handshake, device selection and command relay."""

from .device_bridge import BridgeStatus, Channel, DeviceBridge, Outbound
from .selection import DeviceSelector, SelectionPolicy
from .translate import ControlTranslator, LinearMove

__all__ = [
    "BridgeStatus",
    "Channel",
    "ControlTranslator",
    "DeviceBridge",
    "DeviceSelector",
    "LinearMove",
    "Outbound",
    "SelectionPolicy",
]
