"""Wire codecs for the relay and the hardware-control endpoint."""

from . import hardware, relay
from .base import ProtocolError

__all__ = ["ProtocolError", "hardware", "relay"]
