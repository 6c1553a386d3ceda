"""Shared protocol error type."""

from __future__ import annotations


class ProtocolError(ValueError):
    """Raised when a relay or hardware message cannot be interpreted."""
