"""Command id allocation."""

from __future__ import annotations

from .. import constants


class CommandIdAllocator:
    """Hands out strictly increasing command ids for one session.

    Id 1 is the handshake correlation id and is never returned here.
    """

    def __init__(self, start: int = constants.FIRST_COMMAND_ID) -> None:
        if start <= constants.HANDSHAKE_MESSAGE_ID:
            raise ValueError("Command ids must start after the handshake id")
        self._next = start
        self._last: int | None = None

    @property
    def last(self) -> int | None:
        return self._last

    def next(self) -> int:
        value = self._next
        self._next += 1
        self._last = value
        return value
