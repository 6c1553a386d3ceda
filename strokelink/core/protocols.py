"""Protocol definitions for channels and callbacks."""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Protocol


CallbackType = Callable[..., Awaitable[None] | None]


class MessageSink(Protocol):
    """Minimal contract for anything that can carry outbound messages."""

    @property
    def is_open(self) -> bool:
        """Whether a message sent now would reach the channel."""
        ...

    async def send(self, message: Any) -> bool:
        """Send one message; return False when it was dropped."""
        ...
