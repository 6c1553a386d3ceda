"""Codec for messages exchanged with the relay."""

from __future__ import annotations

import json
from typing import Any, Iterator, Mapping, Optional

from ..core.models import CommandEnvelope
from .base import ProtocolError
from .hardware import encode_command

STATUS = "status"
COMMAND_OK = "command_ok"
SET_DEVICE_INDEX = "setDeviceIndex"
CONTROL = "control"
STOP = "stop"
PING = "ping"
PONG = "pong"

HEARTBEAT_TYPES = frozenset({PING, PONG})


def status(state: str, device_index: Optional[int] = None) -> dict[str, Any]:
    message: dict[str, Any] = {"type": STATUS, "state": state}
    if device_index is not None:
        message["deviceIndex"] = device_index
    return message


def command_ok(message_id: int) -> dict[str, Any]:
    return {"type": COMMAND_OK, "id": message_id}


def set_device_index(index: Optional[int]) -> dict[str, Any]:
    return {"type": SET_DEVICE_INDEX, "index": index}


def control(
    position: float,
    speed: float,
    sample_interval_ms: int,
    *,
    is_final: bool = False,
) -> dict[str, Any]:
    message: dict[str, Any] = {
        "type": CONTROL,
        "position": float(position),
        "speed": float(speed),
        "sampleIntervalMs": int(sample_interval_ms),
    }
    if is_final:
        message["isFinal"] = True
    return message


def stop() -> dict[str, Any]:
    return {"type": STOP}


def ping() -> dict[str, Any]:
    return {"type": PING}


def command_batch(*commands: CommandEnvelope) -> dict[str, Any]:
    """Serialize hardware commands into the ``{"commands": [...]}`` framing."""

    return {
        "commands": [
            json.dumps(encode_command(command), separators=(",", ":"))
            for command in commands
        ]
    }


def is_heartbeat(message: Any) -> bool:
    """Heartbeats are recognised by shape and never reach business logic."""

    if not isinstance(message, Mapping):
        return False
    if message.get("type") in HEARTBEAT_TYPES:
        return True
    return set(message) == {"commands"} and message.get("commands") == []


def iter_relay_messages(payload: Any) -> Iterator[Any]:
    """Flatten the relay's array framing into individual messages."""

    if isinstance(payload, list):
        yield from payload
    else:
        yield payload


def message_type(message: Any) -> Optional[str]:
    """Return the ``type`` field, or ``None`` when the message has none.

    Raises:
        ProtocolError: If ``type`` is present but not a string.
    """

    if not isinstance(message, Mapping) or "type" not in message:
        return None
    value = message["type"]
    if not isinstance(value, str):
        raise ProtocolError(f"Relay message type must be a string: {value!r}")
    return value
