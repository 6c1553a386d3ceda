"""Codec for the local hardware-control endpoint.

Every request travels as a JSON array holding one object keyed by the
message name, e.g. ``[{"RequestDeviceList": {"Id": 2}}]``. Responses use
the same framing and may batch several objects in one array.
"""

from __future__ import annotations

from typing import Any, Iterator, Mapping

from ..core.models import CommandEnvelope, CommandKind
from .base import ProtocolError

# Response kinds the bridge acts on.
OK = "Ok"
ERROR = "Error"
SERVER_INFO = "ServerInfo"
DEVICE_LIST = "DeviceList"
DEVICE_ADDED = "DeviceAdded"
DEVICE_REMOVED = "DeviceRemoved"

REQUEST_SERVER_INFO = "RequestServerInfo"
REQUEST_DEVICE_LIST = "RequestDeviceList"
LINEAR_CMD = "LinearCmd"
STOP_DEVICE_CMD = "StopDeviceCmd"


def _wrap(name: str, body: dict[str, Any]) -> list[dict[str, Any]]:
    return [{name: body}]


def request_server_info(
    message_id: int, client_name: str, message_version: int
) -> list[dict[str, Any]]:
    return _wrap(
        REQUEST_SERVER_INFO,
        {
            "Id": message_id,
            "ClientName": client_name,
            "MessageVersion": message_version,
        },
    )


def request_device_list(message_id: int) -> list[dict[str, Any]]:
    return _wrap(REQUEST_DEVICE_LIST, {"Id": message_id})


def linear_cmd(
    message_id: int,
    device_index: int,
    position: float,
    duration_ms: int,
    *,
    vector_index: int = 0,
) -> list[dict[str, Any]]:
    return _wrap(
        LINEAR_CMD,
        {
            "Id": message_id,
            "DeviceIndex": device_index,
            "Vectors": [
                {
                    "Index": vector_index,
                    "Duration": int(duration_ms),
                    "Position": float(position),
                }
            ],
        },
    )


def stop_device_cmd(message_id: int, device_index: int) -> list[dict[str, Any]]:
    return _wrap(STOP_DEVICE_CMD, {"Id": message_id, "DeviceIndex": device_index})


def encode_command(command: CommandEnvelope) -> list[dict[str, Any]]:
    """Render a :class:`CommandEnvelope` in hardware wire form."""

    if command.kind is CommandKind.STOP:
        return stop_device_cmd(command.id, command.device_index)

    assert command.position is not None and command.duration_ms is not None
    return linear_cmd(
        command.id, command.device_index, command.position, command.duration_ms
    )


def iter_hardware_messages(payload: Any) -> Iterator[tuple[str, Mapping[str, Any]]]:
    """Yield ``(kind, body)`` for each object in a hardware frame.

    Raises:
        ProtocolError: If the frame is not an array of single-key objects.
    """

    if isinstance(payload, Mapping):
        payload = [payload]

    if not isinstance(payload, list):
        raise ProtocolError(f"Hardware frame must be a JSON array, got {type(payload).__name__}")

    for container in payload:
        if not isinstance(container, Mapping) or len(container) != 1:
            raise ProtocolError(f"Malformed hardware message container: {container!r}")

        ((kind, body),) = container.items()
        if not isinstance(body, Mapping):
            raise ProtocolError(f"Hardware message {kind!r} has a non-object body")
        yield str(kind), body


def message_id(body: Mapping[str, Any]) -> int | None:
    value = body.get("Id")
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return None
