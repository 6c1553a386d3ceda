"""Bridge-side handshake, device selection and command relay.

:class:`DeviceBridge` holds no I/O. Each handler applies one event (a relay
frame, a hardware frame, a channel opening or closing) to the bridge state
and returns the messages that should go out as a list of :class:`Outbound`
effects; the application sends them on the matching channel.

The bridge forwards every motion command it receives while a device is
selected and reports every hardware acknowledgment back to the relay. It
does not pace or buffer commands: the controller side owns pacing.

Hardware ids belong to the bridge session. Relayed commands are re-stamped
from the bridge allocator before they go out, and the matching ``Ok`` is
reported to the relay under the id the controller used.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Mapping, Optional, Sequence

from .. import constants
from ..core.context import SessionContext
from ..core.models import CommandEnvelope, CommandKind, DeviceDescriptor
from ..protocol import hardware, relay
from ..protocol.base import ProtocolError
from .selection import DeviceSelector
from .translate import ControlTranslator

LOGGER = logging.getLogger(__name__)


class Channel(str, Enum):
    RELAY = "relay"
    HARDWARE = "hardware"


@dataclass(slots=True, frozen=True)
class Outbound:
    """One message the bridge wants sent; ``payload`` is JSON-ready data."""

    channel: Channel
    payload: Any


class BridgeStatus(str, Enum):
    AWAITING_HARDWARE = "awaiting_hardware"
    HANDSHAKING = "handshaking"
    HANDSHAKE_FAILED = "handshake_failed"
    SCANNING = "scanning"
    DEVICE_READY = "device_ready"
    NO_DEVICE = "no_device"
    TARGET_REMOVED = "target_removed"
    HARDWARE_DISCONNECTED = "hardware_disconnected"


StatusListener = Callable[[BridgeStatus, BridgeStatus], None]


class DeviceBridge:
    """State machine for the bridge role."""

    def __init__(
        self,
        context: SessionContext,
        *,
        selector: Optional[DeviceSelector] = None,
        client_name: str = constants.HARDWARE_CLIENT_NAME,
        message_version: int = constants.HARDWARE_MESSAGE_VERSION,
    ) -> None:
        self._context = context
        self._selector = selector or DeviceSelector()
        self._client_name = client_name
        self._message_version = message_version
        self._translator = ControlTranslator()

        self._status = BridgeStatus.AWAITING_HARDWARE
        self._status_listeners: list[StatusListener] = []
        self._hardware_open = False
        self._inventory: dict[int, DeviceDescriptor] = {}
        self._selected: Optional[DeviceDescriptor] = None
        self._relayed_ids: dict[int, int] = {}
        self._forwarded = 0
        self._acknowledged = 0

        self._hardware_handlers: dict[str, Callable[[Mapping[str, Any]], list[Outbound]]] = {
            hardware.OK: self._on_ok,
            hardware.ERROR: self._on_error,
            hardware.SERVER_INFO: self._on_server_info,
            hardware.DEVICE_LIST: self._on_device_list,
            hardware.DEVICE_ADDED: self._on_device_added,
            hardware.DEVICE_REMOVED: self._on_device_removed,
        }

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------
    @property
    def status(self) -> BridgeStatus:
        return self._status

    @property
    def selected_device(self) -> Optional[DeviceDescriptor]:
        return self._selected

    @property
    def inventory(self) -> list[DeviceDescriptor]:
        return list(self._inventory.values())

    @property
    def forwarded_count(self) -> int:
        return self._forwarded

    @property
    def acknowledged_count(self) -> int:
        return self._acknowledged

    def add_status_listener(self, listener: StatusListener) -> None:
        self._status_listeners.append(listener)

    # ------------------------------------------------------------------
    # Channel lifecycle
    # ------------------------------------------------------------------
    def on_relay_open(self) -> list[Outbound]:
        """The relay forgets our selection on reconnect, so announce it again."""

        self._context.tracker.reset()
        if self._selected is None:
            return []
        return [self._to_relay(relay.set_device_index(self._selected.index))]

    def on_hardware_open(self) -> list[Outbound]:
        self._hardware_open = True
        self._set_status(BridgeStatus.HANDSHAKING)
        LOGGER.info("Hardware channel open, sending handshake")
        return [
            self._to_hardware(
                hardware.request_server_info(
                    constants.HANDSHAKE_MESSAGE_ID,
                    self._client_name,
                    self._message_version,
                )
            )
        ]

    def on_hardware_closed(self) -> list[Outbound]:
        self._hardware_open = False
        self._inventory.clear()
        self._relayed_ids.clear()
        effects = self._clear_selection()
        self._set_status(BridgeStatus.HARDWARE_DISCONNECTED)
        return effects

    # ------------------------------------------------------------------
    # Hardware traffic
    # ------------------------------------------------------------------
    def on_hardware_message(self, payload: Any) -> list[Outbound]:
        try:
            messages = list(hardware.iter_hardware_messages(payload))
        except ProtocolError as exc:
            LOGGER.warning("Discarding hardware frame: %s", exc)
            return []

        effects: list[Outbound] = []
        for kind, body in messages:
            handler = self._hardware_handlers.get(kind)
            if handler is None:
                LOGGER.debug("Ignoring hardware message %s", kind)
                continue
            effects.extend(handler(body))
        return effects

    def _on_ok(self, body: Mapping[str, Any]) -> list[Outbound]:
        message_id = hardware.message_id(body)
        if message_id is None:
            LOGGER.warning("Hardware Ok without an Id: %r", body)
            return []

        self._acknowledged += 1
        reported = self._relayed_ids.pop(message_id, message_id)
        LOGGER.debug("Hardware acknowledged command %d (reported as %d)", message_id, reported)
        return [self._to_relay(relay.command_ok(reported))]

    def _on_error(self, body: Mapping[str, Any]) -> list[Outbound]:
        message_id = hardware.message_id(body)
        relayed_id = self._relayed_ids.pop(message_id, None) if message_id is not None else None
        LOGGER.error(
            "Hardware error for Id %s (relayed id %s): %s (code %s)",
            message_id,
            relayed_id,
            body.get("ErrorMessage"),
            body.get("ErrorCode"),
        )
        if message_id == constants.HANDSHAKE_MESSAGE_ID:
            self._set_status(BridgeStatus.HANDSHAKE_FAILED)
        return []

    def _on_server_info(self, body: Mapping[str, Any]) -> list[Outbound]:
        LOGGER.info(
            "Hardware server %s (message version %s); requesting device list",
            body.get("ServerName"),
            body.get("MessageVersion"),
        )
        self._set_status(BridgeStatus.SCANNING)
        return [self._to_hardware(hardware.request_device_list(self._context.ids.next()))]

    def _on_device_list(self, body: Mapping[str, Any]) -> list[Outbound]:
        entries = body.get("Devices")
        if not isinstance(entries, list):
            LOGGER.warning("DeviceList without a Devices array: %r", body)
            entries = []

        devices = self._parse_devices(entries)
        self._inventory = {device.index: device for device in devices}
        LOGGER.info("Hardware reported %d device(s)", len(devices))
        return self._apply_selection(devices)

    def _on_device_added(self, body: Mapping[str, Any]) -> list[Outbound]:
        devices = self._parse_devices([body])
        if not devices:
            return []

        device = devices[0]
        self._inventory[device.index] = device
        LOGGER.info("Device added: %s (index %d)", device.name, device.index)
        if self._selected is not None:
            return []
        return self._apply_selection(devices)

    def _on_device_removed(self, body: Mapping[str, Any]) -> list[Outbound]:
        index = body.get("DeviceIndex")
        if isinstance(index, bool) or not isinstance(index, int):
            LOGGER.warning("DeviceRemoved without integer DeviceIndex: %r", body)
            return []
        self._inventory.pop(index, None)
        LOGGER.info("Device removed: index %s", index)

        if self._selected is None or self._selected.index != index:
            return []

        LOGGER.warning("Selected device %d was removed", index)
        effects = self._clear_selection()
        self._set_status(BridgeStatus.TARGET_REMOVED)
        return effects

    # ------------------------------------------------------------------
    # Relay traffic
    # ------------------------------------------------------------------
    def on_relay_message(self, payload: Any) -> list[Outbound]:
        if isinstance(payload, list) and payload and not any(
            isinstance(item, Mapping) and "type" in item for item in payload
        ):
            # A complete hardware frame.
            return self._forward_relayed(payload)

        effects: list[Outbound] = []
        for message in relay.iter_relay_messages(payload):
            effects.extend(self._handle_relay_item(message))
        return effects

    def _handle_relay_item(self, message: Any) -> list[Outbound]:
        if not isinstance(message, Mapping):
            LOGGER.warning("Discarding relay message that is not an object: %r", message)
            return []

        if relay.is_heartbeat(message):
            return []

        try:
            message_type = relay.message_type(message)
        except ProtocolError as exc:
            LOGGER.warning("Discarding relay message: %s", exc)
            return []

        if message_type is None:
            commands = message.get("commands")
            if isinstance(commands, list):
                effects: list[Outbound] = []
                for command in commands:
                    effects.extend(self._forward_relayed(command))
                return effects
            return self._forward_relayed([dict(message)])

        if message_type == relay.STATUS:
            self._context.tracker.apply(message.get("state"), message.get("deviceIndex"))
            return []

        if message_type == relay.CONTROL:
            return self._translate_control(message)

        if message_type == relay.STOP:
            return self._build_and_forward(CommandKind.STOP)

        LOGGER.warning("Discarding relay message with unknown type %r", message_type)
        return []

    def _translate_control(self, message: Mapping[str, Any]) -> list[Outbound]:
        try:
            position = float(message["position"])
            speed = float(message.get("speed", 0.0))
        except (KeyError, TypeError, ValueError):
            LOGGER.warning("Discarding malformed control message: %r", message)
            return []

        if not self._may_build(CommandKind.MOVE):
            return []

        move = self._translator.translate(
            position, speed, is_final=bool(message.get("isFinal", False))
        )
        return self._build_and_forward(
            CommandKind.MOVE, position=move.position, duration_ms=move.duration_ms
        )

    def _build_and_forward(
        self,
        kind: CommandKind,
        *,
        position: Optional[float] = None,
        duration_ms: Optional[int] = None,
    ) -> list[Outbound]:
        if not self._may_build(kind):
            return []

        assert self._selected is not None
        command = CommandEnvelope(
            id=self._context.ids.next(),
            device_index=self._selected.index,
            kind=kind,
            position=position,
            duration_ms=duration_ms,
        )
        return self._forward(hardware.encode_command(command))

    def _forward_relayed(self, command: Any) -> list[Outbound]:
        """Forward one relayed hardware frame under fresh bridge ids."""

        if not self._can_forward():
            return []

        frame = command
        if isinstance(frame, str):
            try:
                frame = json.loads(frame)
            except json.JSONDecodeError:
                LOGGER.warning("Discarding relayed command that is not JSON: %.200s", command)
                return []

        try:
            messages = list(hardware.iter_hardware_messages(frame))
        except ProtocolError as exc:
            LOGGER.warning("Discarding relayed command: %s", exc)
            return []
        if not messages:
            return []

        stamped: list[dict[str, Any]] = []
        for kind, body in messages:
            bridge_id = self._context.ids.next()
            relayed_id = hardware.message_id(body)
            if relayed_id is not None:
                self._remember_relayed_id(bridge_id, relayed_id)
            stamped.append({kind: {**body, "Id": bridge_id}})
        return self._forward(stamped)

    def _may_build(self, kind: CommandKind) -> bool:
        """Bridge-built commands address a device only while the relay says ``device_ready``."""

        tracker = self._context.tracker
        if not tracker.device_ready:
            LOGGER.warning("Session is %s; dropping %s command", tracker.state.value, kind.value)
            return False
        return self._can_forward()

    def _can_forward(self) -> bool:
        if self._selected is None:
            LOGGER.warning("No device selected; dropping command")
            return False
        if not self._hardware_open:
            LOGGER.warning("Hardware channel not open; dropping command")
            return False
        return True

    def _forward(self, payload: Any) -> list[Outbound]:
        self._forwarded += 1
        return [self._to_hardware(payload)]

    def _remember_relayed_id(self, bridge_id: int, relayed_id: int) -> None:
        self._relayed_ids[bridge_id] = relayed_id
        while len(self._relayed_ids) > constants.RELAYED_ID_MEMORY:
            del self._relayed_ids[next(iter(self._relayed_ids))]

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _apply_selection(self, devices: Sequence[DeviceDescriptor]) -> list[Outbound]:
        if self._selected is not None:
            LOGGER.debug(
                "Device %d already selected; ignoring new inventory", self._selected.index
            )
            return []

        choice = self._selector.choose(devices)
        if choice is None:
            self._set_status(BridgeStatus.NO_DEVICE)
            return []

        self._selected = choice
        self._translator.reset()
        LOGGER.info("Selected device %s (index %d)", choice.name, choice.index)
        self._set_status(BridgeStatus.DEVICE_READY)
        return [self._to_relay(relay.set_device_index(choice.index))]

    def _clear_selection(self) -> list[Outbound]:
        if self._selected is None:
            return []
        self._selected = None
        self._translator.reset()
        return [self._to_relay(relay.set_device_index(None))]

    @staticmethod
    def _parse_devices(entries: Sequence[Any]) -> list[DeviceDescriptor]:
        devices: list[DeviceDescriptor] = []
        for entry in entries:
            if not isinstance(entry, Mapping):
                LOGGER.warning("Skipping malformed device entry: %r", entry)
                continue
            try:
                devices.append(DeviceDescriptor.from_message(entry))
            except ValueError as exc:
                LOGGER.warning("Skipping device entry: %s", exc)
        return devices

    def _set_status(self, status: BridgeStatus) -> None:
        previous = self._status
        if status is previous:
            return
        self._status = status
        LOGGER.info("Bridge status %s -> %s", previous.value, status.value)
        for listener in list(self._status_listeners):
            try:
                listener(previous, status)
            except Exception:
                LOGGER.exception("Bridge status listener failed")

    @staticmethod
    def _to_relay(payload: Any) -> Outbound:
        return Outbound(Channel.RELAY, payload)

    @staticmethod
    def _to_hardware(payload: Any) -> Outbound:
        return Outbound(Channel.HARDWARE, payload)
