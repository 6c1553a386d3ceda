"""Relay-driven session state tracking.

Both roles keep only the last state the relay pushed. Neither role advances
the state on its own; local components subscribe to transitions and adjust
what they are willing to forward or send.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Callable, Optional

LOGGER = logging.getLogger(__name__)


class Role(str, Enum):
    """Session role; the value is the relay's ``type`` query parameter."""

    BRIDGE = "client"
    CONTROLLER = "controller"


class SessionState(str, Enum):
    WAITING_PEER = "waiting_peer"
    PEER_PRESENT = "peer_present"
    PEER_DISCONNECTED = "peer_disconnected"
    WAITING_DEVICE = "waiting_device"
    DEVICE_READY = "device_ready"
    DEVICE_REMOVED = "device_removed"


# Relay wire names, including the role-specific legacy spellings.
_WIRE_STATES = {
    **{state.value: state for state in SessionState},
    "waiting_client": SessionState.WAITING_PEER,
    "waiting_controller": SessionState.WAITING_PEER,
    "client_connected": SessionState.PEER_PRESENT,
    "controller_present": SessionState.PEER_PRESENT,
    "client_disconnected": SessionState.PEER_DISCONNECTED,
    "controller_disconnected": SessionState.PEER_DISCONNECTED,
    "waiting_toy": SessionState.WAITING_DEVICE,
    "ready": SessionState.DEVICE_READY,
}

_DOCUMENTED_TRANSITIONS = {
    SessionState.WAITING_PEER: {SessionState.PEER_PRESENT},
    SessionState.PEER_PRESENT: {
        SessionState.WAITING_DEVICE,
        SessionState.DEVICE_READY,
    },
    SessionState.WAITING_DEVICE: {SessionState.DEVICE_READY},
    SessionState.DEVICE_READY: {
        SessionState.WAITING_DEVICE,
        SessionState.DEVICE_REMOVED,
    },
    SessionState.DEVICE_REMOVED: {
        SessionState.WAITING_DEVICE,
        SessionState.DEVICE_READY,
    },
    SessionState.PEER_DISCONNECTED: {
        SessionState.PEER_PRESENT,
        SessionState.WAITING_PEER,
    },
}

StateListener = Callable[[SessionState, SessionState], None]


def normalize_state(value: object) -> Optional[SessionState]:
    """Map a relay state string onto :class:`SessionState`, or ``None``."""

    if isinstance(value, SessionState):
        return value
    if not isinstance(value, str):
        return None
    return _WIRE_STATES.get(value.strip().lower())


def is_documented_transition(previous: SessionState, current: SessionState) -> bool:
    if current is SessionState.PEER_DISCONNECTED:
        return True
    return current in _DOCUMENTED_TRANSITIONS.get(previous, set())


class SessionStateTracker:
    """Passive record of the relay-reported session state."""

    def __init__(self) -> None:
        self._state = SessionState.WAITING_PEER
        self._device_index: Optional[int] = None
        self._listeners: list[StateListener] = []

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def device_index(self) -> Optional[int]:
        """Relay-reported device index; only known while ``device_ready``."""
        return self._device_index

    @property
    def device_ready(self) -> bool:
        return self._state is SessionState.DEVICE_READY

    def add_listener(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: StateListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def reset(self) -> None:
        """Return to ``waiting_peer``; called whenever the relay channel reopens."""
        self._device_index = None
        self._set(SessionState.WAITING_PEER)

    def apply(self, wire_state: object, device_index: object = None) -> Optional[SessionState]:
        """Record a relay status push.

        Returns the normalized state, or ``None`` when the value is not a
        known state (the current state is kept).
        """

        state = normalize_state(wire_state)
        if state is None:
            LOGGER.warning("Ignoring unknown session state from relay: %r", wire_state)
            return None

        if state is SessionState.DEVICE_READY:
            if isinstance(device_index, int) and not isinstance(device_index, bool):
                self._device_index = device_index
        else:
            self._device_index = None

        self._set(state)
        return state

    def _set(self, state: SessionState) -> None:
        previous = self._state
        if state is previous:
            return

        if not is_documented_transition(previous, state):
            LOGGER.debug(
                "Relay pushed undocumented transition %s -> %s", previous.value, state.value
            )

        self._state = state
        LOGGER.info("Session state %s -> %s", previous.value, state.value)

        for listener in list(self._listeners):
            try:
                listener(previous, state)
            except Exception:
                LOGGER.exception("Session state listener failed")
