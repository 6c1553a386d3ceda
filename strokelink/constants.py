"""Constants used across the strokelink package."""

from __future__ import annotations

from pathlib import Path

APP_NAME = "strokelink"
DEFAULT_CONFIG_FILENAME = f"{APP_NAME}.cfg"
DEFAULT_CONFIG_PATH = Path.home() / ".config" / APP_NAME / DEFAULT_CONFIG_FILENAME

DEFAULT_LOG_PATH = Path.home() / ".local" / "state" / APP_NAME / f"{APP_NAME}.log"

DEFAULT_RELAY_URL = "ws://localhost:8080/ws"
DEFAULT_HARDWARE_URL = "ws://localhost:12345"

HARDWARE_CLIENT_NAME = "WebToyClient"
HARDWARE_MESSAGE_VERSION = 3

# Id 1 belongs to the handshake; ordinary commands start after it.
HANDSHAKE_MESSAGE_ID = 1
FIRST_COMMAND_ID = 2
# Relayed command ids remembered for mapping hardware acks back to the controller.
RELAYED_ID_MEMORY = 256

RECONNECT_INITIAL_SECONDS = 1.0
RECONNECT_MAX_SECONDS = 30.0
RECONNECT_MAX_ATTEMPTS = 10
HEARTBEAT_INTERVAL_SECONDS = 10.0

DEFAULT_FRAME_RATE_HZ = 60.0
DEFAULT_SAMPLE_INTERVAL_MS = 50
MIN_SAMPLE_INTERVAL_MS = 10
MAX_SAMPLE_INTERVAL_MS = 1000

# Fixed move duration for each spring/damper command pair.
SPRING_MOVE_DURATION_MS = 50
MOMENTUM_TICK_HZ = 50.0
