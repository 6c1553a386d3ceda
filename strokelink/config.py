"""Configuration loader for strokelink."""

from __future__ import annotations

from configparser import ConfigParser
from dataclasses import dataclass
from pathlib import Path
from typing import Optional
from urllib.parse import parse_qs, urlparse

from . import constants


class ConfigurationError(RuntimeError):
    """Raised when the configuration cannot start a session."""


class SessionKeyMissingError(ConfigurationError):
    """Raised when no session key was supplied for either role."""


@dataclass(slots=True)
class SessionConfig:
    key: Optional[str] = None


@dataclass(slots=True)
class RelayConfig:
    url: str = constants.DEFAULT_RELAY_URL


@dataclass(slots=True)
class HardwareConfig:
    url: str = constants.DEFAULT_HARDWARE_URL
    client_name: str = constants.HARDWARE_CLIENT_NAME
    message_version: int = constants.HARDWARE_MESSAGE_VERSION
    reconnect: bool = True
    selection_policy: str = "prefer_linear"


@dataclass(slots=True)
class MotionConfig:
    model: str = "spring"
    stroke_min: float = 0.0
    stroke_max: float = 1.0
    max_speed: float = 1.0
    sample_interval_ms: int = constants.DEFAULT_SAMPLE_INTERVAL_MS
    frame_rate_hz: float = constants.DEFAULT_FRAME_RATE_HZ
    await_ack: bool = False


@dataclass(slots=True)
class LoggingConfig:
    level: str = "INFO"
    path: Optional[Path] = None
    log_network: bool = False


@dataclass(slots=True)
class ResilienceConfig:
    reconnect_initial_seconds: float = constants.RECONNECT_INITIAL_SECONDS
    reconnect_max_seconds: float = constants.RECONNECT_MAX_SECONDS
    reconnect_max_attempts: int = constants.RECONNECT_MAX_ATTEMPTS
    heartbeat_interval_seconds: float = constants.HEARTBEAT_INTERVAL_SECONDS
    health_enabled: bool = False
    health_host: str = "127.0.0.1"
    health_port: int = 0


@dataclass(slots=True)
class StrokeConfig:
    session: SessionConfig
    relay: RelayConfig
    hardware: HardwareConfig
    motion: MotionConfig
    logging: LoggingConfig
    resilience: ResilienceConfig
    raw: ConfigParser
    path: Path


MOTION_MODELS = ("spring", "sampled")
SELECTION_POLICIES = ("prefer_linear", "linear_only")


def _clamp_unit(value: float) -> float:
    return max(0.0, min(1.0, value))


def _get_float(parser: ConfigParser, section: str, option: str, default: float) -> float:
    try:
        return parser.getfloat(section, option, fallback=default)
    except ValueError:
        return default


def _get_int(parser: ConfigParser, section: str, option: str, default: int) -> int:
    try:
        return parser.getint(section, option, fallback=default)
    except ValueError:
        return default


def load_config(path: Optional[Path] = None) -> StrokeConfig:
    """Load configuration from disk, applying defaults where necessary."""

    config_path = path or constants.DEFAULT_CONFIG_PATH
    parser = ConfigParser()
    parser.read_dict(
        {
            "session": {},
            "relay": {
                "url": constants.DEFAULT_RELAY_URL,
            },
            "hardware": {
                "url": constants.DEFAULT_HARDWARE_URL,
                "client_name": constants.HARDWARE_CLIENT_NAME,
                "message_version": str(constants.HARDWARE_MESSAGE_VERSION),
                "reconnect": "true",
                "selection_policy": "prefer_linear",
            },
            "motion": {
                "model": "spring",
                "stroke_min": "0.0",
                "stroke_max": "1.0",
                "max_speed": "1.0",
                "sample_interval_ms": str(constants.DEFAULT_SAMPLE_INTERVAL_MS),
                "frame_rate_hz": str(constants.DEFAULT_FRAME_RATE_HZ),
                "await_ack": "false",
            },
            "logging": {
                "level": "INFO",
                "log_network": "false",
            },
            "resilience": {
                "reconnect_initial_seconds": str(constants.RECONNECT_INITIAL_SECONDS),
                "reconnect_max_seconds": str(constants.RECONNECT_MAX_SECONDS),
                "reconnect_max_attempts": str(constants.RECONNECT_MAX_ATTEMPTS),
                "heartbeat_interval_seconds": str(constants.HEARTBEAT_INTERVAL_SECONDS),
                "health_enabled": "false",
                "health_host": "127.0.0.1",
                "health_port": "0",
            },
        }
    )

    if config_path.exists():
        parser.read(config_path)

    key_value = parser.get("session", "key", fallback="").strip()
    session = SessionConfig(key=key_value or None)

    relay = RelayConfig(url=parser.get("relay", "url"))

    policy = parser.get("hardware", "selection_policy", fallback="prefer_linear").strip()
    if policy not in SELECTION_POLICIES:
        raise ConfigurationError(
            f"Unknown selection_policy {policy!r}; expected one of {', '.join(SELECTION_POLICIES)}"
        )

    hardware = HardwareConfig(
        url=parser.get("hardware", "url"),
        client_name=parser.get("hardware", "client_name"),
        message_version=_get_int(
            parser, "hardware", "message_version", constants.HARDWARE_MESSAGE_VERSION
        ),
        reconnect=parser.getboolean("hardware", "reconnect", fallback=True),
        selection_policy=policy,
    )

    model = parser.get("motion", "model", fallback="spring").strip().lower()
    if model not in MOTION_MODELS:
        raise ConfigurationError(
            f"Unknown motion model {model!r}; expected one of {', '.join(MOTION_MODELS)}"
        )

    stroke_min = _clamp_unit(_get_float(parser, "motion", "stroke_min", 0.0))
    stroke_max = _clamp_unit(_get_float(parser, "motion", "stroke_max", 1.0))
    if stroke_min > stroke_max:
        stroke_min, stroke_max = stroke_max, stroke_min

    motion = MotionConfig(
        model=model,
        stroke_min=stroke_min,
        stroke_max=stroke_max,
        max_speed=_clamp_unit(_get_float(parser, "motion", "max_speed", 1.0)),
        sample_interval_ms=max(
            constants.MIN_SAMPLE_INTERVAL_MS,
            min(
                constants.MAX_SAMPLE_INTERVAL_MS,
                _get_int(
                    parser,
                    "motion",
                    "sample_interval_ms",
                    constants.DEFAULT_SAMPLE_INTERVAL_MS,
                ),
            ),
        ),
        frame_rate_hz=max(
            1.0,
            _get_float(parser, "motion", "frame_rate_hz", constants.DEFAULT_FRAME_RATE_HZ),
        ),
        await_ack=parser.getboolean("motion", "await_ack", fallback=False),
    )

    log_path_value = parser.get("logging", "path", fallback="").strip()
    logging_config = LoggingConfig(
        level=parser.get("logging", "level", fallback="INFO"),
        path=Path(log_path_value).expanduser() if log_path_value else None,
        log_network=parser.getboolean("logging", "log_network", fallback=False),
    )

    resilience = ResilienceConfig(
        reconnect_initial_seconds=max(
            0.01,
            _get_float(
                parser,
                "resilience",
                "reconnect_initial_seconds",
                constants.RECONNECT_INITIAL_SECONDS,
            ),
        ),
        reconnect_max_seconds=max(
            0.01,
            _get_float(
                parser,
                "resilience",
                "reconnect_max_seconds",
                constants.RECONNECT_MAX_SECONDS,
            ),
        ),
        reconnect_max_attempts=max(
            0,
            _get_int(
                parser,
                "resilience",
                "reconnect_max_attempts",
                constants.RECONNECT_MAX_ATTEMPTS,
            ),
        ),
        heartbeat_interval_seconds=max(
            0.0,
            _get_float(
                parser,
                "resilience",
                "heartbeat_interval_seconds",
                constants.HEARTBEAT_INTERVAL_SECONDS,
            ),
        ),
        health_enabled=parser.getboolean("resilience", "health_enabled", fallback=False),
        health_host=parser.get("resilience", "health_host", fallback="127.0.0.1"),
        health_port=_get_int(parser, "resilience", "health_port", 0),
    )

    return StrokeConfig(
        session=session,
        relay=relay,
        hardware=hardware,
        motion=motion,
        logging=logging_config,
        resilience=resilience,
        raw=parser,
        path=config_path,
    )


def resolve_session_key(config: StrokeConfig, explicit: Optional[str] = None) -> str:
    """Return the session key from the CLI, the relay URL query, or the file.

    Raises:
        SessionKeyMissingError: If none of the sources carries a non-empty key.
    """

    if explicit and explicit.strip():
        return explicit.strip()

    query = parse_qs(urlparse(config.relay.url).query)
    for value in query.get("key", []):
        if value.strip():
            return value.strip()

    if config.session.key:
        return config.session.key

    raise SessionKeyMissingError(
        "A session key is required: pass --key, add ?key=... to the relay url, "
        "or set [session] key in the configuration file"
    )
