"""Command-line interface for strokelink."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional

from . import constants
from .app import BridgeApp, ControllerApp
from .config import (
    MOTION_MODELS,
    ConfigurationError,
    SessionKeyMissingError,
    StrokeConfig,
    load_config,
    resolve_session_key,
)

LOGGER = logging.getLogger(__name__)

EXIT_USAGE = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="strokelink", description="Relay-mediated remote control for linear actuators"
    )
    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=constants.DEFAULT_CONFIG_PATH,
        help=f"Path to configuration file (default: {constants.DEFAULT_CONFIG_PATH})",
    )

    session_options = argparse.ArgumentParser(add_help=False)
    session_options.add_argument("--key", help="Session key shared by both roles")
    session_options.add_argument("--relay-url", help="Relay websocket URL")

    subparsers = parser.add_subparsers(dest="command", required=True)

    bridge_parser = subparsers.add_parser(
        "bridge",
        parents=[session_options],
        help="Connect the local hardware-control endpoint to a session",
    )
    bridge_parser.add_argument("--hardware-url", help="Hardware-control websocket URL")

    controller_parser = subparsers.add_parser(
        "controller",
        parents=[session_options],
        help="Drive a session's device from the operator console",
    )
    controller_parser.add_argument(
        "--model", choices=MOTION_MODELS, help="Motion smoothing model"
    )

    subparsers.add_parser("show-config", help="Print the resolved configuration and exit")

    return parser


def _apply_overrides(config: StrokeConfig, args: argparse.Namespace) -> None:
    relay_url = getattr(args, "relay_url", None)
    if relay_url:
        config.relay.url = relay_url
    hardware_url = getattr(args, "hardware_url", None)
    if hardware_url:
        config.hardware.url = hardware_url
    model = getattr(args, "model", None)
    if model:
        config.motion.model = model


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)
    except ConfigurationError as exc:
        print(f"strokelink: {exc}", file=sys.stderr)
        return EXIT_USAGE

    _apply_overrides(config, args)

    if args.command == "show-config":
        print(f"Configuration loaded from {config.path!s}\n")
        for section in config.raw.sections():
            print(f"[{section}]")
            for key, value in config.raw[section].items():
                print(f"{key} = {value}")
            print()
        return 0

    try:
        key = resolve_session_key(config, args.key)
    except SessionKeyMissingError as exc:
        print(f"strokelink: {exc}", file=sys.stderr)
        return EXIT_USAGE

    if args.command == "bridge":
        return BridgeApp.start(config, key=key)

    if args.command == "controller":
        return ControllerApp.start(config, key=key)

    LOGGER.error("Unknown command: %s", args.command)
    return 1


if __name__ == "__main__":
    sys.exit(main())
