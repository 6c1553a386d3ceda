"""Process-wide logging setup for the bridge and controller.

Both roles log to the console, optionally mirrored to a file. At INFO a
session shows connection changes, relay session states and device
selection; per-frame motion traffic is DEBUG. The aiohttp client and
websocket loggers stay at WARNING unless ``log_network`` asks for the wire
detail.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

NETWORK_LOGGERS = ("aiohttp.access", "aiohttp.client", "aiohttp.websocket")


def configure_logging(
    level: str = "INFO", *, log_path: Optional[Path] = None, log_network: bool = False
) -> None:
    """Replace the root handlers with strokelink's console (and file) output.

    An unknown ``level`` name falls back to INFO. ``log_path`` gets its
    parent directories created.
    """

    logging.captureWarnings(True)

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
    )

    if log_path:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(file_handler)

    network_level = logging.NOTSET if log_network else logging.WARNING
    for name in NETWORK_LOGGERS:
        logging.getLogger(name).setLevel(network_level)
