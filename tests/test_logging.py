import logging
from pathlib import Path

import pytest

from strokelink.logging import LOG_FORMAT, NETWORK_LOGGERS, configure_logging


@pytest.fixture
def restore_logging():
    root = logging.getLogger()
    level = root.level
    network_levels = {name: logging.getLogger(name).level for name in NETWORK_LOGGERS}

    yield root

    for handler in list(root.handlers):
        formatter = handler.formatter
        if formatter is not None and formatter._fmt == LOG_FORMAT:
            root.removeHandler(handler)
            handler.close()
    root.setLevel(level)
    for name, network_level in network_levels.items():
        logging.getLogger(name).setLevel(network_level)


def test_configure_logging_writes_session_log_file(tmp_path: Path, restore_logging):
    log_path = tmp_path / "state" / "strokelink.log"

    configure_logging("debug", log_path=log_path)
    logging.getLogger("strokelink.bridge").debug("Selected device %s", "Stroker")
    for handler in restore_logging.handlers:
        handler.flush()

    assert restore_logging.level == logging.DEBUG
    line = log_path.read_text(encoding="utf-8").strip()
    assert line.endswith("| DEBUG | strokelink.bridge | Selected device Stroker")


def test_network_loggers_are_quiet_unless_requested(restore_logging):
    configure_logging("info")
    assert all(logging.getLogger(name).level == logging.WARNING for name in NETWORK_LOGGERS)

    configure_logging("info", log_network=True)
    assert all(logging.getLogger(name).level == logging.NOTSET for name in NETWORK_LOGGERS)


def test_unknown_level_falls_back_to_info(restore_logging):
    configure_logging("chatty")

    assert restore_logging.level == logging.INFO
