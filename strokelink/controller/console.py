"""Line-oriented operator console for the controller role.

Each line on standard input is one command::

    down Y        begin a drag at surface coordinate Y (0 = top)
    move Y        move the pointer to Y
    up            release the pointer
    range MIN MAX set the stroke window (0-1)
    speed V       set the speed ceiling (0-1)
    interval MS   set the send interval in milliseconds
    stop          cancel momentum and stop the device
    status        log the current session state
    quit          leave the console
"""

from __future__ import annotations

import asyncio
import logging
import math
import sys
from typing import Optional

from .engine import MotionControlEngine

LOGGER = logging.getLogger(__name__)


class ConsoleCommandError(ValueError):
    """Raised for a line that is not a valid console command."""


class OperatorConsole:
    """Parse operator commands and apply them to a motion engine."""

    def __init__(
        self,
        engine: MotionControlEngine,
        *,
        reader: Optional[asyncio.StreamReader] = None,
    ) -> None:
        self._engine = engine
        self._reader = reader

    async def run(self) -> None:
        """Read commands until end of input or ``quit``."""

        reader = self._reader or await self._open_stdin()
        while True:
            data = await reader.readline()
            line = data.decode("utf-8", errors="replace")
            if not line:
                LOGGER.info("Operator input closed")
                return
            try:
                keep_going = await self.execute(line)
            except ConsoleCommandError as exc:
                LOGGER.warning("%s", exc)
                continue
            if not keep_going:
                return

    async def execute(self, line: str) -> bool:
        """Apply one command line; returns False when the console should exit."""

        parts = line.split()
        if not parts:
            return True

        command, args = parts[0].lower(), parts[1:]
        engine = self._engine

        if command in ("quit", "exit"):
            return False
        if command == "down":
            await engine.pointer_down(self._number(command, args, 0))
        elif command == "move":
            await engine.pointer_move(self._number(command, args, 0))
        elif command == "up":
            await engine.pointer_up()
        elif command == "range":
            minimum = self._number(command, args, 0)
            maximum = self._number(command, args, 1)
            try:
                engine.set_stroke_range(minimum, maximum)
            except ValueError as exc:
                raise ConsoleCommandError(str(exc)) from exc
        elif command == "speed":
            engine.set_max_speed(self._number(command, args, 0))
        elif command == "interval":
            engine.set_sample_interval(int(self._number(command, args, 0)))
        elif command == "stop":
            await engine.emergency_stop()
        elif command == "status":
            LOGGER.info(
                "Session %s, sent %d, suppressed %d",
                engine.context.tracker.state.value,
                engine.sent_count,
                engine.suppressed_count,
            )
        else:
            raise ConsoleCommandError(f"Unknown command: {command}")
        return True

    @staticmethod
    async def _open_stdin() -> asyncio.StreamReader:
        loop = asyncio.get_running_loop()
        reader = asyncio.StreamReader()
        await loop.connect_read_pipe(lambda: asyncio.StreamReaderProtocol(reader), sys.stdin)
        return reader

    @staticmethod
    def _number(command: str, args: list[str], position: int) -> float:
        try:
            value = float(args[position])
        except IndexError:
            raise ConsoleCommandError(f"{command}: missing argument") from None
        except ValueError:
            raise ConsoleCommandError(f"{command}: not a number: {args[position]!r}") from None
        if not math.isfinite(value):
            raise ConsoleCommandError(f"{command}: not a finite number: {args[position]!r}")
        return value
