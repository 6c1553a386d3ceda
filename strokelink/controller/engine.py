"""Controller-side motion engine.

The engine turns pointer events into motion messages for the relay. A
:class:`~strokelink.controller.smoothing.MotionSmoother` decides *where* and
*how fast*; the engine owns the clocks that drive it (frame ticks, the send
interval and the momentum tick), applies the operator's stroke range and
speed ceiling to every output, and frames the result for the wire.

Nothing is sent unless the relay last reported ``device_ready``.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from typing import Any, Callable, Optional

from .. import constants
from ..core.context import SessionContext
from ..core.models import CommandEnvelope, CommandKind, StrokeRange
from ..core.protocols import MessageSink
from ..protocol import relay
from ..protocol.base import ProtocolError
from ..session import SessionState
from ..transport import InboundMessage
from .input import InputSurface
from .smoothing import CommandFraming, MotionOutput, MotionSmoother

LOGGER = logging.getLogger(__name__)


class MotionControlEngine:
    """Drive one smoother and send its outputs on the relay channel."""

    def __init__(
        self,
        context: SessionContext,
        sink: MessageSink,
        smoother: MotionSmoother,
        *,
        surface: Optional[InputSurface] = None,
        frame_rate_hz: float = constants.DEFAULT_FRAME_RATE_HZ,
        await_ack: bool = False,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._context = context
        self._sink = sink
        self._smoother = smoother
        self._surface = surface or InputSurface()
        self._frame_period = 1.0 / max(1.0, frame_rate_hz)
        self._await_ack = await_ack
        self._clock = clock

        self._running = False
        self._frame_task: Optional[asyncio.Task[None]] = None
        self._send_task: Optional[asyncio.Task[None]] = None
        self._momentum_task: Optional[asyncio.Task[None]] = None

        self._pending_ack: Optional[int] = None
        self._missing_index_logged = False
        self._sent = 0
        self._suppressed = 0

        context.tracker.add_listener(self._on_session_state)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------
    @property
    def context(self) -> SessionContext:
        return self._context

    @property
    def smoother(self) -> MotionSmoother:
        return self._smoother

    @property
    def running(self) -> bool:
        return self._running

    @property
    def pending_ack(self) -> Optional[int]:
        """Id of the last move still waiting for ``command_ok``, if gating is on."""
        return self._pending_ack

    @property
    def sent_count(self) -> int:
        return self._sent

    @property
    def suppressed_count(self) -> int:
        return self._suppressed

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def start(self) -> None:
        self._running = True
        LOGGER.info(
            "Motion engine started (model=%s, %.0f Hz)",
            self._smoother.name,
            1.0 / self._frame_period,
        )
        if self._smoother.needs_frames:
            self._ensure_frame_loop()

    async def stop(self) -> None:
        self._running = False
        for attr in ("_frame_task", "_send_task", "_momentum_task"):
            await self._cancel(attr)

    # ------------------------------------------------------------------
    # Pointer input
    # ------------------------------------------------------------------
    async def pointer_down(self, y: float) -> None:
        """Begin a drag at pointer coordinate ``y``; cancels any momentum."""

        await self._cancel("_momentum_task")
        self._smoother.press(self._surface.normalize(y), self._clock())
        self._ensure_frame_loop()
        if self._smoother.uses_send_interval:
            self._ensure_send_loop()

    async def pointer_move(self, y: float) -> None:
        self._smoother.move(self._surface.normalize(y), self._clock())

    async def pointer_up(self) -> int:
        """End the drag; returns the number of messages sent immediately."""

        outputs = self._smoother.release(self._clock())
        await self._cancel("_send_task")
        if not self._smoother.needs_frames:
            await self._cancel("_frame_task")

        sent = await self._emit(outputs)
        if self._smoother.momentum_active:
            self._ensure_momentum_loop()
        return sent

    # ------------------------------------------------------------------
    # Clock steps (driven by the loops below; tests call them directly)
    # ------------------------------------------------------------------
    async def step_frame(self) -> int:
        return await self._emit(self._smoother.on_frame(self._clock()))

    async def step_send(self) -> int:
        return await self._emit(self._smoother.on_send_interval(self._clock()))

    async def step_momentum(self, dt: Optional[float] = None) -> int:
        return await self._emit(self._smoother.on_momentum_tick(dt))

    # ------------------------------------------------------------------
    # Operator controls
    # ------------------------------------------------------------------
    def set_stroke_range(self, minimum: float, maximum: float) -> StrokeRange:
        """Replace the stroke window; raises ValueError if ``minimum > maximum``."""

        if minimum > maximum:
            raise ValueError(f"Stroke minimum {minimum} is above maximum {maximum}")
        stroke = StrokeRange(max(0.0, min(1.0, minimum)), max(0.0, min(1.0, maximum)))
        self._context.limits.stroke = stroke
        LOGGER.info("Stroke range set to %.2f-%.2f", stroke.min, stroke.max)
        return stroke

    def set_max_speed(self, value: float) -> float:
        ceiling = max(0.0, min(1.0, value))
        self._context.limits.max_speed = ceiling
        LOGGER.info("Speed ceiling set to %.2f", ceiling)
        return ceiling

    def set_sample_interval(self, milliseconds: int) -> int:
        interval = max(
            constants.MIN_SAMPLE_INTERVAL_MS,
            min(constants.MAX_SAMPLE_INTERVAL_MS, int(milliseconds)),
        )
        self._context.limits.sample_interval_ms = interval
        LOGGER.info("Send interval set to %d ms", interval)
        return interval

    async def emergency_stop(self) -> bool:
        """Cancel momentum and ask the device to stop."""

        self._smoother.cancel_momentum()
        await self._cancel("_momentum_task")

        tracker = self._context.tracker
        if not tracker.device_ready:
            LOGGER.warning("Stop requested while session is %s; nothing sent", tracker.state.value)
            return False

        if self._smoother.framing is CommandFraming.COMMAND_PAIR:
            device_index = tracker.device_index
            if device_index is None:
                LOGGER.warning("Stop requested but the relay has not reported a device index")
                return False
            message: Any = relay.command_batch(
                CommandEnvelope(self._context.ids.next(), device_index, CommandKind.STOP)
            )
        else:
            message = relay.stop()

        LOGGER.info("Sending stop")
        return await self._sink.send(message)

    # ------------------------------------------------------------------
    # Relay traffic
    # ------------------------------------------------------------------
    def on_relay_open(self) -> None:
        self._pending_ack = None
        self._context.tracker.reset()

    def handle_relay_message(self, message: InboundMessage) -> None:
        for item in relay.iter_relay_messages(message.payload):
            if relay.is_heartbeat(item):
                continue
            try:
                message_type = relay.message_type(item)
            except ProtocolError as exc:
                LOGGER.warning("Discarding relay message: %s", exc)
                continue

            if message_type == relay.STATUS:
                self._context.tracker.apply(item.get("state"), item.get("deviceIndex"))
            elif message_type == relay.COMMAND_OK:
                self._on_command_ok(item.get("id"))
            else:
                LOGGER.debug("Ignoring relay message %r", item)

    def _on_command_ok(self, message_id: Any) -> None:
        LOGGER.debug("Device acknowledged command %s", message_id)
        if self._pending_ack is not None and message_id == self._pending_ack:
            self._pending_ack = None

    def _on_session_state(self, previous: SessionState, current: SessionState) -> None:
        if current is SessionState.DEVICE_READY:
            self._missing_index_logged = False
            return
        self._pending_ack = None
        if previous is SessionState.DEVICE_READY:
            LOGGER.info("Device no longer ready (%s); motion output paused", current.value)

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------
    async def _emit(self, outputs: list[MotionOutput]) -> int:
        sent = 0
        for output in outputs:
            if await self._send_output(output):
                sent += 1
        return sent

    async def _send_output(self, output: MotionOutput) -> bool:
        tracker = self._context.tracker
        if not tracker.device_ready:
            self._suppressed += 1
            LOGGER.debug("Session is %s; suppressing motion output", tracker.state.value)
            return False

        limits = self._context.limits
        position = limits.stroke.map(output.position)

        move_id: Optional[int] = None
        if self._smoother.framing is CommandFraming.COMMAND_PAIR:
            built = self._build_command_pair(position, output.speed)
            if built is None:
                self._suppressed += 1
                return False
            payload, move_id = built
        else:
            payload = relay.control(
                position,
                limits.clamp_speed(output.speed),
                limits.sample_interval_ms,
                is_final=output.is_final,
            )

        if not await self._sink.send(payload):
            return False

        self._sent += 1
        if self._await_ack and move_id is not None:
            self._pending_ack = move_id
        return True

    def _build_command_pair(
        self, position: float, speed: float
    ) -> Optional[tuple[dict[str, Any], int]]:
        if self._await_ack and self._pending_ack is not None:
            LOGGER.debug("Waiting for command_ok %d; skipping frame", self._pending_ack)
            return None

        device_index = self._context.tracker.device_index
        if device_index is None:
            if not self._missing_index_logged:
                LOGGER.warning("Relay reported device_ready without a device index; cannot address moves")
                self._missing_index_logged = True
            return None

        ceiling = self._context.limits.max_speed
        if ceiling <= 0:
            return None

        duration = constants.SPRING_MOVE_DURATION_MS
        if speed > ceiling:
            # Slow the move down rather than change where it ends up.
            duration = int(round(duration * speed / ceiling))

        ids = self._context.ids
        stop = CommandEnvelope(ids.next(), device_index, CommandKind.STOP)
        move = CommandEnvelope(
            ids.next(), device_index, CommandKind.MOVE, position=position, duration_ms=duration
        )
        return relay.command_batch(stop, move), move.id

    # ------------------------------------------------------------------
    # Loops
    # ------------------------------------------------------------------
    def _ensure_frame_loop(self) -> None:
        if self._running and (self._frame_task is None or self._frame_task.done()):
            self._frame_task = asyncio.create_task(self._frame_loop())

    def _ensure_send_loop(self) -> None:
        if self._running and (self._send_task is None or self._send_task.done()):
            self._send_task = asyncio.create_task(self._send_loop())

    def _ensure_momentum_loop(self) -> None:
        if self._running and (self._momentum_task is None or self._momentum_task.done()):
            self._momentum_task = asyncio.create_task(self._momentum_loop())

    async def _frame_loop(self) -> None:
        while self._smoother.needs_frames:
            try:
                await self.step_frame()
            except Exception:
                LOGGER.exception("Frame step failed")
            await asyncio.sleep(self._frame_period)

    async def _send_loop(self) -> None:
        while self._smoother.dragging:
            await asyncio.sleep(self._context.limits.sample_interval_ms / 1000.0)
            if not self._smoother.dragging:
                break
            try:
                await self.step_send()
            except Exception:
                LOGGER.exception("Send step failed")

    async def _momentum_loop(self) -> None:
        period = 1.0 / constants.MOMENTUM_TICK_HZ
        while self._smoother.momentum_active:
            await asyncio.sleep(period)
            try:
                await self.step_momentum(period)
            except Exception:
                LOGGER.exception("Momentum step failed")

    async def _cancel(self, attr: str) -> None:
        task: Optional[asyncio.Task[None]] = getattr(self, attr)
        setattr(self, attr, None)
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
