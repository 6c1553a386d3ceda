"""Application entry points for the bridge and controller roles."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from abc import ABC, abstractmethod
from typing import Any, Coroutine, Optional

from .bridge import (
    BridgeStatus,
    Channel,
    DeviceBridge,
    DeviceSelector,
    Outbound,
    SelectionPolicy,
)
from .config import StrokeConfig, load_config, resolve_session_key
from .controller import InputSurface, MotionControlEngine, OperatorConsole, build_smoother
from .core import MotionLimits, SessionContext, StrokeRange
from .health import HealthReporter, HealthServer
from .logging import configure_logging
from .session import Role, SessionState
from .transport import (
    ConnectionState,
    InboundMessage,
    ReconnectBackoff,
    TransportSession,
    build_relay_url,
    redact_key,
)

LOGGER = logging.getLogger(__name__)


class StrokeApp(ABC):
    """Shared lifecycle for one session in either role.

    ``run()`` starts the role's services, waits until shutdown is requested or
    the relay channel gives up, and tears everything down again. The return
    value is the process exit code.
    """

    role: Role = Role.BRIDGE

    def __init__(self, config: Optional[StrokeConfig] = None, *, key: Optional[str] = None) -> None:
        self._config = config or load_config()
        self._context = SessionContext(
            key=resolve_session_key(self._config, key),
            role=self.role,
            limits=MotionLimits(
                stroke=StrokeRange(self._config.motion.stroke_min, self._config.motion.stroke_max),
                max_speed=self._config.motion.max_speed,
                sample_interval_ms=self._config.motion.sample_interval_ms,
            ),
        )
        self._relay: Optional[TransportSession] = None
        self._health = HealthReporter(self.role.name.lower())
        self._health_server: Optional[HealthServer] = None
        self._shutdown_event: Optional[asyncio.Event] = None
        self._background: set[asyncio.Task[Any]] = set()

        self._context.tracker.add_listener(self._on_session_state)

    @property
    def context(self) -> SessionContext:
        return self._context

    @property
    def health(self) -> HealthReporter:
        return self._health

    @property
    def relay(self) -> Optional[TransportSession]:
        return self._relay

    @property
    def health_server(self) -> Optional[HealthServer]:
        return self._health_server

    @property
    def relay_url(self) -> str:
        return build_relay_url(self._config.relay.url, self.role, self._context.key)

    async def run(self) -> int:
        self._shutdown_event = asyncio.Event()
        LOGGER.info(
            "strokelink %s starting (session %s, config %s)",
            self.role.name.lower(),
            redact_key(self._context.key),
            self._config.path,
        )
        await self._start_services()
        try:
            return await self._idle_loop()
        except asyncio.CancelledError:
            LOGGER.info("strokelink received shutdown signal")
            raise
        finally:
            await self._stop_services()

    def request_shutdown(self) -> None:
        if self._shutdown_event is not None:
            self._shutdown_event.set()

    @classmethod
    def start(cls, config: Optional[StrokeConfig] = None, *, key: Optional[str] = None) -> int:
        config = config or load_config()
        configure_logging(
            config.logging.level,
            log_path=config.logging.path,
            log_network=config.logging.log_network,
        )
        instance = cls(config=config, key=key)
        try:
            return asyncio.run(instance.run())
        except KeyboardInterrupt:
            LOGGER.info("strokelink received shutdown signal")
            return 0

    # ------------------------------------------------------------------
    # Lifecycle hooks
    # ------------------------------------------------------------------
    async def _start_services(self) -> None:
        await self._health.set_session_state(self._context.tracker.state.value)
        await self._health.update("relay", False, "connecting")

        self._relay = self._make_transport(self.relay_url, name="relay")
        self._relay.add_state_listener(self._on_relay_state)
        self._relay.add_message_listener(self._on_relay_message)

        await self._start_health_server()
        self._relay.connect()

    async def _stop_services(self) -> None:
        if self._relay is not None:
            await self._relay.close()
        await self._stop_health_server()

        tasks = list(self._background)
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def _idle_loop(self) -> int:
        assert self._shutdown_event is not None and self._relay is not None

        shutdown = asyncio.create_task(self._shutdown_event.wait())
        relay_done = asyncio.create_task(self._relay.wait_closed())
        try:
            await asyncio.wait({shutdown, relay_done}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (shutdown, relay_done):
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task

        if self._relay.gave_up:
            LOGGER.error(
                "Relay unreachable; stopping session %s", redact_key(self._context.key)
            )
            return 1
        return 0

    # ------------------------------------------------------------------
    # Relay events
    # ------------------------------------------------------------------
    async def _on_relay_state(self, previous: ConnectionState, current: ConnectionState) -> None:
        await self._health.update(
            "relay", current == ConnectionState.CONNECTED, current.value
        )

    @abstractmethod
    async def _on_relay_message(self, message: InboundMessage) -> None:
        """Handle one decoded relay frame."""

    def _on_session_state(self, previous: SessionState, current: SessionState) -> None:
        self._schedule(self._health.set_session_state(current.value))

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _make_transport(
        self,
        url: str,
        *,
        name: str,
        reconnect: bool = True,
        heartbeat: bool = True,
    ) -> TransportSession:
        resilience = self._config.resilience
        backoff = ReconnectBackoff(
            initial_seconds=resilience.reconnect_initial_seconds,
            max_seconds=resilience.reconnect_max_seconds,
            max_attempts=resilience.reconnect_max_attempts,
        )
        return TransportSession(
            url,
            name=name,
            backoff=backoff,
            reconnect=reconnect,
            heartbeat_interval=resilience.heartbeat_interval_seconds if heartbeat else 0.0,
        )

    def _schedule(self, coro: Coroutine[Any, Any, Any]) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No running loop; nothing to report to.
            coro.close()
            return
        task = loop.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _start_health_server(self) -> None:
        resilience = self._config.resilience
        if not resilience.health_enabled:
            return
        self._health_server = HealthServer(
            self._health, resilience.health_host, resilience.health_port
        )
        try:
            await self._health_server.start()
        except OSError as exc:
            LOGGER.error("Failed to start health endpoint: %s", exc)
            self._health_server = None

    async def _stop_health_server(self) -> None:
        if self._health_server is not None:
            await self._health_server.stop()
            self._health_server = None


class BridgeApp(StrokeApp):
    """Runs the bridge role: relay channel plus hardware-control channel."""

    role = Role.BRIDGE

    def __init__(self, config: Optional[StrokeConfig] = None, *, key: Optional[str] = None) -> None:
        super().__init__(config, key=key)
        hardware = self._config.hardware
        self._bridge = DeviceBridge(
            self._context,
            selector=DeviceSelector(SelectionPolicy(hardware.selection_policy)),
            client_name=hardware.client_name,
            message_version=hardware.message_version,
        )
        self._bridge.add_status_listener(
            lambda _previous, current: self._schedule(
                self._health.update(
                    "device",
                    current is BridgeStatus.DEVICE_READY,
                    current.value,
                )
            )
        )
        self._hardware: Optional[TransportSession] = None

    @property
    def bridge(self) -> DeviceBridge:
        return self._bridge

    @property
    def hardware(self) -> Optional[TransportSession]:
        return self._hardware

    async def _start_services(self) -> None:
        await self._health.update("hardware", False, "connecting")
        await self._health.update("device", False, self._bridge.status.value)

        self._hardware = self._make_transport(
            self._config.hardware.url,
            name="hardware",
            reconnect=self._config.hardware.reconnect,
            heartbeat=False,
        )
        self._hardware.add_state_listener(self._on_hardware_state)
        self._hardware.add_message_listener(self._on_hardware_message)

        await super()._start_services()
        self._hardware.connect()

    async def _stop_services(self) -> None:
        if self._hardware is not None:
            await self._hardware.close()
        await super()._stop_services()

    async def _on_relay_state(self, previous: ConnectionState, current: ConnectionState) -> None:
        await super()._on_relay_state(previous, current)
        if current == ConnectionState.CONNECTED:
            await self._dispatch(self._bridge.on_relay_open())

    async def _on_relay_message(self, message: InboundMessage) -> None:
        await self._dispatch(self._bridge.on_relay_message(message.payload))

    async def _on_hardware_state(self, previous: ConnectionState, current: ConnectionState) -> None:
        await self._health.update(
            "hardware", current == ConnectionState.CONNECTED, current.value
        )
        if current == ConnectionState.CONNECTED:
            await self._dispatch(self._bridge.on_hardware_open())
        elif previous == ConnectionState.CONNECTED:
            await self._dispatch(self._bridge.on_hardware_closed())

    async def _on_hardware_message(self, message: InboundMessage) -> None:
        await self._dispatch(self._bridge.on_hardware_message(message.payload))

    async def _dispatch(self, effects: list[Outbound]) -> None:
        for effect in effects:
            channel = self._relay if effect.channel is Channel.RELAY else self._hardware
            if channel is None:
                LOGGER.warning("%s channel not created; dropping message", effect.channel.value)
                continue
            await channel.send(effect.payload)


class ControllerApp(StrokeApp):
    """Runs the controller role: relay channel, motion engine and console."""

    role = Role.CONTROLLER

    def __init__(
        self,
        config: Optional[StrokeConfig] = None,
        *,
        key: Optional[str] = None,
        console: bool = True,
    ) -> None:
        super().__init__(config, key=key)
        self._engine: Optional[MotionControlEngine] = None
        self._use_console = console
        self._console_task: Optional[asyncio.Task[None]] = None

    @property
    def engine(self) -> Optional[MotionControlEngine]:
        return self._engine

    async def _start_services(self) -> None:
        motion = self._config.motion
        await super()._start_services()
        assert self._relay is not None

        self._engine = MotionControlEngine(
            self._context,
            self._relay,
            build_smoother(motion.model),
            surface=InputSurface(),
            frame_rate_hz=motion.frame_rate_hz,
            await_ack=motion.await_ack,
        )
        self._engine.start()

        if self._use_console:
            self._console_task = asyncio.create_task(self._run_console())

    async def _stop_services(self) -> None:
        if self._console_task is not None:
            self._console_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._console_task
            self._console_task = None
        if self._engine is not None:
            await self._engine.stop()
        await super()._stop_services()

    async def _run_console(self) -> None:
        assert self._engine is not None
        try:
            await OperatorConsole(self._engine).run()
        finally:
            self.request_shutdown()

    async def _on_relay_state(self, previous: ConnectionState, current: ConnectionState) -> None:
        await super()._on_relay_state(previous, current)
        if current == ConnectionState.CONNECTED and self._engine is not None:
            self._engine.on_relay_open()

    async def _on_relay_message(self, message: InboundMessage) -> None:
        if self._engine is not None:
            self._engine.handle_relay_message(message)
