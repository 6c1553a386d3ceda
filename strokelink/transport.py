"""Persistent websocket channel with reconnect and heartbeat.

One :class:`TransportSession` owns one websocket. ``connect()`` only starts a
background task; the task opens the channel, dispatches inbound frames to
listeners, and after an unexpected close waits out an exponential backoff
before trying again. Outbound messages are never queued: a message sent
while the channel is down is logged and dropped, because a stale motion
command is worse than a missing one.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Mapping, Optional
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

import aiohttp

from . import constants
from .protocol import relay as relay_protocol
from .session import Role

LOGGER = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    """Current state of one websocket channel."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


@dataclass(slots=True, frozen=True)
class InboundMessage:
    """A decoded text frame together with its original text."""

    payload: Any
    raw: str


MessageListener = Callable[[InboundMessage], Awaitable[None] | None]
StateListener = Callable[[ConnectionState, ConnectionState], Awaitable[None] | None]


class ReconnectBackoff:
    """Exponential backoff with a hard attempt limit.

    Attempt ``n`` (1-based) waits ``min(max_seconds, initial_seconds * 2**(n-1))``.
    Once ``max_attempts`` delays have been handed out, :meth:`next_delay`
    returns ``None`` until :meth:`reset` is called.
    """

    def __init__(
        self,
        initial_seconds: float = constants.RECONNECT_INITIAL_SECONDS,
        max_seconds: float = constants.RECONNECT_MAX_SECONDS,
        max_attempts: int = constants.RECONNECT_MAX_ATTEMPTS,
    ) -> None:
        self.initial_seconds = initial_seconds
        self.max_seconds = max(initial_seconds, max_seconds)
        self.max_attempts = max_attempts
        self._attempts = 0

    @property
    def attempts(self) -> int:
        return self._attempts

    @property
    def exhausted(self) -> bool:
        return self._attempts >= self.max_attempts

    def reset(self) -> None:
        self._attempts = 0

    def next_delay(self) -> Optional[float]:
        if self.exhausted:
            return None
        self._attempts += 1
        return min(self.max_seconds, self.initial_seconds * 2 ** (self._attempts - 1))


class TransportSession:
    """Non-blocking websocket channel used by both roles."""

    def __init__(
        self,
        url: str,
        *,
        name: str = "relay",
        session: Optional[aiohttp.ClientSession] = None,
        backoff: Optional[ReconnectBackoff] = None,
        reconnect: bool = True,
        heartbeat_interval: float = constants.HEARTBEAT_INTERVAL_SECONDS,
        heartbeat_payload: Optional[Mapping[str, Any]] = None,
    ) -> None:
        self.url = url
        self.name = name
        self._display_url = redact_url(url)
        self._session = session
        self._owns_session = session is None
        self._backoff = backoff or ReconnectBackoff()
        self._reconnect = reconnect
        self._heartbeat_interval = heartbeat_interval
        self._heartbeat_payload = (
            dict(heartbeat_payload)
            if heartbeat_payload is not None
            else relay_protocol.ping()
        )

        self._state = ConnectionState.DISCONNECTED
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._task: Optional[asyncio.Task[None]] = None
        self._heartbeat_task: Optional[asyncio.Task[None]] = None
        self._closing = False
        self._gave_up = False
        self._message_listeners: list[MessageListener] = []
        self._state_listeners: list[StateListener] = []

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_open(self) -> bool:
        ws = self._ws
        return (
            self._state == ConnectionState.CONNECTED and ws is not None and not ws.closed
        )

    @property
    def gave_up(self) -> bool:
        """True once the reconnect budget is spent; only ``connect()`` revives it."""
        return self._gave_up

    @property
    def attempts(self) -> int:
        return self._backoff.attempts

    def add_message_listener(self, listener: MessageListener) -> None:
        self._message_listeners.append(listener)

    def remove_message_listener(self, listener: MessageListener) -> None:
        with contextlib.suppress(ValueError):
            self._message_listeners.remove(listener)

    def add_state_listener(self, listener: StateListener) -> None:
        self._state_listeners.append(listener)

    def remove_state_listener(self, listener: StateListener) -> None:
        with contextlib.suppress(ValueError):
            self._state_listeners.remove(listener)

    def connect(self) -> None:
        """Start the channel task and return immediately."""

        if self._task is not None and not self._task.done():
            LOGGER.debug("%s channel already running", self.name)
            return

        self._closing = False
        self._gave_up = False
        self._backoff.reset()
        self._task = asyncio.create_task(self._run(), name=f"strokelink-{self.name}")

    async def send(self, message: Any) -> bool:
        """Send a message; returns False (and logs) when it had to be dropped."""

        ws = self._ws
        if ws is None or ws.closed or self._state != ConnectionState.CONNECTED:
            LOGGER.warning("%s channel not open; dropping outbound message", self.name)
            return False

        data = message if isinstance(message, str) else json.dumps(message, separators=(",", ":"))
        try:
            await ws.send_str(data)
        except (ConnectionError, aiohttp.ClientError, RuntimeError) as exc:
            LOGGER.warning("Send on %s channel failed, message dropped: %s", self.name, exc)
            return False

        LOGGER.debug("Sent on %s channel: %s", self.name, data)
        return True

    async def close(self) -> None:
        """Close the channel and stop reconnecting."""

        self._closing = True

        ws = self._ws
        if ws is not None and not ws.closed:
            with contextlib.suppress(Exception):
                await ws.close()

        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None

        await self._stop_heartbeat()
        self._ws = None
        await self._transition(ConnectionState.DISCONNECTED)

        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    async def wait_closed(self) -> None:
        """Wait until the channel task ends (closed or gave up)."""

        task = self._task
        if task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await asyncio.shield(task)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            timeout = aiohttp.ClientTimeout(total=None, sock_connect=10.0)
            self._session = aiohttp.ClientSession(timeout=timeout)
            self._owns_session = True
        return self._session

    async def _run(self) -> None:
        while not self._closing:
            await self._transition(ConnectionState.CONNECTING)
            try:
                session = await self._ensure_session()
                async with session.ws_connect(self.url) as ws:
                    self._ws = ws
                    self._backoff.reset()
                    LOGGER.info("Connected %s channel at %s", self.name, self._display_url)
                    await self._transition(ConnectionState.CONNECTED)
                    self._start_heartbeat()
                    try:
                        async for message in ws:
                            if message.type == aiohttp.WSMsgType.TEXT:
                                await self._dispatch(message.data)
                            elif message.type == aiohttp.WSMsgType.BINARY:
                                LOGGER.debug("Ignoring binary frame on %s channel", self.name)
                            elif message.type == aiohttp.WSMsgType.ERROR:
                                raise ws.exception() or RuntimeError("Websocket error")
                    finally:
                        self._ws = None
                        await self._stop_heartbeat()
                LOGGER.info(
                    "%s channel closed (code=%s)", self.name.capitalize(), ws.close_code
                )
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                if self._closing:
                    break
                LOGGER.warning("%s channel error: %s", self.name.capitalize(), exc)

            await self._transition(ConnectionState.DISCONNECTED)

            if self._closing or not self._reconnect:
                break

            delay = self._backoff.next_delay()
            if delay is None:
                self._gave_up = True
                LOGGER.error(
                    "Giving up on %s channel after %d reconnect attempts; restart the session to retry",
                    self.name,
                    self._backoff.max_attempts,
                )
                break

            LOGGER.info(
                "Reconnecting %s channel (attempt %d/%d) in %.1fs",
                self.name,
                self._backoff.attempts,
                self._backoff.max_attempts,
                delay,
            )
            await asyncio.sleep(delay)

    async def _transition(self, state: ConnectionState) -> None:
        previous = self._state
        if state == previous:
            return

        self._state = state
        LOGGER.debug("%s channel %s -> %s", self.name, previous.value, state.value)

        for listener in list(self._state_listeners):
            try:
                result = listener(previous, state)
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                LOGGER.exception("%s state listener failed", self.name)

    async def _dispatch(self, raw: str) -> None:
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError:
            LOGGER.warning("Discarding malformed frame on %s channel: %.200s", self.name, raw)
            return

        message = InboundMessage(payload=payload, raw=raw)
        for listener in list(self._message_listeners):
            try:
                result = listener(message)
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                LOGGER.exception("%s message listener failed", self.name)

    def _start_heartbeat(self) -> None:
        if self._heartbeat_interval <= 0:
            return
        self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())

    async def _stop_heartbeat(self) -> None:
        task = self._heartbeat_task
        self._heartbeat_task = None
        if task is None or task is asyncio.current_task():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _heartbeat_loop(self) -> None:
        while True:
            await asyncio.sleep(self._heartbeat_interval)
            if await self.send(self._heartbeat_payload):
                LOGGER.debug("Sent heartbeat on %s channel", self.name)


def build_relay_url(base_url: str, role: Role, key: str) -> str:
    """Return the relay websocket URL tagged with role and session key."""

    parsed = urlparse(base_url)
    scheme = parsed.scheme
    if scheme == "http":
        scheme = "ws"
    elif scheme == "https":
        scheme = "wss"

    path = parsed.path or "/ws"
    query = [
        (name, value)
        for name, value in parse_qsl(parsed.query, keep_blank_values=True)
        if name not in ("type", "key")
    ]
    query.extend([("type", role.value), ("key", key)])
    return urlunparse((scheme, parsed.netloc, path, "", urlencode(query), ""))


def redact_key(key: str) -> str:
    """Short form of a session key that is safe to log."""

    if len(key) <= 4:
        return "***"
    return f"{key[:2]}***"


def redact_url(url: str) -> str:
    """Return ``url`` with any ``key`` query value redacted."""

    parsed = urlparse(url)
    if not parsed.query:
        return url
    query = [
        (name, redact_key(value) if name == "key" else value)
        for name, value in parse_qsl(parsed.query, keep_blank_values=True)
    ]
    return urlunparse(parsed._replace(query=urlencode(query, safe="*")))
