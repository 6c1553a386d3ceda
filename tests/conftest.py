import asyncio
import json
from typing import Any, Callable, Iterable, Optional

import pytest
import pytest_asyncio
from aiohttp import WSMsgType, web

from strokelink.core import SessionContext
from strokelink.session import Role

Responder = Callable[[Any], Optional[Iterable[Any]]]


class RecordingSink:
    """In-memory stand-in for a relay channel."""

    def __init__(self, *, is_open: bool = True) -> None:
        self.is_open = is_open
        self.sent: list[Any] = []

    async def send(self, message: Any) -> bool:
        if not self.is_open:
            return False
        self.sent.append(message)
        return True


class FakeWebsocketServer:
    """Websocket endpoint that records frames and can answer them."""

    def __init__(self, port: int, responder: Optional[Responder] = None) -> None:
        self.port = port
        self.responder = responder
        self.greeting: list[Any] = []
        self.close_on_connect = False
        self.received: list[Any] = []
        self.queries: list[dict[str, str]] = []
        self.connections: list[web.WebSocketResponse] = []

    @property
    def url(self) -> str:
        return f"ws://127.0.0.1:{self.port}/ws"

    async def handler(self, request: web.Request) -> web.WebSocketResponse:
        self.queries.append(dict(request.query))
        ws = web.WebSocketResponse()
        await ws.prepare(request)
        self.connections.append(ws)

        if self.close_on_connect:
            self.close_on_connect = False
            await ws.close()
            return ws

        for frame in self.greeting:
            if isinstance(frame, str):
                await ws.send_str(frame)
            else:
                await ws.send_json(frame)

        async for message in ws:
            if message.type != WSMsgType.TEXT:
                continue
            payload = json.loads(message.data)
            self.received.append(payload)
            if self.responder is not None:
                for reply in self.responder(payload) or ():
                    await ws.send_json(reply)
        return ws

    async def broadcast(self, payload: Any) -> None:
        for ws in self.connections:
            if not ws.closed:
                await ws.send_json(payload)

    async def wait_for(self, predicate: Callable[[Any], bool], timeout: float = 2.0) -> Any:
        async def _poll() -> Any:
            while True:
                for item in self.received:
                    if predicate(item):
                        return item
                await asyncio.sleep(0.01)

        return await asyncio.wait_for(_poll(), timeout)

    async def wait_for_connections(self, count: int, timeout: float = 2.0) -> None:
        async def _poll() -> None:
            while len(self.connections) < count:
                await asyncio.sleep(0.01)

        await asyncio.wait_for(_poll(), timeout)

    async def close_all(self) -> None:
        for ws in self.connections:
            if not ws.closed:
                await ws.close()


@pytest_asyncio.fixture
async def ws_server_factory(unused_tcp_port_factory):
    started: list[tuple[web.AppRunner, FakeWebsocketServer]] = []

    async def factory(responder: Optional[Responder] = None) -> FakeWebsocketServer:
        port = unused_tcp_port_factory()
        server = FakeWebsocketServer(port, responder)

        app = web.Application()
        app.router.add_get("/ws", server.handler)
        runner = web.AppRunner(app)
        await runner.setup()
        site = web.TCPSite(runner, "127.0.0.1", port)
        await site.start()

        started.append((runner, server))
        return server

    yield factory

    for runner, server in started:
        await server.close_all()
        await runner.cleanup()


@pytest.fixture
def bridge_context() -> SessionContext:
    return SessionContext(key="test-session", role=Role.BRIDGE)


@pytest.fixture
def controller_context() -> SessionContext:
    return SessionContext(key="test-session", role=Role.CONTROLLER)


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()
