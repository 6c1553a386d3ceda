"""Local health endpoint for a running bridge or controller."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Optional

from aiohttp import web

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class ChannelHealth:
    name: str
    healthy: bool
    detail: Optional[str] = None
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def as_dict(self) -> Dict[str, object]:
        return {
            "name": self.name,
            "healthy": self.healthy,
            "detail": self.detail,
            "updatedAt": self.updated_at.isoformat(timespec="seconds"),
        }


class HealthReporter:
    """Collects channel health plus the relay-reported session state."""

    def __init__(self, role: str) -> None:
        self._role = role
        self._channels: Dict[str, ChannelHealth] = {}
        self._session_state: Optional[str] = None
        self._lock = asyncio.Lock()

    async def update(self, name: str, healthy: bool, detail: Optional[str] = None) -> None:
        async with self._lock:
            self._channels[name] = ChannelHealth(name=name, healthy=healthy, detail=detail)

    async def set_session_state(self, state: str) -> None:
        async with self._lock:
            self._session_state = state

    async def snapshot(self) -> Dict[str, object]:
        async with self._lock:
            channels = [status.as_dict() for status in self._channels.values()]
            session_state = self._session_state

        overall = "ok" if all(item["healthy"] for item in channels) else "degraded"
        return {
            "status": overall,
            "role": self._role,
            "session": session_state,
            "channels": channels,
        }


class HealthServer:
    """Serves ``GET /healthz``: 200 when every channel is healthy, else 503."""

    def __init__(self, reporter: HealthReporter, host: str, port: int) -> None:
        self._reporter = reporter
        self._host = host
        self._port = port
        self._runner: Optional[web.AppRunner] = None
        self._site: Optional[web.TCPSite] = None

    @property
    def port(self) -> int:
        """Bound port; differs from the configured one when that was 0."""

        if self._runner is not None:
            for address in self._runner.addresses:
                return address[1]
        return self._port

    async def start(self) -> None:
        app = web.Application()
        app.router.add_get("/healthz", self._handle_health)

        self._runner = web.AppRunner(app)
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, self._host, self._port)
        await self._site.start()
        LOGGER.info("Health endpoint listening on http://%s:%s/healthz", self._host, self.port)

    async def stop(self) -> None:
        with contextlib.suppress(Exception):
            if self._site is not None:
                await self._site.stop()
        if self._runner is not None:
            await self._runner.cleanup()
        self._site = None
        self._runner = None

    async def _handle_health(self, request: web.Request) -> web.Response:
        snapshot = await self._reporter.snapshot()
        status = 200 if snapshot["status"] == "ok" else 503
        return web.json_response(snapshot, status=status)
