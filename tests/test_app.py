"""End-to-end tests with fake relay and hardware endpoints."""

import asyncio
import json
from pathlib import Path

import aiohttp
import pytest

from strokelink.app import BridgeApp, ControllerApp, StrokeApp
from strokelink.bridge import BridgeStatus
from strokelink.config import SessionKeyMissingError, load_config

STROKER = {
    "DeviceIndex": 0,
    "DeviceName": "Stroker",
    "DeviceMessages": {"LinearCmd": {"FeatureCount": 1}, "StopDeviceCmd": {}},
}


def hardware_responder(frame):
    ((kind, body),) = frame[0].items()
    if kind == "RequestServerInfo":
        return [[{"ServerInfo": {"Id": body["Id"], "ServerName": "Fake", "MessageVersion": 3}}]]
    if kind == "RequestDeviceList":
        return [[{"DeviceList": {"Id": body["Id"], "Devices": [STROKER]}}]]
    if kind in ("LinearCmd", "StopDeviceCmd"):
        return [[{"Ok": {"Id": body["Id"]}}]]
    return []


def _config(tmp_path: Path, relay_url: str, hardware_url: str = "ws://127.0.0.1:9/ws"):
    config = load_config(tmp_path / "strokelink.cfg")
    config.relay.url = relay_url
    config.hardware.url = hardware_url
    config.resilience.heartbeat_interval_seconds = 0.0
    config.resilience.reconnect_initial_seconds = 0.01
    config.resilience.reconnect_max_seconds = 0.05
    return config


async def _until(predicate, timeout=3.0):
    async def _poll():
        while not predicate():
            await asyncio.sleep(0.01)

    await asyncio.wait_for(_poll(), timeout)


def test_app_requires_session_key(tmp_path: Path):
    with pytest.raises(SessionKeyMissingError):
        BridgeApp(load_config(tmp_path / "strokelink.cfg"))


def test_base_app_needs_a_role_specific_relay_handler(tmp_path: Path):
    with pytest.raises(TypeError):
        StrokeApp(load_config(tmp_path / "strokelink.cfg"), key="kitchen")


@pytest.mark.asyncio
async def test_bridge_relays_commands_and_acknowledgments(tmp_path: Path, ws_server_factory):
    relay = await ws_server_factory()
    hardware = await ws_server_factory(hardware_responder)
    config = _config(tmp_path, relay.url, hardware.url)
    config.resilience.health_enabled = True

    app = BridgeApp(config, key="kitchen")
    task = asyncio.create_task(app.run())
    try:
        await relay.wait_for(lambda item: item == {"type": "setDeviceIndex", "index": 0})
        assert relay.queries[0] == {"type": "client", "key": "kitchen"}
        assert app.bridge.status is BridgeStatus.DEVICE_READY

        await relay.broadcast([{"type": "status", "state": "device_ready", "deviceIndex": 0}])
        await _until(lambda: app.context.tracker.device_ready)

        stop = '[{"StopDeviceCmd":{"Id":20,"DeviceIndex":0}}]'
        move = '[{"LinearCmd":{"Id":21,"DeviceIndex":0,"Vectors":[{"Index":0,"Duration":50,"Position":0.7}]}}]'
        await relay.broadcast({"commands": [stop, move]})

        forwarded = await hardware.wait_for(
            lambda item: "LinearCmd" in item[0]
            and item[0]["LinearCmd"]["Vectors"] == json.loads(move)[0]["LinearCmd"]["Vectors"]
        )
        # Hardware sees the bridge's own ids; the relay hears back the controller's.
        assert forwarded[0]["LinearCmd"]["Id"] != 21
        await relay.wait_for(lambda item: item == {"type": "command_ok", "id": 21})

        await relay.broadcast({"type": "control", "position": 0.4, "speed": 0.5})
        linear = await hardware.wait_for(
            lambda item: "LinearCmd" in item[0]
            and item[0]["LinearCmd"]["Vectors"][0]["Position"] == 0.4
        )
        assert linear[0]["LinearCmd"]["Id"] > forwarded[0]["LinearCmd"]["Id"]

        async with aiohttp.ClientSession() as session:
            url = f"http://127.0.0.1:{app.health_server.port}/healthz"

            async def _healthy():
                while True:
                    async with session.get(url) as response:
                        payload = await response.json()
                        if response.status == 200 and payload["session"] == "device_ready":
                            return payload
                    await asyncio.sleep(0.02)

            snapshot = await asyncio.wait_for(_healthy(), timeout=3.0)
        assert snapshot["role"] == "bridge"
        assert snapshot["session"] == "device_ready"
    finally:
        app.request_shutdown()
        exit_code = await asyncio.wait_for(task, timeout=5.0)

    assert exit_code == 0


@pytest.mark.asyncio
async def test_controller_streams_control_frames(tmp_path: Path, ws_server_factory):
    relay = await ws_server_factory()
    relay.greeting = [[{"type": "status", "state": "ready"}]]
    config = _config(tmp_path, relay.url)
    config.motion.model = "sampled"

    app = ControllerApp(config, key="porch", console=False)
    task = asyncio.create_task(app.run())
    try:
        await _until(lambda: app.context.tracker.device_ready)
        assert relay.queries[0] == {"type": "controller", "key": "porch"}

        engine = app.engine
        await engine.pointer_down(0.5)
        await asyncio.sleep(0.05)
        await engine.pointer_move(0.1)
        await asyncio.sleep(0.3)
        await engine.pointer_up()

        final = await relay.wait_for(
            lambda item: item.get("type") == "control" and item.get("isFinal") is True
        )
        assert 0.0 <= final["position"] <= 1.0
        frames = [item for item in relay.received if item.get("type") == "control"]
        assert len(frames) >= 2
    finally:
        app.request_shutdown()
        exit_code = await asyncio.wait_for(task, timeout=5.0)

    assert exit_code == 0


@pytest.mark.asyncio
async def test_app_exits_with_error_when_relay_unreachable(tmp_path: Path, unused_tcp_port):
    config = _config(tmp_path, f"ws://127.0.0.1:{unused_tcp_port}/ws")
    config.resilience.reconnect_max_attempts = 1

    app = ControllerApp(config, key="nowhere", console=False)

    assert await asyncio.wait_for(app.run(), timeout=5.0) == 1
    assert app.relay.gave_up is True
