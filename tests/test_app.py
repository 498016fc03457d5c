"""Tests for SolarBridgeApp startup, wiring and shutdown."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest

from solar_bridge.adapters import MQTTConnectionError
from solar_bridge.app import SolarBridgeApp
from solar_bridge.config import BridgeConfig, load_config
from solar_bridge.connection import ConnectionState


class FakeMQTT:
    def __init__(self, *, fail_connect: bool = False) -> None:
        self.fail_connect = fail_connect
        self.connected = False
        self.disconnect_calls = 0
        self.handler = None
        self.subscriptions: list[tuple[str, int]] = []
        self.disconnect_handlers: list = []
        self.published: list[tuple[str, bytes, int, bool]] = []

    async def connect(self, timeout: float = 30.0) -> None:
        if self.fail_connect:
            raise MQTTConnectionError("broker unreachable")
        self.connected = True

    async def disconnect(self, timeout: float = 5.0) -> None:
        self.disconnect_calls += 1
        self.connected = False

    def register_disconnect_handler(self, handler) -> None:
        self.disconnect_handlers.append(handler)

    def set_message_handler(self, handler):
        self.handler = handler

    def subscribe(self, topic: str, qos: int = 1) -> None:
        self.subscriptions.append((topic, qos))

    def unsubscribe(self, topic: str) -> None:
        pass

    def publish(
        self, topic: str, payload: bytes, qos: int = 1, retain: bool = False
    ) -> None:
        self.published.append((topic, payload, qos, retain))

    def documents(self, topic: str) -> list[dict]:
        return [json.loads(body) for name, body, _, _ in self.published if name == topic]


def _config(tmp_path: Path, *, mqtt: bool = True) -> BridgeConfig:
    config = load_config(tmp_path / "solar-bridge.cfg")
    config.mqtt.enabled = mqtt
    config.mqtt.base_topic = "tracker"
    return config


async def _start(app: SolarBridgeApp) -> asyncio.Task[None]:
    task = asyncio.create_task(app.run())
    await asyncio.sleep(0.01)
    return task


async def _shutdown(app: SolarBridgeApp, task: asyncio.Task[None]) -> None:
    app.request_shutdown()
    await asyncio.wait_for(task, timeout=2.0)


@pytest.mark.asyncio
async def test_app_bridges_frames_to_dashboard(
    tmp_path, serial_port, wait_until, record_line
) -> None:
    mqtt = FakeMQTT()
    app = SolarBridgeApp(_config(tmp_path), opener=serial_port, mqtt_client=mqtt)
    task = await _start(app)

    try:
        await wait_until(lambda: app.connection.is_connected)
        assert ("tracker/commands", 1) in mqtt.subscriptions

        serial_port.feed(record_line(hPos=150))
        await wait_until(lambda: mqtt.documents("tracker/state"))

        state = mqtt.documents("tracker/state")[-1]
        assert state["panelPosition"]["azimuth"] == 150
        assert {"state": "connected"} in mqtt.documents("tracker/connection")
    finally:
        await _shutdown(app, task)

    assert app.connection.state is ConnectionState.DISCONNECTED
    assert mqtt.disconnect_calls == 1


@pytest.mark.asyncio
async def test_app_forwards_device_errors_as_alerts(
    tmp_path, serial_port, wait_until
) -> None:
    mqtt = FakeMQTT()
    app = SolarBridgeApp(_config(tmp_path), opener=serial_port, mqtt_client=mqtt)
    task = await _start(app)

    try:
        await wait_until(lambda: app.connection.is_connected)
        serial_port.feed('{"error":"overheat"}\n')
        await wait_until(lambda: len(app.alerts) == 1)

        assert app.alerts.recent()[0].message == "overheat"
        assert mqtt.documents("tracker/alerts")[0]["kind"] == "error"
    finally:
        await _shutdown(app, task)


@pytest.mark.asyncio
async def test_app_routes_dashboard_commands(tmp_path, serial_port, wait_until) -> None:
    mqtt = FakeMQTT()
    app = SolarBridgeApp(_config(tmp_path), opener=serial_port, mqtt_client=mqtt)
    task = await _start(app)

    try:
        await wait_until(lambda: app.connection.is_connected)
        await mqtt.handler("tracker/commands", b"V60")

        assert serial_port.writer.lines == ["V60"]
    finally:
        await _shutdown(app, task)


@pytest.mark.asyncio
async def test_app_runs_degraded_when_port_fails(tmp_path, serial_port) -> None:
    serial_port.fail_with = OSError("could not open port")
    app = SolarBridgeApp(_config(tmp_path, mqtt=False), opener=serial_port)
    task = await _start(app)

    try:
        snapshot = await app.health.snapshot()
        components = {item["name"]: item for item in snapshot["components"]}

        assert snapshot["status"] == "degraded"
        assert components["serial"]["detail"].startswith("failed to open")
        assert not task.done()
    finally:
        await _shutdown(app, task)


@pytest.mark.asyncio
async def test_app_continues_without_broker(tmp_path, serial_port, wait_until) -> None:
    mqtt = FakeMQTT(fail_connect=True)
    app = SolarBridgeApp(_config(tmp_path), opener=serial_port, mqtt_client=mqtt)
    task = await _start(app)

    try:
        await wait_until(lambda: app.connection.is_connected)
        await asyncio.sleep(0.01)
        snapshot = await app.health.snapshot()
        components = {item["name"]: item for item in snapshot["components"]}

        assert components["mqtt"]["healthy"] is False
        assert components["serial"]["healthy"] is True
    finally:
        await _shutdown(app, task)


@pytest.mark.asyncio
async def test_app_marks_serial_unhealthy_after_link_loss(
    tmp_path, serial_port, wait_until
) -> None:
    app = SolarBridgeApp(_config(tmp_path, mqtt=False), opener=serial_port)
    task = await _start(app)

    async def serial_detail():
        snapshot = await app.health.snapshot()
        components = {item["name"]: item for item in snapshot["components"]}
        return components["serial"]

    try:
        await wait_until(lambda: app.connection.is_connected)
        serial_port.reader.feed_eof()
        await wait_until(lambda: not app.connection.is_connected)
        await asyncio.sleep(0.01)

        serial = await serial_detail()
        assert serial["healthy"] is False
        assert serial["detail"] == "disconnected"
    finally:
        await _shutdown(app, task)


@pytest.mark.asyncio
async def test_app_marks_mqtt_unhealthy_when_broker_drops(
    tmp_path, serial_port, wait_until
) -> None:
    mqtt = FakeMQTT()
    app = SolarBridgeApp(_config(tmp_path), opener=serial_port, mqtt_client=mqtt)
    task = await _start(app)

    try:
        await wait_until(lambda: app.connection.is_connected)
        for handler in mqtt.disconnect_handlers:
            handler(7)
        await asyncio.sleep(0.01)

        snapshot = await app.health.snapshot()
        components = {item["name"]: item for item in snapshot["components"]}
        assert components["mqtt"]["healthy"] is False
        assert components["mqtt"]["detail"] == "disconnected (rc=7)"
    finally:
        await _shutdown(app, task)
