"""Tests for the MQTT adapter."""

import asyncio
from types import SimpleNamespace

import pytest
import pytest_asyncio

from solar_bridge.adapters import MQTTClient, MQTTConnectionError
from solar_bridge.config import MQTTConfig

import paho.mqtt.client as mqtt


class FakeMqttClient:
    """Minimal fake paho-mqtt client for testing."""

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        events: dict,
        *args,
        rc_connect: int = 0,
        rc_disconnect: int = 0,
        publish_rc: int = mqtt.MQTT_ERR_SUCCESS,
        subscribe_rc: int = mqtt.MQTT_ERR_SUCCESS,
        **kwargs,
    ):
        self._loop = loop
        self._events = events
        self._rc_connect = rc_connect
        self._rc_disconnect = rc_disconnect
        self._publish_rc = publish_rc
        self._subscribe_rc = subscribe_rc
        events["client_args"] = (args, kwargs)

        self.on_connect = None
        self.on_disconnect = None
        self.on_message = None

    # paho interface -------------------------------------------------
    def enable_logger(self, logger):
        self._events.setdefault("logger_enabled", True)

    def username_pw_set(self, username, password=None):
        self._events["auth"] = (username, password)

    def will_set(self, topic, payload=None, qos=0, retain=False):
        self._events["will"] = (topic, payload, qos, retain)

    def connect_async(self, host, port, keepalive):
        self._events["connect_args"] = (host, port, keepalive)
        if self.on_connect:
            self._loop.call_soon(
                self.on_connect, self, None, None, self._rc_connect, None
            )

    def loop_start(self):
        self._events["loop_start"] = self._events.get("loop_start", 0) + 1

    def loop_stop(self):
        self._events["loop_stop"] = self._events.get("loop_stop", 0) + 1

    def disconnect(self):
        self._events["disconnect_called"] = True
        if self.on_disconnect:
            self._loop.call_soon(
                self.on_disconnect, self, None, None, self._rc_disconnect, None
            )

    def publish(self, topic, payload, qos=0, retain=False):
        self._events.setdefault("published", []).append((topic, payload, qos, retain))
        return SimpleNamespace(rc=self._publish_rc)

    def subscribe(self, topic, qos=0):
        self._events.setdefault("subscribed", []).append((topic, qos))
        return self._subscribe_rc, 1

    def unsubscribe(self, topic):
        self._events.setdefault("unsubscribed", []).append(topic)
        return mqtt.MQTT_ERR_SUCCESS, 2


def _install(monkeypatch, events: dict, **options) -> None:
    loop = asyncio.get_running_loop()

    def factory(*args, **kwargs):
        return FakeMqttClient(loop, events, *args, **options, **kwargs)

    monkeypatch.setattr("solar_bridge.adapters.mqtt.mqtt.Client", factory)


def _config(**overrides) -> MQTTConfig:
    values = dict(
        enabled=True,
        broker_host="broker.local",
        broker_port=1883,
        client_id="tracker-1",
    )
    values.update(overrides)
    return MQTTConfig(**values)


@pytest_asyncio.fixture
async def mqtt_client(monkeypatch):
    events: dict = {}
    _install(monkeypatch, events)

    client = MQTTClient(_config(username="tracker", password="secret"))
    await client.connect()

    yield client, events

    await client.disconnect()


@pytest.mark.asyncio
async def test_connect_configures_client(mqtt_client):
    client, events = mqtt_client

    assert events["connect_args"] == ("broker.local", 1883, 60)
    assert events["auth"] == ("tracker", "secret")
    assert events["loop_start"] == 1
    assert events["client_args"][1]["client_id"] == "tracker-1"
    assert client.is_connected()


@pytest.mark.asyncio
async def test_anonymous_connect_skips_credentials(monkeypatch):
    events: dict = {}
    _install(monkeypatch, events)

    client = MQTTClient(_config())
    await client.connect()
    await client.disconnect()

    assert "auth" not in events


@pytest.mark.asyncio
async def test_publish_delegates_to_client(mqtt_client):
    client, events = mqtt_client

    client.publish("solar-tracker/state", b"{}", qos=0, retain=True)

    assert events["published"][-1] == ("solar-tracker/state", b"{}", 0, True)


@pytest.mark.asyncio
async def test_subscribe_and_unsubscribe(mqtt_client):
    client, events = mqtt_client

    client.subscribe("solar-tracker/commands", qos=1)
    client.unsubscribe("solar-tracker/commands")

    assert events["subscribed"] == [("solar-tracker/commands", 1)]
    assert events["unsubscribed"] == ["solar-tracker/commands"]


@pytest.mark.asyncio
async def test_message_handler_dispatches_async(monkeypatch):
    events: dict = {}
    _install(monkeypatch, events)

    client = MQTTClient(_config())
    message_event = asyncio.Event()

    async def handler(topic: str, payload: bytes) -> None:
        events["handled"] = (topic, payload)
        message_event.set()

    client.set_message_handler(handler)
    await client.connect()

    message = SimpleNamespace(topic="solar-tracker/commands", payload=b"CENTER")
    client._on_message(client._paho, None, message)  # type: ignore[arg-type]

    await asyncio.wait_for(message_event.wait(), timeout=1.0)
    await client.disconnect()

    assert events["handled"] == ("solar-tracker/commands", b"CENTER")


@pytest.mark.asyncio
async def test_failing_async_handler_is_logged(monkeypatch, caplog):
    events: dict = {}
    _install(monkeypatch, events)

    client = MQTTClient(_config())
    attempted = asyncio.Event()

    async def handler(topic: str, payload: bytes) -> None:
        attempted.set()
        raise ValueError("unknown command")

    client.set_message_handler(handler)
    await client.connect()

    message = SimpleNamespace(topic="solar-tracker/commands", payload=b"JUMP")
    with caplog.at_level("ERROR", logger="solar_bridge.adapters.mqtt"):
        client._on_message(client._paho, None, message)  # type: ignore[arg-type]
        await asyncio.wait_for(attempted.wait(), timeout=1.0)
        await asyncio.sleep(0)

    await client.disconnect()

    assert not client._handler_tasks
    assert any(
        record.getMessage() == "MQTT message handler failed"
        and isinstance(record.exc_info[1], ValueError)
        for record in caplog.records
    )


@pytest.mark.asyncio
async def test_publish_failure_raises(monkeypatch):
    events: dict = {}
    _install(monkeypatch, events)

    client = MQTTClient(_config())
    await client.connect()
    client._paho._publish_rc = mqtt.MQTT_ERR_NO_CONN  # type: ignore[union-attr]

    with pytest.raises(MQTTConnectionError):
        client.publish("test", b"payload")

    await client.disconnect()


def test_publish_before_connect_raises():
    client = MQTTClient(_config())

    with pytest.raises(RuntimeError):
        client.publish("test", b"payload")


@pytest.mark.asyncio
async def test_disconnect_handler_invoked(monkeypatch):
    events: dict = {}
    _install(monkeypatch, events, rc_disconnect=1)

    client = MQTTClient(_config())
    disconnect_event = asyncio.Event()

    def _handler(rc: int) -> None:
        events["disconnect_rc"] = rc
        disconnect_event.set()

    client.register_disconnect_handler(_handler)

    await client.connect()
    await client.disconnect()

    await asyncio.wait_for(disconnect_event.wait(), timeout=1.0)
    assert events.get("disconnect_rc") == 1
    assert not client.is_connected()


@pytest.mark.asyncio
async def test_connect_failure_raises(monkeypatch):
    events: dict = {}
    _install(monkeypatch, events, rc_connect=5)

    client = MQTTClient(_config())

    with pytest.raises(MQTTConnectionError):
        await client.connect()

    assert events["loop_stop"] == 1


@pytest.mark.asyncio
async def test_presence_is_announced_and_cleared(monkeypatch):
    events: dict = {}
    _install(monkeypatch, events)

    client = MQTTClient(_config(base_topic="roof/tracker"))
    await client.connect()
    await client.disconnect()

    assert events["will"] == ("roof/tracker/bridge", b'{"online":false}', 1, True)
    assert events["published"] == [
        ("roof/tracker/bridge", b'{"online":true}', 1, True),
        ("roof/tracker/bridge", b'{"online":false}', 1, True),
    ]
