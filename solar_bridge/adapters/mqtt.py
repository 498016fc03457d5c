"""paho-mqtt wrapper used by the dashboard bridge.

paho runs its network loop on a thread of its own; every callback it fires
is marshalled back onto the asyncio loop that called :meth:`MQTTClient.connect`.

The client registers a retained last-will on ``<base_topic>/bridge`` so
dashboards can tell a crashed bridge from an idle tracker.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Awaitable, Callable, List, Optional, Set

import paho.mqtt.client as mqtt

from ..config import MQTTConfig

LOGGER = logging.getLogger(__name__)

MessageHandler = Callable[[str, bytes], Awaitable[None] | None]
DisconnectHandler = Callable[[int], None]

PRESENCE_SUFFIX = "bridge"


class MQTTConnectionError(RuntimeError):
    """Raised when the broker refuses, times out or rejects an operation."""


def _presence(online: bool) -> bytes:
    return json.dumps({"online": online}, separators=(",", ":")).encode("utf-8")


class MQTTClient:
    """Asyncio facade over one paho client session."""

    def __init__(self, config: MQTTConfig, *, keepalive: int = 60) -> None:
        self.config = config
        self.keepalive = keepalive
        self.presence_topic = f"{config.base_topic.strip('/')}/{PRESENCE_SUFFIX}"

        self._paho: Optional[mqtt.Client] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._connack: Optional[asyncio.Future[int]] = None
        self._closed: Optional[asyncio.Event] = None
        self._online = False
        self._on_payload: Optional[MessageHandler] = None
        self._disconnect_handlers: List[DisconnectHandler] = []
        self._handler_tasks: Set[asyncio.Task[None]] = set()

    async def connect(self, timeout: float = 30.0) -> None:
        loop = asyncio.get_running_loop()
        self._loop = loop
        self._connack = loop.create_future()
        self._closed = asyncio.Event()

        paho = mqtt.Client(
            mqtt.CallbackAPIVersion.VERSION2, client_id=self.config.client_id
        )
        paho.enable_logger(LOGGER)
        if self.config.username:
            paho.username_pw_set(self.config.username, self.config.password)
        paho.will_set(self.presence_topic, _presence(False), qos=1, retain=True)
        paho.on_connect = self._on_connect
        paho.on_disconnect = self._on_disconnect
        paho.on_message = self._on_message
        self._paho = paho

        host, port = self.config.broker_host, self.config.broker_port
        LOGGER.info("Connecting to MQTT broker %s:%s as %s", host, port, self.config.client_id)
        paho.connect_async(host, port, self.keepalive)
        paho.loop_start()

        try:
            rc = await asyncio.wait_for(asyncio.shield(self._connack), timeout=timeout)
        except asyncio.TimeoutError as exc:
            self._abandon()
            raise MQTTConnectionError(
                f"No CONNACK from {host}:{port} within {timeout:.0f}s"
            ) from exc

        if rc != 0:
            self._abandon()
            raise MQTTConnectionError(f"Broker {host}:{port} refused connection (rc={rc})")

        self.publish(self.presence_topic, _presence(True), qos=1, retain=True)

    async def disconnect(self, timeout: float = 5.0) -> None:
        paho = self._paho
        if paho is None:
            return

        # A clean disconnect suppresses the will, so clear presence explicitly.
        if self._online:
            paho.publish(self.presence_topic, _presence(False), qos=1, retain=True)
        paho.disconnect()

        assert self._closed is not None
        try:
            await asyncio.wait_for(self._closed.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            LOGGER.warning("Broker did not confirm disconnect within %.0fs", timeout)
        finally:
            self._abandon()

    def publish(
        self, topic: str, payload: bytes, qos: int = 1, retain: bool = False
    ) -> None:
        info = self._session().publish(topic, payload, qos=qos, retain=retain)
        _check(info.rc, f"publish to {topic}")

    def subscribe(self, topic: str, qos: int = 1) -> None:
        rc, _ = self._session().subscribe(topic, qos=qos)
        _check(rc, f"subscribe to {topic}")

    def unsubscribe(self, topic: str) -> None:
        rc, _ = self._session().unsubscribe(topic)
        _check(rc, f"unsubscribe from {topic}")

    def set_message_handler(self, handler: Optional[MessageHandler]) -> None:
        self._on_payload = handler

    def register_disconnect_handler(self, handler: DisconnectHandler) -> None:
        self._disconnect_handlers.append(handler)

    def is_connected(self) -> bool:
        return self._online

    def _session(self) -> mqtt.Client:
        if self._paho is None:
            raise RuntimeError("MQTT client not connected")
        return self._paho

    def _abandon(self) -> None:
        if self._paho is not None:
            self._paho.loop_stop()
        self._paho = None
        self._online = False

    def _post(self, callback: Callable[..., object], *args: object) -> None:
        loop = self._loop
        if loop is not None and not loop.is_closed():
            loop.call_soon_threadsafe(callback, *args)

    # paho network-thread callbacks -------------------------------------
    def _on_connect(self, client, userdata, flags, reason_code, properties) -> None:
        rc = _reason_value(reason_code)
        self._online = rc == 0
        if self._online:
            LOGGER.info("MQTT session established")
        else:
            LOGGER.error("MQTT broker refused connection (rc=%s)", rc)
        self._post(self._resolve_connack, rc)

    def _on_disconnect(
        self, client, userdata, disconnect_flags, reason_code, properties
    ) -> None:
        rc = _reason_value(reason_code)
        self._online = False
        LOGGER.info("MQTT session closed (rc=%s)", rc)
        if self._closed is not None:
            self._post(self._closed.set)
        for handler in list(self._disconnect_handlers):
            self._post(handler, rc)

    def _on_message(self, client, userdata, message: mqtt.MQTTMessage) -> None:
        if self._on_payload is None:
            return
        self._post(self._deliver, message.topic, bytes(message.payload))

    # event-loop side ---------------------------------------------------
    def _resolve_connack(self, rc: int) -> None:
        if self._connack is not None and not self._connack.done():
            self._connack.set_result(rc)

    def _deliver(self, topic: str, payload: bytes) -> None:
        handler = self._on_payload
        if handler is None:
            return
        try:
            result = handler(topic, payload)
            if asyncio.iscoroutine(result):
                task = asyncio.get_running_loop().create_task(result)
                self._handler_tasks.add(task)
                task.add_done_callback(self._handler_done)
        except Exception:
            LOGGER.exception("Handler for %s failed", topic)

    def _handler_done(self, task: asyncio.Task[None]) -> None:
        self._handler_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            LOGGER.error("MQTT message handler failed", exc_info=exc)


def _check(rc: int, action: str) -> None:
    if rc != mqtt.MQTT_ERR_SUCCESS:
        raise MQTTConnectionError(f"Failed to {action} (rc={rc})")


def _reason_value(reason_code) -> int:
    value = getattr(reason_code, "value", reason_code)
    try:
        return int(value)
    except (TypeError, ValueError):
        return -1
