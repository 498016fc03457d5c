"""MQTT surface for remote dashboards.

Topics, relative to the configured base topic:

- ``state`` (retained): latest domain state as JSON, one message per frame
- ``alerts``: one JSON message per alert
- ``connection`` (retained): serial link state
- ``commands``: inbound; plain tokens (``AUTO``, ``H120``) or JSON action
  requests (``{"action": "move_horizontal", "angle": 120}``)
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from typing import Any, Optional, Protocol

from .alerts import Alert, AlertLog
from .connection import ConnectionState
from .controls import TrackerController
from .protocol import CommandParseError
from .telemetry import DomainState, TelemetryStateStore

LOGGER = logging.getLogger(__name__)


class DashboardMQTTClient(Protocol):
    def subscribe(self, topic: str, qos: int = 1) -> None: ...

    def unsubscribe(self, topic: str) -> None: ...

    def publish(
        self, topic: str, payload: bytes, qos: int = 1, retain: bool = False
    ) -> None: ...

    def set_message_handler(self, handler): ...


class DashboardBridge:
    """Publishes telemetry and alerts, and routes inbound commands."""

    def __init__(
        self,
        client: DashboardMQTTClient,
        *,
        base_topic: str,
        store: TelemetryStateStore,
        alerts: AlertLog,
        controller: TrackerController,
    ) -> None:
        self._client = client
        self._store = store
        self._alerts = alerts
        self._controller = controller

        base = base_topic.strip("/")
        self.state_topic = f"{base}/state"
        self.alerts_topic = f"{base}/alerts"
        self.connection_topic = f"{base}/connection"
        self.commands_topic = f"{base}/commands"

        self._queue: Optional[asyncio.Queue[DomainState]] = None
        self._publish_task: Optional[asyncio.Task[None]] = None

    async def start(self) -> None:
        if self._publish_task is not None:
            return

        self._client.set_message_handler(self._handle_message)
        self._client.subscribe(self.commands_topic, qos=1)
        self._alerts.add_listener(self._on_alert)

        self._queue = self._store.listen()
        self._publish_task = asyncio.create_task(self._publish_loop())
        LOGGER.info("Dashboard bridge listening for commands on %s", self.commands_topic)

    async def stop(self) -> None:
        task = self._publish_task
        self._publish_task = None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

        if self._queue is not None:
            self._store.unlisten(self._queue)
            self._queue = None

        self._alerts.remove_listener(self._on_alert)
        self._client.set_message_handler(None)
        with contextlib.suppress(Exception):
            self._client.unsubscribe(self.commands_topic)

    def publish_connection_state(self, state: ConnectionState) -> None:
        self._publish(self.connection_topic, {"state": state.value}, retain=True)

    def publish_state(self, state: DomainState) -> None:
        self._publish(self.state_topic, state.as_dict(), retain=True)

    async def _publish_loop(self) -> None:
        assert self._queue is not None
        while True:
            state = await self._queue.get()
            self.publish_state(state)

    def _on_alert(self, alert: Alert) -> None:
        self._publish(self.alerts_topic, alert.as_dict(), qos=1)

    async def _handle_message(self, topic: str, payload: bytes) -> None:
        if topic != self.commands_topic:
            return

        text = payload.decode("utf-8", errors="replace").strip()
        try:
            request: Any = json.loads(text)
        except ValueError:
            request = text

        try:
            if isinstance(request, dict):
                outcome = await self._controller.dispatch(request)
            else:
                outcome = await self._controller.send_raw(str(request))
        except CommandParseError as exc:
            LOGGER.warning("Rejected dashboard command %r: %s", text, exc)
            return
        except Exception:
            LOGGER.exception("Dashboard command %r failed", text)
            return

        LOGGER.debug("Dashboard command %r -> %s", text, outcome.value)

    def _publish(
        self, topic: str, document: dict, *, qos: int = 0, retain: bool = False
    ) -> None:
        body = json.dumps(document, separators=(",", ":")).encode("utf-8")
        try:
            self._client.publish(topic, body, qos=qos, retain=retain)
        except Exception as exc:
            LOGGER.warning("Failed to publish to %s: %s", topic, exc)
