"""Main application entry-point for solar-bridge."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from .adapters.mqtt import MQTTClient, MQTTConnectionError
from .adapters.serial_port import SerialPortOpener, TransportOpener
from .alerts import AlertLog
from .config import BridgeConfig, load_config
from .connection import ConnectionState, SerialConnection
from .controls import TrackerController
from .dashboard import DashboardBridge
from .health import HealthReporter, HealthServer
from .logging import configure_logging
from .telemetry import TelemetryStateStore

LOGGER = logging.getLogger(__name__)


class SolarBridgeApp:
    """Coordinates application startup and shutdown.

    The serial link is opened once at startup. A transport failure leaves the
    service running in a degraded state with its HTTP and MQTT surfaces
    still up; it is not retried automatically.
    """

    def __init__(
        self,
        config: Optional[BridgeConfig] = None,
        *,
        opener: Optional[TransportOpener] = None,
        mqtt_client: Optional[MQTTClient] = None,
    ) -> None:
        self._config = config or load_config()
        serial = self._config.serial

        self._store = TelemetryStateStore()
        self._alerts = AlertLog(self._config.alerts.history_size)
        self._connection = SerialConnection(
            opener or SerialPortOpener(serial),
            store=self._store,
            read_size=serial.read_size,
            max_line_length=serial.max_line_length,
            encoding=serial.encoding,
            enforce_ranges=self._config.protocol.enforce_ranges,
        )
        self._connection.set_alert_callback(self._alerts.raise_alert)
        self._connection.register_state_callback(self._on_connection_state)
        self._controller = TrackerController(self._connection, self._alerts)

        self._health = HealthReporter()
        self._health.set_link_stats_provider(self._connection.stats.as_dict)
        self._health_server: Optional[HealthServer] = None

        self._mqtt_client = mqtt_client
        self._dashboard: Optional[DashboardBridge] = None

        self._shutdown_event: Optional[asyncio.Event] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._stopping = False
        self._link_up = False

    @property
    def config(self) -> BridgeConfig:
        return self._config

    @property
    def connection(self) -> SerialConnection:
        return self._connection

    @property
    def controller(self) -> TrackerController:
        return self._controller

    @property
    def store(self) -> TelemetryStateStore:
        return self._store

    @property
    def alerts(self) -> AlertLog:
        return self._alerts

    @property
    def health(self) -> HealthReporter:
        return self._health

    async def run(self) -> None:
        self._loop = asyncio.get_running_loop()
        if self._shutdown_event is None:
            self._shutdown_event = asyncio.Event()

        LOGGER.info("solar-bridge starting with config: %s", self._config.path)
        started = await self._start_services()
        if not started:
            LOGGER.warning("Service startup incomplete; running in degraded mode")

        try:
            LOGGER.info("solar-bridge active; awaiting shutdown signal")
            await self._shutdown_event.wait()
        except asyncio.CancelledError:
            LOGGER.info("solar-bridge received shutdown signal")
            raise
        finally:
            await self._stop_services()

    def request_shutdown(self) -> None:
        if self._shutdown_event is None:
            self._shutdown_event = asyncio.Event()
        self._shutdown_event.set()

    @classmethod
    def start(cls, config: Optional[BridgeConfig] = None) -> None:
        instance = cls(config=config)
        configure_logging(
            instance._config.logging.level,
            log_path=instance._config.logging.path,
            log_serial=instance._config.logging.log_serial,
        )
        try:
            asyncio.run(instance.run())
        except KeyboardInterrupt:
            LOGGER.info("solar-bridge received shutdown signal")

    async def _start_services(self) -> bool:
        self._stopping = False
        await self._health.update("serial", False, "initialising")

        await self._start_health_server()
        mqtt_ready = await self._start_dashboard()

        serial_ready = await self._connection.open()
        if not serial_ready:
            await self._health.update(
                "serial", False, f"failed to open {self._config.serial.port}"
            )

        return serial_ready and mqtt_ready

    async def _start_health_server(self) -> None:
        health = self._config.health
        if not health.enabled or health.port <= 0:
            return

        server = HealthServer(
            self._health,
            health.host,
            health.port,
            store=self._store,
            alerts=self._alerts,
        )
        try:
            await server.start()
        except OSError as exc:
            LOGGER.error("Failed to start health endpoint: %s", exc)
            await self._health.update("health-endpoint", False, str(exc))
        else:
            self._health_server = server

    async def _start_dashboard(self) -> bool:
        mqtt_config = self._config.mqtt
        if not mqtt_config.enabled:
            return True

        client = self._mqtt_client or MQTTClient(mqtt_config)
        client.register_disconnect_handler(self._on_mqtt_disconnect)
        try:
            await client.connect()
        except MQTTConnectionError as exc:
            LOGGER.error("MQTT unavailable; dashboard bridge disabled: %s", exc)
            await self._health.update("mqtt", False, str(exc))
            return False

        self._mqtt_client = client
        self._dashboard = DashboardBridge(
            client,
            base_topic=mqtt_config.base_topic,
            store=self._store,
            alerts=self._alerts,
            controller=self._controller,
        )
        await self._dashboard.start()
        self._dashboard.publish_connection_state(self._connection.state)
        await self._health.update("mqtt", True, None)
        return True

    async def _stop_services(self) -> None:
        self._stopping = True

        await self._connection.close()

        if self._dashboard is not None:
            await self._dashboard.stop()
            self._dashboard = None

        if self._mqtt_client is not None:
            try:
                await self._mqtt_client.disconnect()
            except Exception as exc:
                LOGGER.warning("MQTT disconnect failed: %s", exc)

        if self._health_server is not None:
            await self._health_server.stop()
            self._health_server = None

        LOGGER.info("solar-bridge stopped")

    def _on_connection_state(self, state: ConnectionState) -> None:
        if self._dashboard is not None:
            self._dashboard.publish_connection_state(state)

        if state == ConnectionState.CONNECTING:
            return

        healthy = state == ConnectionState.CONNECTED
        if healthy:
            self._link_up = True
            detail = self._config.serial.port
        elif self._link_up:
            self._link_up = False
            detail = "disconnected"
            if not self._stopping:
                LOGGER.warning("Serial link lost; restart to resume telemetry")
        else:
            return

        loop = self._loop
        if loop is not None and not loop.is_closed():
            loop.create_task(self._health.update("serial", healthy, detail))

    def _on_mqtt_disconnect(self, rc: int) -> None:
        if self._stopping:
            return
        LOGGER.warning("MQTT broker connection lost (rc=%s)", rc)
        loop = self._loop
        if loop is not None and not loop.is_closed():
            loop.create_task(self._health.update("mqtt", False, f"disconnected (rc={rc})"))
