"""Health reporting and read-only HTTP views for solar-bridge."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

from aiohttp import web

from .alerts import AlertLog
from .telemetry import TelemetryStateStore

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class ComponentStatus:
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
    """Tracks component statuses for the running service."""

    def __init__(self) -> None:
        self._status: Dict[str, ComponentStatus] = {}
        self._lock = asyncio.Lock()
        self._link_stats: Optional[Callable[[], Dict[str, int]]] = None

    def set_link_stats_provider(
        self, provider: Optional[Callable[[], Dict[str, int]]]
    ) -> None:
        self._link_stats = provider

    async def update(
        self, name: str, healthy: bool, detail: Optional[str] = None
    ) -> None:
        async with self._lock:
            self._status[name] = ComponentStatus(
                name=name, healthy=healthy, detail=detail
            )

    async def snapshot(self) -> Dict[str, object]:
        async with self._lock:
            components = [status.as_dict() for status in self._status.values()]

        overall = "ok" if all(item["healthy"] for item in components) else "degraded"
        payload: Dict[str, object] = {"status": overall, "components": components}
        if self._link_stats is not None:
            payload["link"] = self._link_stats()
        return payload


class HealthServer:
    """Minimal HTTP server exposing `/healthz`, `/state` and `/alerts`."""

    def __init__(
        self,
        reporter: HealthReporter,
        host: str,
        port: int,
        *,
        store: Optional[TelemetryStateStore] = None,
        alerts: Optional[AlertLog] = None,
    ) -> None:
        self._reporter = reporter
        self._host = host
        self._port = port
        self._store = store
        self._alerts = alerts
        self._runner: Optional[web.AppRunner] = None
        self._site: Optional[web.TCPSite] = None

    def build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/healthz", self._handle_health)
        if self._store is not None:
            app.router.add_get("/state", self._handle_state)
        if self._alerts is not None:
            app.router.add_get("/alerts", self._handle_alerts)
        return app

    async def start(self) -> None:
        self._runner = web.AppRunner(self.build_app())
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, self._host, self._port)
        await self._site.start()
        LOGGER.info(
            "Health endpoint listening on http://%s:%s/healthz", self._host, self._port
        )

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

    async def _handle_state(self, request: web.Request) -> web.Response:
        assert self._store is not None
        return web.json_response(self._store.state.as_dict())

    async def _handle_alerts(self, request: web.Request) -> web.Response:
        assert self._alerts is not None
        return web.json_response(
            {"alerts": [alert.as_dict() for alert in self._alerts.recent()]}
        )
