"""High-level tracker controls issued on behalf of the operator."""

from __future__ import annotations

import logging
from typing import Any, Mapping

from .alerts import AlertKind, AlertLog
from .channel import SendOutcome
from .connection import SerialConnection
from .protocol import CommandParseError, OutboundCommand, parse_command
from .telemetry import TrackerMode

LOGGER = logging.getLogger(__name__)

EMERGENCY_STOP_MESSAGE = "Software stop command sent to device."


class TrackerController:
    """Maps operator intents onto command tokens.

    Manual moves are only issued while the latest telemetry reports manual
    mode; in automatic mode the firmware positions the panel itself.
    """

    def __init__(self, connection: SerialConnection, alerts: AlertLog) -> None:
        self._connection = connection
        self._alerts = alerts

    async def set_mode(self, mode: TrackerMode | str) -> SendOutcome:
        mode = TrackerMode(mode)
        command = (
            OutboundCommand.manual()
            if mode == TrackerMode.MANUAL
            else OutboundCommand.auto()
        )
        return await self._connection.send(command)

    async def move_horizontal(self, angle: int) -> SendOutcome:
        return await self._move(OutboundCommand.horizontal(angle))

    async def move_vertical(self, angle: int) -> SendOutcome:
        return await self._move(OutboundCommand.vertical(angle))

    async def toggle_power(self) -> SendOutcome:
        if self._connection.store.state.status.is_active:
            return await self._connection.send(OutboundCommand.stop())
        return await self._connection.send(OutboundCommand.start())

    async def calibrate(self) -> SendOutcome:
        return await self._connection.send(OutboundCommand.center())

    async def emergency_stop(self) -> SendOutcome:
        outcome = await self._connection.send(OutboundCommand.stop())
        self._alerts.raise_alert(AlertKind.ERROR, EMERGENCY_STOP_MESSAGE)
        return outcome

    async def send_raw(self, text: str) -> SendOutcome:
        """Send a wire-format token such as ``CENTER`` or ``V45`` unchanged."""
        return await self._connection.send(parse_command(text))

    async def dispatch(self, request: Mapping[str, Any]) -> SendOutcome:
        """Execute an action request of the form ``{"action": ..., ...}``."""

        action = str(request.get("action", "")).strip().lower()

        if action == "set_mode":
            try:
                return await self.set_mode(str(request.get("mode", "")).lower())
            except ValueError:
                raise CommandParseError(f"Unknown mode: {request.get('mode')!r}") from None
        if action in ("move_horizontal", "move_vertical"):
            angle = _coerce_angle(request.get("angle"))
            if action == "move_horizontal":
                return await self.move_horizontal(angle)
            return await self.move_vertical(angle)
        if action == "toggle_power":
            return await self.toggle_power()
        if action == "calibrate":
            return await self.calibrate()
        if action == "emergency_stop":
            return await self.emergency_stop()
        if action == "send":
            return await self.send_raw(str(request.get("command", "")))

        raise CommandParseError(f"Unknown action: {action!r}")

    async def _move(self, command: OutboundCommand) -> SendOutcome:
        if not self._connection.store.state.is_manual:
            LOGGER.info("Ignoring %s while the tracker is in automatic mode", command)
            return SendOutcome.SKIPPED
        return await self._connection.send(command)


def _coerce_angle(value: Any) -> int:
    if isinstance(value, bool):
        raise CommandParseError(f"Invalid angle: {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise CommandParseError(f"Invalid angle: {value!r}") from None
