"""User-visible alerts raised by the device or by local actions."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Awaitable, Callable, Deque, Dict, List, Optional, Set

from .constants import DEFAULT_ALERT_HISTORY

LOGGER = logging.getLogger(__name__)


class AlertKind(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class Alert:
    kind: AlertKind
    message: str
    raised_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def as_dict(self) -> Dict[str, object]:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "raisedAt": self.raised_at.isoformat(timespec="seconds"),
        }


AlertListener = Callable[[Alert], Awaitable[None] | None]


class AlertLog:
    """Keeps the most recent alerts, newest first, and notifies listeners."""

    def __init__(self, history_size: int = DEFAULT_ALERT_HISTORY) -> None:
        self._alerts: Deque[Alert] = deque(maxlen=max(1, history_size))
        self._listeners: List[AlertListener] = []
        self._pending: Set[asyncio.Task[None]] = set()

    def add_listener(self, listener: AlertListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: AlertListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def raise_alert(self, kind: AlertKind | str, message: str) -> Alert:
        alert = Alert(kind=AlertKind(kind), message=message)
        self._alerts.appendleft(alert)

        log_level = logging.WARNING if alert.kind != AlertKind.INFO else logging.INFO
        LOGGER.log(log_level, "Alert (%s): %s", alert.kind.value, message)

        for listener in list(self._listeners):
            try:
                result = listener(alert)
                if asyncio.iscoroutine(result):
                    task = asyncio.get_running_loop().create_task(result)
                    self._pending.add(task)
                    task.add_done_callback(self._listener_done)
            except Exception:
                LOGGER.exception("Alert listener failed")

        return alert

    @property
    def pending_deliveries(self) -> int:
        return len(self._pending)

    def _listener_done(self, task: asyncio.Task[None]) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            LOGGER.error("Alert listener failed", exc_info=exc)

    def recent(self, limit: Optional[int] = None) -> List[Alert]:
        alerts = list(self._alerts)
        if limit is not None:
            return alerts[:limit]
        return alerts

    def clear(self) -> None:
        self._alerts.clear()

    def __len__(self) -> int:
        return len(self._alerts)
