"""Translation of accepted frames into the tracker's domain state.

The domain state is replaced wholesale on every accepted frame. Readers only
ever see complete frozen snapshots, and the store is written from a single
place: the connection's read loop.
"""

from __future__ import annotations

import asyncio
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence

from .constants import ADC_MAX, EFFICIENCY_SCALE, MAX_POWER_WATTS, NOMINAL_VOLTAGE
from .protocol.parser import TelemetryFrame

_EXACT_INTEGER_LIMIT = 2.0**52


class TrackerMode(str, Enum):
    AUTOMATIC = "automatic"
    MANUAL = "manual"


@dataclass(frozen=True, slots=True)
class SensorData:
    ldr_top_left: float = 0
    ldr_top_right: float = 0
    ldr_bottom_left: float = 0
    ldr_bottom_right: float = 0
    temperature: float = 0

    @property
    def readings(self) -> tuple[float, float, float, float]:
        return (
            self.ldr_top_left,
            self.ldr_top_right,
            self.ldr_bottom_left,
            self.ldr_bottom_right,
        )


@dataclass(frozen=True, slots=True)
class PanelPosition:
    azimuth: float = 90
    elevation: float = 90


@dataclass(frozen=True, slots=True)
class PowerMetrics:
    average_light: float = 0.0
    power: float = 0.0
    voltage: float = 0.0
    current: float = 0.0
    efficiency: float = 0


@dataclass(frozen=True, slots=True)
class SystemStatus:
    mode: TrackerMode = TrackerMode.AUTOMATIC
    is_active: bool = False


@dataclass(frozen=True, slots=True)
class DomainState:
    sensors: SensorData = SensorData()
    position: PanelPosition = PanelPosition()
    power: PowerMetrics = PowerMetrics()
    status: SystemStatus = SystemStatus()
    updated_at: Optional[datetime] = None

    @property
    def is_manual(self) -> bool:
        return self.status.mode == TrackerMode.MANUAL

    def as_dict(self) -> Dict[str, Any]:
        return {
            "sensorData": {
                "ldrTopLeft": self.sensors.ldr_top_left,
                "ldrTopRight": self.sensors.ldr_top_right,
                "ldrBottomLeft": self.sensors.ldr_bottom_left,
                "ldrBottomRight": self.sensors.ldr_bottom_right,
                "temperature": self.sensors.temperature,
            },
            "panelPosition": {
                "azimuth": self.position.azimuth,
                "elevation": self.position.elevation,
            },
            "powerMetrics": {
                "averageLight": self.power.average_light,
                "voltage": self.power.voltage,
                "current": self.power.current,
                "power": self.power.power,
                "efficiency": self.power.efficiency,
            },
            "systemStatus": {
                "mode": self.status.mode.value,
                "isActive": self.status.is_active,
            },
            "updatedAt": (
                self.updated_at.isoformat(timespec="seconds")
                if self.updated_at
                else None
            ),
        }


def _round_half_up(value: float, digits: int) -> float:
    if not math.isfinite(value):
        return value
    # Floats this large have no fractional digits left to round.
    if abs(value) >= _EXACT_INTEGER_LIMIT:
        return float(value)
    quantum = Decimal(1).scaleb(-digits)
    return float(Decimal(repr(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def _round_nearest(value: float) -> float:
    # Halves round towards positive infinity.
    if not math.isfinite(value):
        return value
    return int(math.floor(value + 0.5))


def compute_metrics(readings: Sequence[float]) -> PowerMetrics:
    """Estimate panel output from the raw light readings.

    Power scales linearly with the mean reading up to ``MAX_POWER_WATTS`` at
    full scale; current follows from the rounded power at the nominal
    voltage. Nothing is clamped, so out-of-range readings yield efficiencies
    above 100.
    """

    average = sum(readings) / len(readings)
    fraction = average / ADC_MAX
    power = _round_half_up(fraction * MAX_POWER_WATTS, 1)
    current = _round_half_up(power / NOMINAL_VOLTAGE, 1)
    return PowerMetrics(
        average_light=average,
        power=power,
        voltage=NOMINAL_VOLTAGE,
        current=current,
        efficiency=_round_nearest(fraction * EFFICIENCY_SCALE),
    )


def translate(
    frame: TelemetryFrame, *, observed_at: Optional[datetime] = None
) -> DomainState:
    sensors = SensorData(
        ldr_top_left=frame.ldr_top_left,
        ldr_top_right=frame.ldr_top_right,
        ldr_bottom_left=frame.ldr_bottom_left,
        ldr_bottom_right=frame.ldr_bottom_right,
        temperature=frame.temperature,
    )
    return DomainState(
        sensors=sensors,
        position=PanelPosition(
            azimuth=frame.horizontal_angle, elevation=frame.vertical_angle
        ),
        power=compute_metrics(sensors.readings),
        status=SystemStatus(
            mode=TrackerMode.MANUAL if frame.manual else TrackerMode.AUTOMATIC,
            is_active=frame.active,
        ),
        updated_at=observed_at,
    )


class TelemetryStateStore:
    """Holds the latest domain state and fans snapshots out to listeners.

    Listeners receive snapshots through bounded queues; when a listener falls
    behind, its oldest snapshot is dropped in favour of the newest.
    """

    def __init__(
        self,
        *,
        clock: Optional[Callable[[], datetime]] = None,
        listener_queue_size: int = 16,
    ) -> None:
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._listener_queue_size = max(1, listener_queue_size)
        self._state = DomainState()
        self._listeners: List[asyncio.Queue[DomainState]] = []
        self.frames_applied = 0

    @property
    def state(self) -> DomainState:
        return self._state

    def apply(self, frame: TelemetryFrame) -> DomainState:
        state = translate(frame, observed_at=self._clock())
        self._state = state
        self.frames_applied += 1

        for queue in list(self._listeners):
            if queue.full():
                queue.get_nowait()
            queue.put_nowait(state)

        return state

    def listen(self) -> asyncio.Queue[DomainState]:
        queue: asyncio.Queue[DomainState] = asyncio.Queue(
            maxsize=self._listener_queue_size
        )
        self._listeners.append(queue)
        return queue

    def unlisten(self, queue: asyncio.Queue[DomainState]) -> None:
        if queue in self._listeners:
            self._listeners.remove(queue)
