"""Envelope check and schema-checked decoding of tracker records.

Expected line formats::

    {"ldr_tl":512,"ldr_tr":498,"ldr_bl":530,"ldr_br":505,"temp":24.5,
     "hPos":92,"vPos":41,"manual":false,"active":true}
    {"error":"overheat"}

Lines that are not wrapped in braces after trimming are transport noise
(boot banners, partial writes) and are dropped without a result.
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Union

from ..constants import ADC_MAX, ANGLE_MAX, ANGLE_MIN

ENVELOPE_OPEN = "{"
ENVELOPE_CLOSE = "}"
ERROR_FIELD = "error"

_LIGHT_FIELDS = (
    ("ldr_tl", "ldr_top_left"),
    ("ldr_tr", "ldr_top_right"),
    ("ldr_bl", "ldr_bottom_left"),
    ("ldr_br", "ldr_bottom_right"),
)
_ANGLE_FIELDS = (
    ("hPos", "horizontal_angle"),
    ("vPos", "vertical_angle"),
)
_FLAG_FIELDS = (
    ("manual", "manual"),
    ("active", "active"),
)


@dataclass(frozen=True, slots=True)
class TelemetryFrame:
    """One accepted data record from the tracker."""

    ldr_top_left: int
    ldr_top_right: int
    ldr_bottom_left: int
    ldr_bottom_right: int
    temperature: float
    horizontal_angle: float
    vertical_angle: float
    manual: bool
    active: bool


@dataclass(frozen=True, slots=True)
class ErrorFrame:
    """An error report sent explicitly by the device."""

    message: str


@dataclass(frozen=True, slots=True)
class ParseError:
    """A well-enveloped line that could not be decoded into a frame."""

    line: str
    reason: str


ParseResult = Union[TelemetryFrame, ErrorFrame, ParseError]


class _SchemaViolation(ValueError):
    pass


def has_envelope(text: str) -> bool:
    return text.startswith(ENVELOPE_OPEN) and text.endswith(ENVELOPE_CLOSE)


def parse_line(line: str, *, enforce_ranges: bool = True) -> Optional[ParseResult]:
    """Classify a candidate line.

    Returns ``None`` when the trimmed line is not brace-delimited, otherwise
    one of :class:`TelemetryFrame`, :class:`ErrorFrame` or :class:`ParseError`.
    Never raises on malformed input.
    """

    text = line.strip()
    if not has_envelope(text):
        return None

    try:
        payload = json.loads(text)
    except ValueError as exc:
        return ParseError(line=text, reason=f"invalid JSON: {exc}")

    if not isinstance(payload, dict):
        return ParseError(line=text, reason="record is not an object")

    error = payload.get(ERROR_FIELD)
    if error:
        return ErrorFrame(message=str(error))

    try:
        return decode_telemetry(payload, enforce_ranges=enforce_ranges)
    except _SchemaViolation as exc:
        return ParseError(line=text, reason=str(exc))


def decode_telemetry(
    payload: Mapping[str, Any], *, enforce_ranges: bool = True
) -> TelemetryFrame:
    values: dict[str, Any] = {}

    for key, attr in _LIGHT_FIELDS:
        reading = _require(payload, key)
        if isinstance(reading, bool) or not isinstance(reading, int):
            raise _SchemaViolation(f"{key} must be an integer, got {reading!r}")
        _as_float(key, reading)
        if enforce_ranges and not 0 <= reading <= ADC_MAX:
            raise _SchemaViolation(f"{key}={reading} outside 0..{ADC_MAX}")
        values[attr] = reading

    values["temperature"] = _require_number(payload, "temp")

    for key, attr in _ANGLE_FIELDS:
        angle = _require_number(payload, key)
        if enforce_ranges and not ANGLE_MIN <= angle <= ANGLE_MAX:
            raise _SchemaViolation(f"{key}={angle} outside {ANGLE_MIN}..{ANGLE_MAX}")
        values[attr] = angle

    for key, attr in _FLAG_FIELDS:
        flag = _require(payload, key)
        if not isinstance(flag, bool):
            raise _SchemaViolation(f"{key} must be a boolean, got {flag!r}")
        values[attr] = flag

    return TelemetryFrame(**values)


def _require(payload: Mapping[str, Any], key: str) -> Any:
    if key not in payload:
        raise _SchemaViolation(f"missing field {key}")
    return payload[key]


def _require_number(payload: Mapping[str, Any], key: str) -> float:
    value = _require(payload, key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise _SchemaViolation(f"{key} must be a number, got {value!r}")
    if not math.isfinite(_as_float(key, value)):
        raise _SchemaViolation(f"{key} is not a finite number")
    return value


def _as_float(key: str, value: int | float) -> float:
    # json.loads keeps arbitrarily large integer literals exact.
    try:
        return float(value)
    except OverflowError:
        raise _SchemaViolation(f"{key} is too large to represent") from None
