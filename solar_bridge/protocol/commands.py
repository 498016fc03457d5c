"""Outbound command tokens understood by the tracker firmware."""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional

COMMAND_TERMINATOR = "\n"


class CommandParseError(ValueError):
    """Raised when text does not name a known tracker command."""


class CommandToken(str, Enum):
    AUTO = "AUTO"
    MANUAL = "MANUAL"
    START = "START"
    STOP = "STOP"
    CENTER = "CENTER"
    HORIZONTAL = "H"
    """Set the horizontal (azimuth) servo angle."""

    VERTICAL = "V"
    """Set the vertical (elevation) servo angle."""

    @property
    def parameterized(self) -> bool:
        return self in _PARAMETERIZED


_PARAMETERIZED = frozenset({CommandToken.HORIZONTAL, CommandToken.VERTICAL})
_MOVE_PATTERN = re.compile(r"^([HV])(-?\d+)$")


@dataclass(frozen=True, slots=True)
class OutboundCommand:
    """A single command line destined for the device.

    Move commands carry the angle verbatim; the firmware owns range checks.
    """

    token: CommandToken
    angle: Optional[int] = None

    def __post_init__(self) -> None:
        if self.token.parameterized:
            if isinstance(self.angle, bool) or not isinstance(self.angle, int):
                raise ValueError(f"{self.token.name} requires an integer angle")
        elif self.angle is not None:
            raise ValueError(f"{self.token.name} does not take an angle")

    @classmethod
    def auto(cls) -> OutboundCommand:
        return cls(CommandToken.AUTO)

    @classmethod
    def manual(cls) -> OutboundCommand:
        return cls(CommandToken.MANUAL)

    @classmethod
    def start(cls) -> OutboundCommand:
        return cls(CommandToken.START)

    @classmethod
    def stop(cls) -> OutboundCommand:
        return cls(CommandToken.STOP)

    @classmethod
    def center(cls) -> OutboundCommand:
        return cls(CommandToken.CENTER)

    @classmethod
    def horizontal(cls, angle: int) -> OutboundCommand:
        return cls(CommandToken.HORIZONTAL, angle)

    @classmethod
    def vertical(cls, angle: int) -> OutboundCommand:
        return cls(CommandToken.VERTICAL, angle)

    @property
    def text(self) -> str:
        if self.angle is None:
            return self.token.value
        return f"{self.token.value}{self.angle}"

    def encode(self, encoding: str = "utf-8") -> bytes:
        return (self.text + COMMAND_TERMINATOR).encode(encoding)

    def __str__(self) -> str:
        return self.text


def parse_command(text: str) -> OutboundCommand:
    """Parse a wire-format token such as ``AUTO`` or ``H120``."""

    normalized = text.strip().upper()
    if not normalized:
        raise CommandParseError("Empty command")

    match = _MOVE_PATTERN.match(normalized)
    if match:
        return OutboundCommand(CommandToken(match.group(1)), int(match.group(2)))

    try:
        token = CommandToken(normalized)
    except ValueError:
        raise CommandParseError(f"Unknown command: {text!r}") from None

    if token.parameterized:
        raise CommandParseError(f"Command {token.value} requires an angle")
    return OutboundCommand(token)
