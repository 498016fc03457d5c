"""Wire protocol between the host and the tracker firmware."""

from .commands import (
    CommandParseError,
    CommandToken,
    OutboundCommand,
    parse_command,
)
from .framing import LineBuffer
from .parser import (
    ErrorFrame,
    ParseError,
    ParseResult,
    TelemetryFrame,
    parse_line,
)

__all__ = [
    "CommandParseError",
    "CommandToken",
    "ErrorFrame",
    "LineBuffer",
    "OutboundCommand",
    "ParseError",
    "ParseResult",
    "TelemetryFrame",
    "parse_command",
    "parse_line",
]
