"""Serial connection lifecycle and the telemetry read loop.

A ``SerialConnection`` owns one transport at a time. Opening it spawns a
single read task that frames, parses and translates the incoming stream;
the task ends on end-of-stream or a read error and returns the connection
to ``DISCONNECTED``, after which it can be opened again.
"""

from __future__ import annotations

import asyncio
import codecs
import contextlib
import logging
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from .adapters.serial_port import TransportOpener
from .channel import CommandChannel, SendOutcome
from .protocol import (
    ErrorFrame,
    LineBuffer,
    OutboundCommand,
    ParseError,
    TelemetryFrame,
    parse_line,
)
from .telemetry import DomainState, TelemetryStateStore

LOGGER = logging.getLogger(__name__)

FrameCallback = Callable[[DomainState], Awaitable[None] | None]
AlertCallback = Callable[[str, str], Awaitable[None] | None]
StateCallback = Callable[["ConnectionState"], None]

_CLOSE_TIMEOUT = 1.0


class ConnectionState(str, Enum):
    """Current state of the serial link."""

    DISCONNECTED = "disconnected"
    """No transport is open."""

    CONNECTING = "connecting"
    """The transport is being opened."""

    CONNECTED = "connected"
    """The transport is open and the read loop is running."""


@dataclass(slots=True)
class LinkStatistics:
    bytes_received: int = 0
    frames_accepted: int = 0
    error_frames: int = 0
    rejected_lines: int = 0
    decode_errors: int = 0
    overflows: int = 0

    def as_dict(self) -> Dict[str, int]:
        return asdict(self)


class SerialConnection:
    """Owns the transport, the read loop and the command channel."""

    def __init__(
        self,
        opener: TransportOpener,
        *,
        store: TelemetryStateStore,
        channel: Optional[CommandChannel] = None,
        read_size: int = 256,
        max_line_length: Optional[int] = None,
        encoding: str = "utf-8",
        enforce_ranges: bool = True,
    ) -> None:
        self._opener = opener
        self._store = store
        self._channel = channel or CommandChannel(encoding=encoding)
        self._read_size = max(1, read_size)
        self._max_line_length = max_line_length or None
        self._encoding = encoding
        self._enforce_ranges = enforce_ranges

        self._state = ConnectionState.DISCONNECTED
        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None
        self._read_task: Optional[asyncio.Task[None]] = None
        self._buffer: Optional[LineBuffer] = None
        self._decoder: Optional[codecs.IncrementalDecoder] = None

        self._frame_callback: Optional[FrameCallback] = None
        self._alert_callback: Optional[AlertCallback] = None
        self._state_callbacks: List[StateCallback] = []

        self.stats = LinkStatistics()

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == ConnectionState.CONNECTED

    @property
    def channel(self) -> CommandChannel:
        return self._channel

    @property
    def store(self) -> TelemetryStateStore:
        return self._store

    def set_frame_callback(self, callback: Optional[FrameCallback]) -> None:
        """Replace the callback invoked once per accepted telemetry frame."""
        self._frame_callback = callback

    def set_alert_callback(self, callback: Optional[AlertCallback]) -> None:
        """Replace the callback invoked with ``(kind, message)`` per device error."""
        self._alert_callback = callback

    def register_state_callback(self, callback: StateCallback) -> None:
        self._state_callbacks.append(callback)

    async def open(self) -> bool:
        """Open the transport and start the read loop.

        Returns ``False`` when the transport cannot be opened; the connection
        is then back in ``DISCONNECTED``.
        """

        if self._state != ConnectionState.DISCONNECTED:
            LOGGER.warning("Serial connection already %s", self._state.value)
            return self._state == ConnectionState.CONNECTED

        self._transition(ConnectionState.CONNECTING)

        try:
            reader, writer = await self._opener()
        except asyncio.CancelledError:
            self._transition(ConnectionState.DISCONNECTED)
            raise
        except Exception as exc:
            LOGGER.error("Failed to open serial transport: %s", exc)
            self._transition(ConnectionState.DISCONNECTED)
            return False

        self._reader = reader
        self._writer = writer
        self._buffer = LineBuffer(self._max_line_length)
        self._decoder = codecs.getincrementaldecoder(self._encoding)(errors="replace")
        self._channel.attach(writer)

        self._transition(ConnectionState.CONNECTED)
        self._read_task = asyncio.create_task(
            self._read_loop(reader), name="solar-bridge-serial-reader"
        )
        return True

    async def close(self) -> None:
        """Close the transport and wait for the read loop to finish."""

        task = self._read_task
        writer = self._writer

        if writer is not None and not writer.is_closing():
            LOGGER.info("Closing serial transport")
            writer.close()
            with contextlib.suppress(Exception):
                await writer.wait_closed()

        if task is not None and task is not asyncio.current_task():
            try:
                await asyncio.wait_for(asyncio.shield(task), timeout=_CLOSE_TIMEOUT)
            except asyncio.TimeoutError:
                LOGGER.warning("Serial read loop did not stop after close; cancelling")
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task

        self._teardown()

    async def send(self, command: OutboundCommand) -> SendOutcome:
        return await self._channel.send(command)

    # ------------------------------------------------------------------
    # Read loop
    # ------------------------------------------------------------------
    async def _read_loop(self, reader: asyncio.StreamReader) -> None:
        LOGGER.info("Serial read loop started")
        try:
            while True:
                chunk = await reader.read(self._read_size)
                if not chunk:
                    LOGGER.info("Serial stream reached end of file")
                    break
                await self._handle_chunk(chunk)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            LOGGER.warning("Serial read failed: %s", exc)
        finally:
            self._teardown()

    async def _handle_chunk(self, chunk: bytes) -> None:
        buffer = self._buffer
        decoder = self._decoder
        if buffer is None or decoder is None:
            return

        self.stats.bytes_received += len(chunk)
        dropped = buffer.overflow_count
        lines = buffer.append(decoder.decode(chunk))
        self.stats.overflows += buffer.overflow_count - dropped

        for line in lines:
            await self._handle_line(line)

    async def _handle_line(self, line: str) -> None:
        result = parse_line(line, enforce_ranges=self._enforce_ranges)

        if result is None:
            if line.strip():
                self.stats.rejected_lines += 1
                LOGGER.debug("Ignoring non-record line: %.80s", line.strip())
            return

        if isinstance(result, ParseError):
            self.stats.decode_errors += 1
            LOGGER.warning(
                "Dropping malformed frame (%s): %.120s", result.reason, result.line
            )
            return

        if isinstance(result, ErrorFrame):
            self.stats.error_frames += 1
            LOGGER.warning("Device reported error: %s", result.message)
            await self._invoke(self._alert_callback, "error", result.message)
            return

        if isinstance(result, TelemetryFrame):
            state = self._store.apply(result)
            self.stats.frames_accepted += 1
            await self._invoke(self._frame_callback, state)

    async def _invoke(self, callback: Optional[Callable[..., Any]], *args: Any) -> None:
        if callback is None:
            return
        try:
            result = callback(*args)
            if asyncio.iscoroutine(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception:
            LOGGER.exception("Serial connection callback failed")

    # ------------------------------------------------------------------
    # State management
    # ------------------------------------------------------------------
    def _teardown(self) -> None:
        if self._state == ConnectionState.DISCONNECTED and self._writer is None:
            return

        self._channel.detach()
        writer = self._writer
        if writer is not None and not writer.is_closing():
            writer.close()

        self._reader = None
        self._writer = None
        self._read_task = None
        self._buffer = None
        self._decoder = None
        self._transition(ConnectionState.DISCONNECTED)

    def _transition(self, state: ConnectionState) -> None:
        if state == self._state:
            return

        previous = self._state
        self._state = state
        LOGGER.info("Serial connection %s -> %s", previous.value, state.value)

        for callback in list(self._state_callbacks):
            try:
                callback(state)
            except Exception:
                LOGGER.exception("Connection state callback failed")
