"""Serialized command writes over the shared serial link."""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Optional, Protocol

from .protocol.commands import OutboundCommand

LOGGER = logging.getLogger(__name__)


class SendOutcome(str, Enum):
    """Result of handing a command to the channel."""

    SENT = "sent"
    NOT_CONNECTED = "not_connected"
    """No transport is attached; the command was dropped."""

    FAILED = "failed"
    """The transport raised while writing or draining."""

    SKIPPED = "skipped"
    """The command was not issued because the tracker state forbids it."""


class CommandWriter(Protocol):
    """The subset of :class:`asyncio.StreamWriter` used for commands."""

    def write(self, data: bytes) -> None: ...

    async def drain(self) -> None: ...

    def is_closing(self) -> bool: ...


class CommandChannel:
    """Single writer for outbound command lines.

    Every send takes the channel lock for the full write-and-drain so
    commands issued from independent triggers reach the wire whole and in
    the order they acquired the lock.
    """

    def __init__(self, *, encoding: str = "utf-8") -> None:
        self._encoding = encoding
        self._writer: Optional[CommandWriter] = None
        self._lock = asyncio.Lock()
        self.commands_sent = 0
        self.send_failures = 0

    @property
    def is_connected(self) -> bool:
        writer = self._writer
        return writer is not None and not writer.is_closing()

    def attach(self, writer: CommandWriter) -> None:
        self._writer = writer

    def detach(self) -> None:
        self._writer = None

    async def send(self, command: OutboundCommand) -> SendOutcome:
        data = command.encode(self._encoding)

        async with self._lock:
            writer = self._writer
            if writer is None or writer.is_closing():
                LOGGER.warning("Serial port not connected; cannot send %s", command)
                return SendOutcome.NOT_CONNECTED

            try:
                writer.write(data)
                await writer.drain()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                self.send_failures += 1
                LOGGER.warning("Failed to send %s: %s", command, exc)
                return SendOutcome.FAILED

            self.commands_sent += 1
            LOGGER.debug("Sent command %s", command)
            return SendOutcome.SENT
