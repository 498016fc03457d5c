"""Serial transport opener built on pyserial-asyncio."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Tuple

import serial_asyncio

from ..config import SerialConfig

LOGGER = logging.getLogger(__name__)

StreamPair = Tuple[asyncio.StreamReader, asyncio.StreamWriter]
TransportOpener = Callable[[], Awaitable[StreamPair]]


class SerialPortOpener:
    """Open the configured serial port as an asyncio stream pair.

    Closing the returned writer closes the port, which feeds EOF to the
    reader so a pending read resolves instead of hanging.
    """

    def __init__(self, config: SerialConfig) -> None:
        self.config = config

    async def __call__(self) -> StreamPair:
        LOGGER.info(
            "Opening serial port %s @ %d baud", self.config.port, self.config.baudrate
        )
        return await serial_asyncio.open_serial_connection(
            url=self.config.port,
            baudrate=self.config.baudrate,
        )
