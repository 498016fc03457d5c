import asyncio
import json
from typing import Awaitable, Callable, Optional, Union

import pytest


class FakeSerialWriter:
    """In-memory stand-in for the serial StreamWriter.

    Closing the writer feeds EOF to the paired reader, the way closing a
    serial transport ends a pending read.
    """

    def __init__(self, reader: asyncio.StreamReader) -> None:
        self._reader = reader
        self._closing = False
        self.data = bytearray()
        self.fail_writes = False

    def write(self, data: bytes) -> None:
        if self.fail_writes:
            raise OSError("write failed")
        self.data.extend(data)

    async def drain(self) -> None:
        await asyncio.sleep(0)

    def is_closing(self) -> bool:
        return self._closing

    def close(self) -> None:
        if self._closing:
            return
        self._closing = True
        self._reader.feed_eof()

    async def wait_closed(self) -> None:
        return None

    @property
    def lines(self) -> list[str]:
        return self.data.decode("utf-8").splitlines()


class FakeSerialPort:
    """Transport opener yielding an in-memory reader/writer pair."""

    def __init__(self) -> None:
        self.open_calls = 0
        self.fail_with: Optional[Exception] = None
        self.reader: Optional[asyncio.StreamReader] = None
        self.writer: Optional[FakeSerialWriter] = None

    async def __call__(self):
        self.open_calls += 1
        if self.fail_with is not None:
            raise self.fail_with
        self.reader = asyncio.StreamReader()
        self.writer = FakeSerialWriter(self.reader)
        return self.reader, self.writer

    def feed(self, data: Union[bytes, str]) -> None:
        assert self.reader is not None, "port not opened"
        if isinstance(data, str):
            data = data.encode("utf-8")
        self.reader.feed_data(data)


@pytest.fixture
def serial_port() -> FakeSerialPort:
    return FakeSerialPort()


async def _wait_until(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    async def _poll() -> None:
        while not predicate():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(_poll(), timeout=timeout)


@pytest.fixture
def wait_until() -> Callable[..., Awaitable[None]]:
    return _wait_until


BASE_RECORD = {
    "ldr_tl": 500,
    "ldr_tr": 500,
    "ldr_bl": 500,
    "ldr_br": 500,
    "temp": 25,
    "hPos": 90,
    "vPos": 45,
    "manual": False,
    "active": True,
}


def _record_line(**overrides) -> str:
    record = dict(BASE_RECORD)
    record.update(overrides)
    return json.dumps(record) + "\n"


@pytest.fixture
def record_line() -> Callable[..., str]:
    """Build one newline-terminated telemetry record, overriding fields."""
    return _record_line
