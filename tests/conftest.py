"""Shared fixtures, demo messages and a scripted transport for udpkit tests."""

from __future__ import annotations

import asyncio
import time
from collections import deque
from typing import Any

import pytest

from udpkit import Address, MessageCodec, TransportClosedError, TransportError

SENDER = Address("192.0.2.10", 40000)
LOCAL = Address("127.0.0.1", 5683)


codec = MessageCodec("test")


@codec.message(0x01)
class Request:
    path: str
    seq: int = 0
    payload: bytes = b""


@codec.message(0x02)
class Response:
    path: str
    seq: int = 0
    payload: bytes = b""


@codec.message(0x03)
class Note:
    text: str


class ScriptedTransport:
    """Transport whose receives replay a script of datagrams and errors.

    Script items are ``(data, source)`` pairs or exception instances, which
    are raised from ``recvfrom``.  Once the script is exhausted, receives
    block until ``close()``.  With ``reuse_buffer=True`` every datagram is
    returned as a view of one shared buffer, like a socket read into a
    reused array.
    """

    def __init__(
        self,
        script: list[tuple[bytes, Address] | BaseException] | None = None,
        *,
        reuse_buffer: bool = False,
        peer: Address | None = None,
    ) -> None:
        self._script: deque[tuple[bytes, Address] | BaseException] = deque(script or [])
        self._reuse_buffer = reuse_buffer
        self._buffer = bytearray(1500)
        self._peer = peer
        self._closed = asyncio.Event()
        self.exhausted = asyncio.Event()
        self.receive_calls = 0
        self.receive_times: list[float] = []
        self.sent: list[tuple[bytes, Address | None]] = []
        self.send_error: BaseException | None = None

    @property
    def local_address(self) -> Address | None:
        return LOCAL

    def remaining(self) -> int:
        return len(self._script)

    async def recvfrom(self, max_size: int, timeout: float | None = None) -> tuple[Any, Address]:
        self.receive_calls += 1
        self.receive_times.append(time.monotonic())
        if self._closed.is_set():
            raise TransportClosedError("use of closed transport")
        if not self._script:
            self.exhausted.set()
            async with asyncio.timeout(timeout):
                await self._closed.wait()
            raise TransportClosedError("use of closed transport")

        item = self._script.popleft()
        if isinstance(item, BaseException):
            raise item
        data, source = item
        data = data[:max_size]
        if self._reuse_buffer:
            self._buffer[: len(data)] = data
            return memoryview(self._buffer)[: len(data)], source
        return data, source

    def sendto(self, data: bytes, address: Address | None = None) -> None:
        if self._closed.is_set():
            raise TransportClosedError("use of closed transport")
        if self.send_error is not None:
            raise self.send_error
        if address is None and self._peer is None:
            raise TransportError("destination address required")
        self.sent.append((bytes(data), address))

    def close(self) -> None:
        self._closed.set()

    def is_closing(self) -> bool:
        return self._closed.is_set()


async def run_until_drained(server: Any, transport: ScriptedTransport) -> BaseException:
    """Serve until the script is used up, then close and return the stop error."""
    task = asyncio.create_task(server.serve())
    exhausted = asyncio.create_task(transport.exhausted.wait())
    done, _ = await asyncio.wait({task, exhausted}, return_when=asyncio.FIRST_COMPLETED)
    if task not in done:
        await server.join()
        transport.close()
    exhausted.cancel()
    try:
        await task
    except BaseException as exc:  # noqa: BLE001
        return exc
    raise AssertionError("serve() returned without raising")


@pytest.fixture
def scripted():
    """Factory for ``ScriptedTransport`` instances."""
    return ScriptedTransport
