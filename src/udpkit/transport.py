"""Datagram transport built on asyncio's datagram endpoints.

Defines the ``Transport`` protocol the server and the I/O helpers depend
on, and ``DatagramTransport``, a UDP implementation that exposes a
pull-style ``recvfrom`` on top of ``loop.create_datagram_endpoint``.
Use ``bind`` for a listening endpoint and ``connect`` for a client
endpoint with a fixed peer.
"""

from __future__ import annotations

import asyncio
import errno
import logging
from typing import Final, Protocol, runtime_checkable

from udpkit.address import NETWORKS, Address, resolve_address
from udpkit.errors import (
    AddressError,
    BindError,
    TransientTransportError,
    TransportClosedError,
    TransportError,
)

__all__ = [
    "MAX_DATAGRAM_SIZE",
    "DatagramTransport",
    "Transport",
    "bind",
    "connect",
    "is_transient",
]

logger = logging.getLogger("udpkit.transport")

MAX_DATAGRAM_SIZE: Final[int] = 1500

_TRANSIENT_ERRNOS: Final[frozenset[int]] = frozenset({
    errno.EINTR,
    errno.EAGAIN,
    errno.EWOULDBLOCK,
    errno.EMFILE,
    errno.ENFILE,
    errno.ECONNRESET,
    errno.ECONNABORTED,
    errno.ETIMEDOUT,
    errno.ENOBUFS,
})

_CLOSED: Final = object()


def is_transient(exc: BaseException) -> bool:
    """Return ``True`` if *exc* is a recoverable transport condition.

    Timeouts, ``TransientTransportError`` and ``OSError`` values carrying
    a temporary errno (``EAGAIN``, ``EINTR``, ``ENOBUFS`` ...) are
    transient.  Everything else, including a closed transport, is fatal.

    Examples
    --------
    >>> is_transient(TimeoutError())
    True
    >>> is_transient(TransportClosedError("closed"))
    False
    """
    if isinstance(exc, (TimeoutError, TransientTransportError)):
        return True
    if isinstance(exc, TransportError):
        return False
    if isinstance(exc, OSError):
        return exc.errno in _TRANSIENT_ERRNOS
    return False


@runtime_checkable
class Transport(Protocol):
    """What the server needs from a datagram socket.

    Any object with these members satisfies the protocol, which is how
    tests substitute scripted transports for real sockets.
    """

    @property
    def local_address(self) -> Address | None: ...

    async def recvfrom(
        self, max_size: int, timeout: float | None = None
    ) -> tuple[bytes, Address]:
        """Wait for the next datagram.

        Parameters
        ----------
        max_size : int
            Datagrams longer than this are truncated.
        timeout : float | None
            Seconds to wait; ``None`` waits until a datagram arrives or the
            transport is closed.

        Raises
        ------
        TimeoutError
            No datagram arrived within *timeout*.
        TransportClosedError
            The transport is closed.
        """
        ...

    def sendto(self, data: bytes, address: Address | None = None) -> None:
        """Send one datagram to *address*, or to the connected peer if ``None``."""
        ...

    def close(self) -> None: ...

    def is_closing(self) -> bool: ...


class DatagramTransport:
    """UDP endpoint with awaitable receive and synchronous send.

    Incoming datagrams are queued by the underlying protocol until a caller
    awaits ``recvfrom``.  At most ``max_queue`` datagrams are held; further
    ones are dropped, as a full socket buffer would.

    Parameters
    ----------
    network : str
        ``"udp"``, ``"udp4"`` or ``"udp6"``.
    peer : Address | None
        Connected peer for client endpoints, ``None`` for servers.
    max_queue : int
        Maximum number of queued, not yet received, datagrams.

    Examples
    --------
    >>> transport = await bind("udp", "127.0.0.1:0")
    >>> transport.sendto(b"ping", Address("127.0.0.1", 5683))
    >>> data, source = await transport.recvfrom(1500, timeout=2.0)
    >>> transport.close()
    """

    def __init__(
        self,
        network: str = "udp",
        *,
        peer: Address | None = None,
        max_queue: int = 1024,
    ) -> None:
        self._network = network
        self._peer = peer
        self._max_queue = max_queue
        self._queue: asyncio.Queue[object] = asyncio.Queue()
        self._transport: asyncio.DatagramTransport | None = None
        self._local: Address | None = None
        self._closed = False
        self._sending = False
        self._send_error: OSError | None = None

    @property
    def network(self) -> str:
        return self._network

    @property
    def peer(self) -> Address | None:
        return self._peer

    @property
    def local_address(self) -> Address | None:
        return self._local

    def is_closing(self) -> bool:
        return self._closed

    # -- protocol callbacks --------------------------------------------------

    def _connection_made(self, transport: asyncio.DatagramTransport) -> None:
        self._transport = transport
        sockname = transport.get_extra_info("sockname")
        if sockname is not None:
            self._local = Address.from_sockaddr(sockname)

    def _datagram_received(self, data: bytes, addr: tuple[str, int]) -> None:
        if self._closed:
            return
        if self._queue.qsize() >= self._max_queue:
            logger.debug("Receive queue full, dropping %d bytes from %s", len(data), addr)
            return
        self._queue.put_nowait((data, Address.from_sockaddr(addr)))

    def _error_received(self, exc: OSError) -> None:
        # asyncio reports send failures through the protocol; hand those back
        # to the sender instead of the next receiver.
        if self._sending:
            self._send_error = exc
            return
        if not self._closed:
            self._queue.put_nowait(exc)

    def _connection_lost(self, exc: Exception | None) -> None:
        if exc is not None:
            logger.warning("Datagram endpoint lost: %s", exc)
        self._mark_closed()

    def _mark_closed(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CLOSED)

    # -- operations ----------------------------------------------------------

    async def recvfrom(
        self, max_size: int, timeout: float | None = None
    ) -> tuple[bytes, Address]:
        if self._closed:
            raise TransportClosedError("use of closed transport")
        async with asyncio.timeout(timeout):
            item = await self._queue.get()
        if item is _CLOSED or self._closed:
            # Leave the marker for any other pending receiver.
            self._queue.put_nowait(_CLOSED)
            raise TransportClosedError("use of closed transport")
        if isinstance(item, BaseException):
            raise item
        data, source = item  # type: ignore[misc]
        return data[:max_size], source

    def sendto(self, data: bytes, address: Address | None = None) -> None:
        if self._closed or self._transport is None:
            raise TransportClosedError("use of closed transport")
        if address is None and self._peer is None:
            raise TransportError("destination address required")
        if address is not None and self._peer is not None and address != self._peer:
            raise TransportError(f"transport is connected to {self._peer}, cannot send to {address}")

        self._sending = True
        self._send_error = None
        try:
            if self._peer is not None:
                self._transport.sendto(data)
            else:
                assert address is not None
                self._transport.sendto(data, address.as_tuple())
        finally:
            self._sending = False
        if self._send_error is not None:
            exc, self._send_error = self._send_error, None
            raise exc

    def close(self) -> None:
        """Close the endpoint and wake any pending ``recvfrom``."""
        if self._transport is not None:
            self._transport.close()
        self._mark_closed()

    async def __aenter__(self) -> DatagramTransport:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.close()


class _EndpointProtocol(asyncio.DatagramProtocol):
    """Forwards asyncio callbacks to the owning ``DatagramTransport``."""

    def __init__(self, endpoint: DatagramTransport) -> None:
        self._endpoint = endpoint

    def connection_made(self, transport: asyncio.BaseTransport) -> None:
        self._endpoint._connection_made(transport)  # type: ignore[arg-type]

    def datagram_received(self, data: bytes, addr: tuple[str, int]) -> None:
        self._endpoint._datagram_received(data, addr)

    def error_received(self, exc: Exception) -> None:
        self._endpoint._error_received(exc)  # type: ignore[arg-type]

    def connection_lost(self, exc: Exception | None) -> None:
        self._endpoint._connection_lost(exc)


def _wildcard(network: str) -> str:
    return "::" if network == "udp6" else "0.0.0.0"


async def bind(network: str, local_address: str, *, max_queue: int = 1024) -> DatagramTransport:
    """Create a listening endpoint bound to *local_address*.

    Parameters
    ----------
    network : str
        ``"udp"``, ``"udp4"`` or ``"udp6"``.
    local_address : str
        Literal such as ``"127.0.0.1:5683"`` or ``":5683"`` (all interfaces).
    max_queue : int
        See ``DatagramTransport``.

    Returns
    -------
    DatagramTransport

    Raises
    ------
    BindError
        If the address cannot be resolved or the socket cannot be bound.
    """
    try:
        addr = await resolve_address(local_address, network)
    except AddressError as exc:
        msg = f"cannot resolve {local_address!r}: {exc}"
        raise BindError(msg) from exc

    host = addr.host or _wildcard(network)
    endpoint = DatagramTransport(network, max_queue=max_queue)
    loop = asyncio.get_running_loop()
    try:
        await loop.create_datagram_endpoint(
            lambda: _EndpointProtocol(endpoint),
            local_addr=(host, addr.port),
            family=NETWORKS[network],
        )
    except OSError as exc:
        msg = f"cannot bind {network} {local_address!r}: {exc}"
        raise BindError(msg) from exc

    logger.debug("Bound %s endpoint on %s", network, endpoint.local_address)
    return endpoint


async def connect(network: str, remote_address: str, *, max_queue: int = 1024) -> DatagramTransport:
    """Create a client endpoint whose default destination is *remote_address*.

    Raises
    ------
    BindError
        If the address cannot be resolved or the socket cannot be created.
    """
    try:
        peer = await resolve_address(remote_address, network)
    except AddressError as exc:
        msg = f"cannot resolve {remote_address!r}: {exc}"
        raise BindError(msg) from exc

    if not peer.host:
        peer = Address(host="::1" if network == "udp6" else "127.0.0.1", port=peer.port)
    endpoint = DatagramTransport(network, peer=peer, max_queue=max_queue)
    loop = asyncio.get_running_loop()
    try:
        await loop.create_datagram_endpoint(
            lambda: _EndpointProtocol(endpoint),
            remote_addr=peer.as_tuple(),
            family=NETWORKS[network],
        )
    except OSError as exc:
        msg = f"cannot connect {network} {remote_address!r}: {exc}"
        raise BindError(msg) from exc
    return endpoint
