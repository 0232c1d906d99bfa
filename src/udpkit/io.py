"""Message-level send and receive on top of a ``Transport``.

``transmit`` encodes and sends; ``receive`` waits for one datagram within
a timeout and decodes it.  Errors from the codec and the transport are
raised unchanged.  ``Client`` bundles a connected transport with the
response timeout of a ``ServerConfig``.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from udpkit.config import ServerConfig
from udpkit.transport import MAX_DATAGRAM_SIZE, connect

if TYPE_CHECKING:
    from udpkit.address import Address
    from udpkit.codec import Codec
    from udpkit.transport import Transport

__all__ = ["Client", "exchange", "receive", "transmit"]

logger = logging.getLogger("udpkit.io")


def transmit(
    transport: Transport, address: Address | None, message: Any, codec: Codec
) -> None:
    """Encode *message* and send it to *address*.

    Parameters
    ----------
    transport : Transport
        Endpoint to send from.
    address : Address | None
        Destination; ``None`` sends to the transport's connected peer.
    message : Any
        Message accepted by *codec*.
    codec : Codec
        Encoder for *message*.

    Raises
    ------
    EncodeError
        The message could not be encoded; nothing is sent.
    TransportError, OSError
        The send failed.
    """
    data = codec.encode(message)
    transport.sendto(data, address)
    logger.debug("Sent %d bytes to %s", len(data), address or "peer")


async def receive(
    transport: Transport,
    codec: Codec,
    *,
    timeout: float | None,
    max_size: int = MAX_DATAGRAM_SIZE,
) -> Any:
    """Wait up to *timeout* seconds for one datagram and decode it.

    There is no default timeout: pass ``config.response_timeout`` or use
    ``Client``, which does.

    Raises
    ------
    TimeoutError
        Nothing arrived in time.
    TransportError
        The transport failed or was closed.
    DecodeError
        The datagram is not a valid message.
    """
    data, source = await transport.recvfrom(max_size, timeout)
    logger.debug("Received %d bytes from %s", len(data), source)
    return codec.decode(data)


async def exchange(
    transport: Transport,
    message: Any,
    codec: Codec,
    *,
    timeout: float | None,
    max_size: int = MAX_DATAGRAM_SIZE,
) -> Any:
    """Send *message* to the connected peer and wait for one reply."""
    transmit(transport, None, message, codec)
    return await receive(transport, codec, timeout=timeout, max_size=max_size)


class Client:
    """Connected request/response endpoint driven by a ``ServerConfig``.

    Replies are awaited for ``config.response_timeout`` seconds and read
    into a ``config.max_datagram_size`` buffer.

    Parameters
    ----------
    transport : Transport
        Endpoint with a connected peer, usually from ``connect``.
    codec : Codec
        Encodes requests and decodes replies.
    config : ServerConfig | None
        Settings of the server being talked to; defaults to ``ServerConfig()``.

    Examples
    --------
    >>> async with await Client.connect(codec, ServerConfig(address="127.0.0.1:5683")) as client:
    ...     reply = await client.request(Request("/ping"))
    """

    def __init__(
        self, transport: Transport, codec: Codec, config: ServerConfig | None = None
    ) -> None:
        self._transport = transport
        self._codec = codec
        self._config = config or ServerConfig()

    @classmethod
    async def connect(cls, codec: Codec, config: ServerConfig | None = None) -> Client:
        """Open a transport to ``config.address`` on ``config.network``."""
        config = config or ServerConfig()
        transport = await connect(config.network, config.address)
        return cls(transport, codec, config)

    @property
    def transport(self) -> Transport:
        return self._transport

    @property
    def timeout(self) -> float:
        return self._config.response_timeout

    def send(self, message: Any) -> None:
        transmit(self._transport, None, message, self._codec)

    async def receive(self) -> Any:
        return await receive(
            self._transport,
            self._codec,
            timeout=self._config.response_timeout,
            max_size=self._config.max_datagram_size,
        )

    async def request(self, message: Any) -> Any:
        """Send *message* and wait for one reply within the response timeout."""
        return await exchange(
            self._transport,
            message,
            self._codec,
            timeout=self._config.response_timeout,
            max_size=self._config.max_datagram_size,
        )

    def close(self) -> None:
        self._transport.close()

    async def __aenter__(self) -> Client:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.close()
