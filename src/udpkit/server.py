"""Datagram server: receive, dispatch to a handler, reply.

``Server.serve`` runs the receive loop.  Every datagram is copied out of
the receive path and handled in its own ``asyncio.Task``: resolve any reply
override, decode, call the handler, transmit the reply.  The loop never
waits for handling to finish, so replies may leave in any order.

Error contract:

- transient receive errors (timeouts, ``EAGAIN`` ...) sleep for
  ``transient_backoff`` and retry;
- any other receive error, including a closed transport, stops the server
  and is re-raised from ``serve``;
- decode, handler and reply failures are logged and the datagram dropped.
"""

from __future__ import annotations

import asyncio
import dataclasses
import enum
import logging
from typing import TYPE_CHECKING, Any, NoReturn

from udpkit.config import ServerConfig
from udpkit.errors import DecodeError, EncodeError, TransportError
from udpkit.io import transmit
from udpkit.resolver import AddressResolver
from udpkit.transport import bind, is_transient

if TYPE_CHECKING:
    from udpkit.address import Address
    from udpkit.codec import Codec
    from udpkit.handlers import Handler
    from udpkit.transport import Transport

__all__ = ["Server", "ServerState", "listen_and_serve", "serve"]

logger = logging.getLogger("udpkit.server")


class ServerState(enum.Enum):
    RUNNING = "running"
    STOPPED = "stopped"


class Server:
    """Receive loop and per-datagram dispatch over one transport.

    Parameters
    ----------
    transport : Transport
        Bound endpoint, shared by every handling task for replies.
    handler : Handler
        Invoked once per decoded datagram.
    codec : Codec
        Decodes requests and encodes replies.
    config : ServerConfig | None
        Server settings; defaults to ``ServerConfig()``.

    Examples
    --------
    >>> transport = await bind("udp", "127.0.0.1:5683")
    >>> server = Server(transport, FuncHandler(echo), codec)
    >>> await server.serve()  # until the transport fails or is closed
    """

    def __init__(
        self,
        transport: Transport,
        handler: Handler,
        codec: Codec,
        config: ServerConfig | None = None,
    ) -> None:
        self._transport = transport
        self._handler = handler
        self._codec = codec
        self._config = config or ServerConfig()
        self._resolver: AddressResolver | None = (
            AddressResolver(self._config.network, self._config.override_policy)
            if self._config.allow_address_override
            else None
        )
        self._slots: asyncio.Semaphore | None = (
            asyncio.Semaphore(self._config.max_in_flight)
            if self._config.max_in_flight is not None
            else None
        )
        self._tasks: set[asyncio.Task[None]] = set()
        self._state = ServerState.RUNNING
        self._serving = False

    @property
    def state(self) -> ServerState:
        return self._state

    @property
    def config(self) -> ServerConfig:
        return self._config

    @property
    def transport(self) -> Transport:
        return self._transport

    @property
    def local_address(self) -> Address | None:
        return self._transport.local_address

    @property
    def in_flight(self) -> int:
        """Number of datagrams currently being handled."""
        return len(self._tasks)

    async def serve(self) -> NoReturn:
        """Receive and dispatch datagrams until a fatal transport error.

        Raises
        ------
        TransportClosedError
            The transport was closed, e.g. by ``close()``.
        Exception
            Any other non-transient receive error, re-raised unchanged.
        RuntimeError
            The server is stopped or already serving.
        """
        if self._state is ServerState.STOPPED:
            raise RuntimeError("server is stopped")
        if self._serving:
            raise RuntimeError("server is already serving")
        self._serving = True
        logger.info("Serving %s on %s", self._config.network, self.local_address)

        try:
            while True:
                try:
                    data, source = await self._transport.recvfrom(
                        self._config.max_datagram_size
                    )
                except Exception as exc:
                    if is_transient(exc):
                        logger.debug("Transient receive error: %s", exc)
                        await asyncio.sleep(self._config.transient_backoff)
                        continue
                    logger.info("Server on %s stopping: %s", self.local_address, exc)
                    raise
                await self._accept(data, source)
        finally:
            self._state = ServerState.STOPPED
            self._serving = False

    async def _accept(self, data: bytes, source: Address) -> None:
        # The receive path may reuse its buffer; the task gets its own copy.
        payload = bytes(data)

        if self._slots is not None:
            if self._config.overflow == "drop_new" and self._slots.locked():
                logger.warning(
                    "Dropping datagram from %s: %d datagrams in flight",
                    source,
                    self.in_flight,
                )
                return
            await self._slots.acquire()

        task = asyncio.get_running_loop().create_task(self._handle(payload, source))
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        if self._slots is not None:
            self._slots.release()
        if not task.cancelled() and (exc := task.exception()) is not None:
            logger.error("Datagram task failed: %r", exc, exc_info=exc)

    async def _handle(self, data: bytes, source: Address) -> None:
        # Override lookups can wait on DNS and must not stall the receive loop.
        address: Address | None = source
        if self._resolver is not None:
            override = await self._resolver.inspect(data, source)
            if override.rejected:
                logger.warning("Dropping datagram from %s: unresolvable reply override", source)
                return
            address = override.address

        try:
            message: Any = self._codec.decode(data)
        except DecodeError as exc:
            logger.warning("Error parsing datagram from %s: %s", address, exc)
            return

        try:
            reply = await self._handler.handle(self._transport, address, message)
        except Exception:
            logger.exception("Handler %r failed for datagram from %s", self._handler, address)
            return

        if reply is None:
            return

        try:
            transmit(self._transport, address, reply, self._codec)
        except (EncodeError, TransportError, OSError) as exc:
            logger.warning("Cannot reply to %s: %s", address, exc)

    def close(self) -> None:
        """Close the transport; a running ``serve`` raises ``TransportClosedError``."""
        self._transport.close()

    async def join(self) -> None:
        """Wait until every datagram accepted so far has been handled."""
        while self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    async def __aenter__(self) -> Server:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.close()
        await self.join()


async def serve(
    transport: Transport,
    handler: Handler,
    codec: Codec,
    config: ServerConfig | None = None,
) -> NoReturn:
    """Serve datagrams from an existing transport until it fails or closes."""
    await Server(transport, handler, codec, config).serve()


async def listen_and_serve(
    network: str,
    address: str,
    handler: Handler,
    codec: Codec,
    config: ServerConfig | None = None,
) -> NoReturn:
    """Bind *address* and serve on it until the transport fails or closes.

    Raises
    ------
    BindError
        The address could not be resolved or bound; nothing is served.
    """
    config = dataclasses.replace(config or ServerConfig(), network=network, address=address)
    transport = await bind(network, address)
    try:
        await Server(transport, handler, codec, config).serve()
    finally:
        transport.close()
