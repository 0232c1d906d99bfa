"""Handler abstraction: the extension point for protocol behavior.

A handler receives the transport, the (possibly overridden) source
address and the decoded message, and returns a reply or ``None``.  One
handler instance serves every datagram concurrently.
"""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any, Protocol, TypeAlias, runtime_checkable

if TYPE_CHECKING:
    from udpkit.address import Address
    from udpkit.transport import Transport

__all__ = ["FuncHandler", "Handler", "HandlerFn", "handler"]


HandlerFn: TypeAlias = (
    "Callable[[Transport, Address | None, Any], Any | None | Awaitable[Any | None]]"
)


@runtime_checkable
class Handler(Protocol):
    """Protocol for per-message behavior.

    Implementations must not block indefinitely and must tolerate
    concurrent calls.  Returning ``None`` sends no reply.

    Examples
    --------
    >>> class Echo:
    ...     async def handle(self, transport, address, message):
    ...         return message
    """

    async def handle(
        self, transport: Transport, address: Address | None, message: Any
    ) -> Any | None: ...


class FuncHandler:
    """Adapts a plain function, sync or async, to ``Handler``.

    Parameters
    ----------
    fn : HandlerFn
        Called with ``(transport, address, message)``.

    Examples
    --------
    >>> echo = FuncHandler(lambda transport, address, message: message)
    """

    def __init__(self, fn: HandlerFn) -> None:
        self._fn = fn

    async def handle(
        self, transport: Transport, address: Address | None, message: Any
    ) -> Any | None:
        result = self._fn(transport, address, message)
        if inspect.isawaitable(result):
            return await result
        return result

    def __repr__(self) -> str:
        return f"FuncHandler({getattr(self._fn, '__qualname__', self._fn)!r})"


def handler(fn: HandlerFn) -> FuncHandler:
    """Decorator form of ``FuncHandler``.

    Examples
    --------
    >>> @handler
    ... async def echo(transport, address, message):
    ...     return message
    """
    return FuncHandler(fn)
