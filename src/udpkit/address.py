"""Endpoint addresses and the address resolution rule.

Provides ``Address``, a frozen ``(host, port)`` value, and
``resolve_address`` which turns a literal such as ``127.0.0.1:5683``,
``[::1]:5683`` or ``:5683`` into an ``Address``.  The same rule is used for
bind addresses and for destination overrides carried inside payloads.
"""

from __future__ import annotations

import asyncio
import ipaddress
import socket
from dataclasses import dataclass

from udpkit.errors import AddressError

__all__ = ["Address", "NETWORKS", "resolve_address", "split_host_port"]


NETWORKS: dict[str, socket.AddressFamily] = {
    "udp": socket.AF_UNSPEC,
    "udp4": socket.AF_INET,
    "udp6": socket.AF_INET6,
}


@dataclass(frozen=True)
class Address:
    """Immutable datagram endpoint.

    Parameters
    ----------
    host : str
        IP address literal.  An empty string means "all interfaces" when
        binding.
    port : int
        UDP port, ``0..65535``.

    Examples
    --------
    >>> Address("127.0.0.1", 5683).to_literal()
    '127.0.0.1:5683'
    >>> Address("::1", 5683).to_literal()
    '[::1]:5683'
    """

    host: str
    port: int

    def as_tuple(self) -> tuple[str, int]:
        """Return the ``(host, port)`` pair expected by socket APIs."""
        return (self.host, self.port)

    def to_literal(self) -> str:
        if ":" in self.host:
            return f"[{self.host}]:{self.port}"
        return f"{self.host}:{self.port}"

    def __str__(self) -> str:
        return self.to_literal()

    @staticmethod
    def from_sockaddr(sockaddr: tuple[str, int] | tuple[str, int, int, int]) -> Address:
        """Build an ``Address`` from a socket address tuple (IPv4 or IPv6).

        Examples
        --------
        >>> Address.from_sockaddr(("::1", 9000, 0, 0))
        Address(host='::1', port=9000)
        """
        return Address(host=sockaddr[0], port=int(sockaddr[1]))


def split_host_port(literal: str) -> tuple[str, str]:
    """Split ``host:port``, ``[host]:port`` or ``:port`` into its parts.

    Parameters
    ----------
    literal : str
        Address literal.

    Returns
    -------
    tuple[str, str]
        Host (without brackets) and port string.

    Raises
    ------
    AddressError
        If the port is missing, brackets are unbalanced, or an unbracketed
        host contains colons.

    Examples
    --------
    >>> split_host_port("[::1]:80")
    ('::1', '80')
    >>> split_host_port(":5683")
    ('', '5683')
    """
    if literal.startswith("["):
        end = literal.find("]")
        if end < 0:
            msg = f"missing ']' in address {literal!r}"
            raise AddressError(msg)
        rest = literal[end + 1 :]
        if not rest.startswith(":"):
            msg = f"missing port in address {literal!r}"
            raise AddressError(msg)
        return literal[1:end], rest[1:]

    host, sep, port = literal.rpartition(":")
    if not sep:
        msg = f"missing port in address {literal!r}"
        raise AddressError(msg)
    if ":" in host:
        msg = f"too many colons in address {literal!r}"
        raise AddressError(msg)
    if "[" in host or "]" in host:
        msg = f"unexpected bracket in address {literal!r}"
        raise AddressError(msg)
    return host, port


def _parse_port(port: str) -> int:
    if port.isascii() and port.isdigit():
        value = int(port)
        if value > 65535:
            msg = f"invalid port {port!r}"
            raise AddressError(msg)
        return value
    if not port:
        msg = "missing port number"
        raise AddressError(msg)
    try:
        return socket.getservbyname(port, "udp")
    except (OSError, ValueError):
        msg = f"unknown port {port!r}"
        raise AddressError(msg) from None


async def resolve_address(literal: str, network: str = "udp") -> Address:
    """Resolve an address literal for the given datagram network.

    Numeric hosts are used as-is; host names are looked up with the event
    loop's ``getaddrinfo`` (off the loop thread), restricted to the
    network's address family, and the first result wins.

    Parameters
    ----------
    literal : str
        ``host:port``, ``[v6host]:port`` or ``:port``.
    network : str
        One of ``"udp"``, ``"udp4"`` or ``"udp6"``.

    Returns
    -------
    Address

    Raises
    ------
    AddressError
        If the network is unknown, the literal is malformed, the host
        cannot be resolved, or the host does not match the network family.

    Examples
    --------
    >>> await resolve_address("127.0.0.1:9999")
    Address(host='127.0.0.1', port=9999)
    >>> await resolve_address("[::1]:5683", "udp6")
    Address(host='::1', port=5683)
    """
    family = NETWORKS.get(network)
    if family is None:
        msg = f"unknown network {network!r}"
        raise AddressError(msg)

    host, port_str = split_host_port(literal)
    port = _parse_port(port_str)
    if not host:
        return Address(host="", port=port)

    try:
        ip = ipaddress.ip_address(host)
    except ValueError:
        return Address(host=await _lookup(host, family), port=port)

    if family == socket.AF_INET and ip.version != 4:
        msg = f"{host!r} is not an IPv4 address"
        raise AddressError(msg)
    if family == socket.AF_INET6 and ip.version != 6:
        msg = f"{host!r} is not an IPv6 address"
        raise AddressError(msg)
    return Address(host=str(ip), port=port)


async def _lookup(host: str, family: socket.AddressFamily) -> str:
    loop = asyncio.get_running_loop()
    try:
        infos = await loop.getaddrinfo(host, None, family=family, type=socket.SOCK_DGRAM)
    except (OSError, UnicodeError, ValueError) as exc:
        msg = f"cannot resolve host {host!r}: {exc}"
        raise AddressError(msg) from exc
    if not infos:
        msg = f"no addresses for host {host!r}"
        raise AddressError(msg)
    return str(infos[0][4][0])
