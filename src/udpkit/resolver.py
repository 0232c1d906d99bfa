"""Destination override carried inside datagram payloads.

A datagram may embed a reply address between ``{`` and ``}`` anywhere in
its raw bytes, for example ``...{127.0.0.1:9999}...``.  When the server
has overrides enabled, replies for that datagram go to the embedded
address instead of the socket-level sender.

The scan is purely textual over the raw bytes: no escaping, no length
limit, and no check that the markers sit outside the message's own
payload.  The embedded address is untrusted input.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass

from udpkit.address import Address, resolve_address
from udpkit.errors import AddressError

__all__ = [
    "AddressResolver",
    "Override",
    "OverrideFailurePolicy",
    "extract_override",
    "find_override_literal",
]

logger = logging.getLogger("udpkit.resolver")

OPEN_MARKER = b"{"
CLOSE_MARKER = b"}"


class OverrideFailurePolicy(enum.Enum):
    """What to do when the embedded literal does not resolve.

    ``INVALID`` keeps the override with no usable address, so the reply is
    attempted towards an invalid destination and fails at send time.
    ``SENDER`` falls back to the socket-level sender.  ``DROP`` rejects
    the datagram.
    """

    INVALID = "invalid"
    SENDER = "sender"
    DROP = "drop"


@dataclass(frozen=True)
class Override:
    """Result of scanning one datagram.

    Parameters
    ----------
    present : bool
        Whether the payload carried a marker pair.
    address : Address | None
        Destination to use for this datagram.  ``None`` means no usable
        destination.
    rejected : bool
        ``True`` when the datagram must be discarded (``DROP`` policy).
    """

    present: bool
    address: Address | None
    rejected: bool = False


def find_override_literal(data: bytes) -> bytes | None:
    """Return the bytes between the first ``{`` and the first ``}``.

    Returns ``None`` unless both markers occur with ``{`` before ``}``.

    Examples
    --------
    >>> find_override_literal(b"GET {10.0.0.1:5683} x")
    b'10.0.0.1:5683'
    >>> find_override_literal(b"no markers") is None
    True
    """
    start = data.find(OPEN_MARKER)
    end = data.find(CLOSE_MARKER)
    if start < 0 or end <= start:
        return None
    return data[start + 1 : end]


async def extract_override(
    data: bytes,
    sender: Address,
    *,
    network: str = "udp",
    policy: OverrideFailurePolicy = OverrideFailurePolicy.INVALID,
) -> Override:
    """Scan *data* for an embedded destination.

    Parameters
    ----------
    data : bytes
        Raw datagram as received.
    sender : Address
        Socket-level source of the datagram.
    network : str
        Network whose resolution rule applies to the literal.
    policy : OverrideFailurePolicy
        Behavior when the literal cannot be resolved.

    Returns
    -------
    Override
        ``present=False`` with *sender* when there is no marker pair.

    Examples
    --------
    >>> sender = Address("192.0.2.7", 40000)
    >>> (await extract_override(b"\\x01{127.0.0.1:9999}", sender)).address
    Address(host='127.0.0.1', port=9999)
    >>> (await extract_override(b"\\x01{nonsense}", sender)).address is None
    True
    """
    literal = find_override_literal(data)
    if literal is None:
        return Override(present=False, address=sender)

    try:
        address = await resolve_address(literal.decode("utf-8"), network)
    except (AddressError, UnicodeDecodeError) as exc:
        logger.warning("Cannot resolve override %r from %s: %s", literal, sender, exc)
        match policy:
            case OverrideFailurePolicy.INVALID:
                return Override(present=True, address=None)
            case OverrideFailurePolicy.SENDER:
                return Override(present=True, address=sender)
            case OverrideFailurePolicy.DROP:
                return Override(present=True, address=None, rejected=True)

    return Override(present=True, address=address)


class AddressResolver:
    """Per-server override extraction with audit logging.

    Parameters
    ----------
    network : str
        Network of the listening transport.
    policy : OverrideFailurePolicy
        Behavior for unresolvable literals.

    Examples
    --------
    >>> resolver = AddressResolver("udp")
    >>> await resolver.resolve(b"{127.0.0.1:9999}", Address("192.0.2.7", 40000))
    Address(host='127.0.0.1', port=9999)
    """

    def __init__(
        self,
        network: str = "udp",
        policy: OverrideFailurePolicy = OverrideFailurePolicy.INVALID,
    ) -> None:
        self.network = network
        self.policy = policy

    async def inspect(self, data: bytes, sender: Address) -> Override:
        override = await extract_override(data, sender, network=self.network, policy=self.policy)
        if override.present:
            logger.warning(
                "Datagram from %s redirects replies to %s%s",
                sender,
                override.address,
                " (rejected)" if override.rejected else "",
            )
        return override

    async def resolve(self, data: bytes, sender: Address) -> Address | None:
        """Return the destination for replies to this datagram."""
        return (await self.inspect(data, sender)).address
