"""Exception hierarchy for udpkit.

Transport failures are split into transient ones, which the serve loop
retries after a short backoff, and everything else, which stops it.
"""

from __future__ import annotations

__all__ = [
    "AddressError",
    "BindError",
    "CodecError",
    "DecodeError",
    "EncodeError",
    "TransientTransportError",
    "TransportClosedError",
    "TransportError",
    "UdpkitError",
]


class UdpkitError(Exception):
    """Base class for all udpkit errors."""


class AddressError(UdpkitError, ValueError):
    """An address literal could not be parsed or resolved."""


class BindError(UdpkitError):
    """The listening endpoint could not be created."""


class TransportError(UdpkitError):
    """The transport can no longer serve.  Ends the serve loop."""


class TransportClosedError(TransportError):
    """The transport was closed, possibly while a receive was pending."""


class TransientTransportError(TransportError):
    """A recoverable transport condition; the caller may retry."""


class CodecError(UdpkitError):
    """Base class for codec failures."""


class DecodeError(CodecError):
    """Bytes could not be decoded into a message."""


class EncodeError(CodecError):
    """A message could not be encoded into bytes."""
