from udpkit.address import Address, resolve_address
from udpkit.codec import Codec, MessageCodec
from udpkit.config import ServerConfig, discover_config, load_config
from udpkit.errors import (
    AddressError,
    BindError,
    CodecError,
    DecodeError,
    EncodeError,
    TransientTransportError,
    TransportClosedError,
    TransportError,
    UdpkitError,
)
from udpkit.handlers import FuncHandler, Handler, handler
from udpkit.io import Client, exchange, receive, transmit
from udpkit.resolver import AddressResolver, Override, OverrideFailurePolicy, extract_override
from udpkit.server import Server, ServerState, listen_and_serve, serve
from udpkit.transport import (
    MAX_DATAGRAM_SIZE,
    DatagramTransport,
    Transport,
    bind,
    connect,
    is_transient,
)

__all__ = [
    "MAX_DATAGRAM_SIZE",
    "Address",
    "AddressError",
    "AddressResolver",
    "BindError",
    "Client",
    "Codec",
    "CodecError",
    "DatagramTransport",
    "DecodeError",
    "EncodeError",
    "FuncHandler",
    "Handler",
    "MessageCodec",
    "Override",
    "OverrideFailurePolicy",
    "Server",
    "ServerConfig",
    "ServerState",
    "TransientTransportError",
    "Transport",
    "TransportClosedError",
    "TransportError",
    "UdpkitError",
    "bind",
    "connect",
    "discover_config",
    "exchange",
    "extract_override",
    "handler",
    "is_transient",
    "listen_and_serve",
    "load_config",
    "receive",
    "resolve_address",
    "serve",
    "transmit",
]
