"""TOML-based configuration for udpkit servers.

Provides ``load_config`` / ``discover_config`` for loading ``udpkit.toml``
and the frozen ``ServerConfig`` dataclass threaded through ``Server``.

Example ``udpkit.toml``::

    [server]
    network = "udp"
    address = "0.0.0.0:5683"
    response_timeout = 2.0
    allow_address_override = true
    override_failure = "sender"
    max_in_flight = 256
    overflow = "drop_new"
"""

from __future__ import annotations

import tomllib
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Literal, TypeAlias

from udpkit.address import NETWORKS
from udpkit.resolver import OverrideFailurePolicy
from udpkit.transport import MAX_DATAGRAM_SIZE

__all__ = [
    "CONFIG_FILENAME",
    "OverflowStrategy",
    "ServerConfig",
    "discover_config",
    "load_config",
]

CONFIG_FILENAME = "udpkit.toml"

OverflowStrategy: TypeAlias = Literal["block", "drop_new"]
OverrideFailure: TypeAlias = Literal["invalid", "sender", "drop"]


@dataclass(frozen=True)
class ServerConfig:
    """Settings for one server instance.

    Parameters
    ----------
    network : str
        ``"udp"``, ``"udp4"`` or ``"udp6"``.
    address : str
        Local address literal used by ``listen_and_serve``.
    max_datagram_size : int
        Receive size; longer datagrams are truncated.
    response_timeout : float
        Seconds a client-side ``receive`` waits for a reply.
    transient_backoff : float
        Seconds the serve loop sleeps after a transient receive error.
    allow_address_override : bool
        Honor ``{host:port}`` reply overrides embedded in payloads.
    override_failure : OverrideFailure
        Policy for overrides that do not resolve: ``"invalid"``,
        ``"sender"`` or ``"drop"``.
    max_in_flight : int | None
        Maximum concurrently handled datagrams. ``None`` for unbounded.
    overflow : OverflowStrategy
        At the limit, ``"block"`` stops receiving until a slot frees up and
        ``"drop_new"`` discards the datagram.

    Examples
    --------
    >>> ServerConfig(address="127.0.0.1:0", max_in_flight=64)
    ServerConfig(network='udp', address='127.0.0.1:0', ...)
    """

    network: str = "udp"
    address: str = ":5683"
    max_datagram_size: int = MAX_DATAGRAM_SIZE
    response_timeout: float = 2.0
    transient_backoff: float = 0.005
    allow_address_override: bool = False
    override_failure: OverrideFailure = "invalid"
    max_in_flight: int | None = None
    overflow: OverflowStrategy = "block"

    def __post_init__(self) -> None:
        if self.network not in NETWORKS:
            msg = f"network must be one of {sorted(NETWORKS)}, got {self.network!r}"
            raise ValueError(msg)
        if self.max_datagram_size <= 0:
            msg = f"max_datagram_size must be positive, got {self.max_datagram_size}"
            raise ValueError(msg)
        if self.response_timeout <= 0:
            msg = f"response_timeout must be positive, got {self.response_timeout}"
            raise ValueError(msg)
        if self.transient_backoff < 0:
            msg = f"transient_backoff must not be negative, got {self.transient_backoff}"
            raise ValueError(msg)
        if self.max_in_flight is not None and self.max_in_flight < 1:
            msg = f"max_in_flight must be >= 1 or None, got {self.max_in_flight}"
            raise ValueError(msg)
        if self.overflow not in ("block", "drop_new"):
            msg = f"overflow must be 'block' or 'drop_new', got {self.overflow!r}"
            raise ValueError(msg)
        # raises ValueError for unknown names
        OverrideFailurePolicy(self.override_failure)

    @property
    def override_policy(self) -> OverrideFailurePolicy:
        return OverrideFailurePolicy(self.override_failure)


def discover_config(start: Path | None = None) -> Path | None:
    """Walk up from *start* (default: cwd) looking for ``udpkit.toml``.

    Returns
    -------
    Path | None
        Path to the discovered config file, or ``None`` if not found.
    """
    current = (start or Path.cwd()).resolve()
    while True:
        candidate = current / CONFIG_FILENAME
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            return None
        current = parent


def load_config(path: Path | None = None) -> ServerConfig:
    """Load a ``ServerConfig`` from the ``[server]`` table of a TOML file.

    If *path* is ``None``, auto-discovers ``udpkit.toml`` by walking up from
    the current working directory.  Returns the default config if no file
    is found.

    Raises
    ------
    FileNotFoundError
        If an explicit *path* is given but does not exist.
    ValueError
        If the table contains unknown keys or invalid values.

    Examples
    --------
    >>> config = load_config(Path("udpkit.toml"))
    >>> config.network
    'udp'
    """
    if path is None:
        discovered = discover_config()
        if discovered is None:
            return ServerConfig()
        path = discovered

    if not path.exists():
        msg = f"Config file not found: {path}"
        raise FileNotFoundError(msg)

    with path.open("rb") as f:
        raw = tomllib.load(f)

    server_raw: dict[str, Any] = raw.get("server", {})
    known = {f.name for f in fields(ServerConfig)}
    unknown = sorted(set(server_raw) - known)
    if unknown:
        msg = f"Unknown [server] keys in {path}: {', '.join(unknown)}"
        raise ValueError(msg)

    return ServerConfig(**server_raw)
