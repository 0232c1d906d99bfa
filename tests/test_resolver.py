from __future__ import annotations

import socket
import threading

import pytest

from udpkit.address import Address
from udpkit.resolver import (
    AddressResolver,
    Override,
    OverrideFailurePolicy,
    extract_override,
    find_override_literal,
)

SENDER = Address("192.0.2.10", 40000)


@pytest.mark.parametrize(
    "data",
    [
        b"",
        b"plain payload",
        b"only open { here",
        b"only close } here",
        b"\x00\x01\x02\xff",
    ],
)
async def test_no_markers_keeps_sender(data: bytes) -> None:
    assert await extract_override(data, SENDER) == Override(present=False, address=SENDER)


async def test_close_before_open_is_not_an_override() -> None:
    assert find_override_literal(b"} then {127.0.0.1:1}") is None
    assert (await extract_override(b"} then {127.0.0.1:1}", SENDER)).address == SENDER


def test_literal_between_first_markers() -> None:
    assert find_override_literal(b"\x01\x02{127.0.0.1:9999}\x03{x}") == b"127.0.0.1:9999"


@pytest.mark.parametrize(
    ("data", "expected"),
    [
        (b"{127.0.0.1:9999}", Address("127.0.0.1", 9999)),
        (b"\x44\x01\xab{10.1.2.3:5683}trailing", Address("10.1.2.3", 5683)),
        (b"prefix{[::1]:7}", Address("::1", 7)),
    ],
)
async def test_valid_override_replaces_sender(data: bytes, expected: Address) -> None:
    override = await extract_override(data, SENDER)
    assert override.present
    assert override.address == expected
    assert not override.rejected


@pytest.mark.parametrize("data", [b"{garbage}", b"{}", b"{127.0.0.1}", b"{\xff\xfe:1}"])
async def test_unresolvable_override_is_invalid_by_default(data: bytes) -> None:
    override = await extract_override(data, SENDER)
    assert override == Override(present=True, address=None)
    assert override.address != SENDER


async def test_unresolvable_override_sender_policy() -> None:
    override = await extract_override(b"{garbage}", SENDER, policy=OverrideFailurePolicy.SENDER)
    assert override == Override(present=True, address=SENDER)


async def test_unresolvable_override_drop_policy() -> None:
    override = await extract_override(b"{garbage}", SENDER, policy=OverrideFailurePolicy.DROP)
    assert override.rejected
    assert override.address is None


async def test_override_uses_network_rule() -> None:
    override = await extract_override(b"{[::1]:1}", SENDER, network="udp4")
    assert override.present
    assert override.address is None


async def test_resolver_logs_every_override(caplog: pytest.LogCaptureFixture) -> None:
    resolver = AddressResolver("udp")
    with caplog.at_level("WARNING", logger="udpkit.resolver"):
        assert await resolver.resolve(b"{127.0.0.1:9999}", SENDER) == Address("127.0.0.1", 9999)
        assert await resolver.resolve(b"no override", SENDER) == SENDER

    messages = [r.getMessage() for r in caplog.records]
    assert len(messages) == 1
    assert "192.0.2.10:40000" in messages[0]
    assert "127.0.0.1:9999" in messages[0]


async def test_resolver_policy_from_value() -> None:
    resolver = AddressResolver("udp", OverrideFailurePolicy("sender"))
    assert await resolver.resolve(b"{nope}", SENDER) == SENDER


@pytest.mark.parametrize(
    "data",
    [
        "{127.0.0.1:\u00b2}".encode(),
        b"{1.2.3.4:a\x00b}",
        b"{a\x00b:80}",
    ],
)
async def test_malformed_override_is_invalid_not_an_error(data: bytes) -> None:
    assert await extract_override(data, SENDER) == Override(present=True, address=None)
    fallback = await extract_override(data, SENDER, policy=OverrideFailurePolicy.SENDER)
    assert fallback.address == SENDER


async def test_hostname_override_is_resolved_off_the_loop(monkeypatch: pytest.MonkeyPatch) -> None:
    loop_thread = threading.get_ident()
    lookup_threads: list[int] = []

    def fake_getaddrinfo(host, port, family=0, type=0, proto=0, flags=0):
        lookup_threads.append(threading.get_ident())
        return [(socket.AF_INET, socket.SOCK_DGRAM, 17, "", ("198.51.100.4", 0))]

    monkeypatch.setattr(socket, "getaddrinfo", fake_getaddrinfo)

    override = await extract_override(b"{reply.example:7000}", SENDER)

    assert override.address == Address("198.51.100.4", 7000)
    assert lookup_threads and loop_thread not in lookup_threads
