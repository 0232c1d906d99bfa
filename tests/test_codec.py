"""Tests for the reference message codec."""

from __future__ import annotations

import msgpack
import pytest

from udpkit.codec import Codec, MessageCodec
from udpkit.errors import DecodeError, EncodeError


@pytest.fixture
def proto() -> MessageCodec:
    return MessageCodec("proto")


def test_encode_prefixes_message_id(proto: MessageCodec) -> None:
    @proto.message(0x10)
    class Hello:
        name: str

    data = proto.encode(Hello("world"))
    assert data[0] == 0x10
    assert msgpack.unpackb(data[1:], raw=False) == {"name": "world"}


def test_decode_restores_instance(proto: MessageCodec) -> None:
    @proto.message(0x11)
    class Reading:
        sensor: str
        value: int
        raw: bytes

    msg = Reading("temp", 21, b"\x00\x15")
    assert proto.decode(proto.encode(msg)) == msg


def test_tuple_fields_survive(proto: MessageCodec) -> None:
    @proto.message(0x12)
    class Route:
        hops: list[tuple[str, int]]
        origin: tuple[str, int]

    msg = Route(hops=[("a", 1), ("b", 2)], origin=("c", 3))
    decoded = proto.decode(proto.encode(msg))
    assert decoded == msg
    assert isinstance(decoded.origin, tuple)
    assert isinstance(decoded.hops[0], tuple)


def test_registered_class_is_frozen_dataclass(proto: MessageCodec) -> None:
    @proto.message(0x13)
    class Flag:
        on: bool

    flag = Flag(True)
    with pytest.raises(AttributeError):
        flag.on = False  # type: ignore[misc]


def test_duplicate_id_rejected(proto: MessageCodec) -> None:
    @proto.message(0x14)
    class First:
        a: int

    with pytest.raises(ValueError, match="already registered"):

        @proto.message(0x14)
        class Second:
            b: int


def test_out_of_range_id_rejected(proto: MessageCodec) -> None:
    with pytest.raises(ValueError):
        proto.message(0x100)


def test_codecs_have_separate_registries() -> None:
    a = MessageCodec("a")
    b = MessageCodec("b")

    @a.message(0x01)
    class InA:
        x: int

    @b.message(0x01)
    class InB:
        y: int

    assert a.decode(a.encode(InA(1))) == InA(1)
    assert b.decode(b.encode(InB(2))) == InB(2)
    assert a.message_id(InA) == 0x01
    assert a.message_id(InB) is None
    assert a.get_registry() == {0x01: InA}


def test_encode_unregistered_type(proto: MessageCodec) -> None:
    with pytest.raises(EncodeError, match="not registered"):
        proto.encode(object())


def test_encode_unpackable_field(proto: MessageCodec) -> None:
    @proto.message(0x15)
    class Holder:
        thing: object

    with pytest.raises(EncodeError):
        proto.encode(Holder(object()))


@pytest.mark.parametrize(
    "data",
    [
        b"",
        b"\x20",
        b"\xee\x80",
        b"\x20\xc1",
        b"\x20\x92\x01\x02",
        b"\x20\x81\xa1z\x01",
        b"\x20\x81\xa4name",
    ],
)
def test_decode_errors(proto: MessageCodec, data: bytes) -> None:
    @proto.message(0x20)
    class Named:
        name: str

    with pytest.raises(DecodeError):
        proto.decode(data)


def test_satisfies_codec_protocol(proto: MessageCodec) -> None:
    assert isinstance(proto, Codec)
