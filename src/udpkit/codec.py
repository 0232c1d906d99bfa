"""Codec boundary between raw datagrams and protocol messages.

The server never looks inside a message; it only calls ``decode`` on
received bytes and ``encode`` on replies.  Anything with those two methods
satisfies ``Codec``.

``MessageCodec`` is a small reference codec for frozen dataclasses, used by
the demo server and the tests::

    codec = MessageCodec("demo")

    @codec.message(0x01)
    class Request:
        path: str
        payload: bytes

    data = codec.encode(Request("/time", b""))
    msg = codec.decode(data)

Wire format: ``[message_id: 1 byte][payload: msgpack map]``.
"""

from __future__ import annotations

import struct
from collections.abc import Callable
from dataclasses import asdict, dataclass, fields, is_dataclass
from typing import Any, Protocol, TypeVar, get_args, get_origin, get_type_hints, runtime_checkable

import msgpack

from udpkit.errors import DecodeError, EncodeError

__all__ = ["Codec", "MessageCodec"]

T = TypeVar("T")


@runtime_checkable
class Codec(Protocol):
    """Conversion between bytes and messages.

    ``decode`` must raise ``DecodeError`` for malformed input and
    ``encode`` must raise ``EncodeError`` for messages it cannot
    represent.
    """

    def encode(self, message: Any) -> bytes: ...

    def decode(self, data: bytes) -> Any: ...


def _field_types(cls: type) -> dict[str, Any]:
    try:
        return get_type_hints(cls)
    except Exception:
        return {f.name: f.type for f in fields(cls)}


def _needs_conversion(field_type: Any) -> bool:
    origin = get_origin(field_type)
    if origin is tuple or field_type is tuple:
        return True
    if origin is list:
        args = get_args(field_type)
        if args:
            return _needs_conversion(args[0])
    return False


def _decode_value(value: Any, field_type: Any) -> Any:
    if value is None:
        return None
    origin = get_origin(field_type)

    # msgpack has no tuple; lists come back and are restored here
    if origin is tuple or field_type is tuple:
        args = get_args(field_type)
        if args and args[-1] is not Ellipsis:
            return tuple(_decode_value(v, t) for v, t in zip(value, args))
        return tuple(value)

    if origin is list:
        args = get_args(field_type)
        if args:
            return [_decode_value(v, args[0]) for v in value]
    return value


class MessageCodec:
    """Registry-based codec for dataclass messages.

    Each message type is registered under a one-byte id that prefixes its
    msgpack-encoded fields.  Registries are per instance, so several
    protocols can reuse the same ids.

    Parameters
    ----------
    name : str
        Protocol name, used in error messages.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._registry: dict[int, type] = {}
        self._class_to_id: dict[type, int] = {}
        self._tuple_fields: dict[type, dict[str, Any]] = {}

    def message(
        self,
        message_id: int,
        *,
        frozen: bool = True,
        slots: bool = True,
    ) -> Callable[[type[T]], type[T]]:
        """Register a message class under *message_id*.

        Applies ``@dataclass(frozen=True, slots=True)`` when the class is not
        a dataclass yet.

        Raises
        ------
        ValueError
            If *message_id* is out of range or already taken.
        """
        if not (0x00 <= message_id <= 0xFF):
            raise ValueError(f"message_id must be 0x00-0xFF, got {hex(message_id)}")

        if message_id in self._registry:
            existing = self._registry[message_id]
            raise ValueError(
                f"[{self.name}] message_id {hex(message_id)} already registered "
                f"to {existing.__name__}"
            )

        def decorator(cls: type[T]) -> type[T]:
            if not is_dataclass(cls):
                cls = dataclass(frozen=frozen, slots=slots)(cls)

            self._registry[message_id] = cls
            self._class_to_id[cls] = message_id

            tuple_fields = {
                name: ftype
                for name, ftype in _field_types(cls).items()
                if _needs_conversion(ftype)
            }
            if tuple_fields:
                self._tuple_fields[cls] = tuple_fields

            return cls

        return decorator

    def message_id(self, cls: type) -> int | None:
        return self._class_to_id.get(cls)

    def get_registry(self) -> dict[int, type]:
        """Return a copy of the id to class mapping."""
        return self._registry.copy()

    def encode(self, message: Any) -> bytes:
        """Encode a registered message.

        Raises
        ------
        EncodeError
            If the type is not registered or a field cannot be packed.
        """
        cls = type(message)
        message_id = self._class_to_id.get(cls)
        if message_id is None:
            raise EncodeError(
                f"Type {cls.__name__} is not registered with protocol '{self.name}'"
            )

        try:
            payload = msgpack.packb(asdict(message), use_bin_type=True)
        except (TypeError, ValueError, OverflowError) as exc:
            raise EncodeError(f"[{self.name}] cannot encode {cls.__name__}: {exc}") from exc
        return struct.pack("B", message_id) + payload

    def decode(self, data: bytes) -> Any:
        """Decode bytes produced by ``encode``.

        Raises
        ------
        DecodeError
            On empty input, unknown ids, malformed msgpack, or fields that
            do not match the registered class.
        """
        if len(data) < 2:
            raise DecodeError(f"[{self.name}] datagram too short: {len(data)} bytes")

        message_id = data[0]
        cls = self._registry.get(message_id)
        if cls is None:
            raise DecodeError(f"[{self.name}] Unknown message_id: {hex(message_id)}")

        try:
            fields_dict = msgpack.unpackb(data[1:], raw=False)
        except (msgpack.UnpackException, ValueError, TypeError) as exc:
            raise DecodeError(f"[{self.name}] malformed payload: {exc}") from exc
        if not isinstance(fields_dict, dict):
            raise DecodeError(f"[{self.name}] payload is not a map")

        for field_name, field_type in self._tuple_fields.get(cls, {}).items():
            if field_name in fields_dict:
                fields_dict[field_name] = _decode_value(fields_dict[field_name], field_type)

        try:
            return cls(**fields_dict)
        except TypeError as exc:
            raise DecodeError(f"[{self.name}] fields do not match {cls.__name__}: {exc}") from exc
