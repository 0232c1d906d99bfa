"""Echo server demo.

Usage::

    python -m udpkit --address 127.0.0.1:5683 --allow-override

Replies to every ``Request`` with a ``Response`` carrying the same payload.
"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import logging
from pathlib import Path

from udpkit.address import Address
from udpkit.codec import MessageCodec
from udpkit.config import load_config
from udpkit.errors import BindError, TransportClosedError
from udpkit.handlers import handler
from udpkit.server import listen_and_serve
from udpkit.transport import Transport

log = logging.getLogger("udpkit.demo")

demo_codec = MessageCodec("demo")


@demo_codec.message(0x01)
class Request:
    path: str
    payload: bytes = b""


@demo_codec.message(0x02)
class Response:
    path: str
    payload: bytes = b""


@handler
async def echo(transport: Transport, address: Address | None, message: object) -> Response | None:
    match message:
        case Request(path=path, payload=payload):
            log.info("%s %s (%d bytes)", address, path, len(payload))
            return Response(path=path, payload=payload)
        case _:
            return None


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="udpkit", description="udpkit echo server")
    parser.add_argument("--config", type=Path, default=None, help="path to udpkit.toml")
    parser.add_argument("--network", default=None, choices=["udp", "udp4", "udp6"])
    parser.add_argument("--address", default=None, help="listen address, e.g. 0.0.0.0:5683")
    parser.add_argument(
        "--allow-override",
        action="store_true",
        help="honor {host:port} reply overrides embedded in payloads",
    )
    parser.add_argument("--log-level", default="INFO")
    return parser.parse_args(argv)


async def main(args: argparse.Namespace) -> None:
    config = load_config(args.config)
    if args.allow_override:
        config = dataclasses.replace(config, allow_address_override=True)
    network = args.network or config.network
    address = args.address or config.address

    try:
        await listen_and_serve(network, address, echo, demo_codec, config)
    except BindError as exc:
        log.error("%s", exc)
        raise SystemExit(1) from exc
    except TransportClosedError:
        log.info("transport closed")


def run() -> None:
    args = parse_args()
    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
        datefmt="%H:%M:%S",
    )
    asyncio.run(main(args))


if __name__ == "__main__":
    run()
