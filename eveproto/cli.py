"""
eveproto — command line entry point.

Usage:
    eveproto decode 0d0000007e0000000008...       # hex of one framed message
    eveproto decode @capture.bin --json            # raw bytes from a file
    eveproto sniff --timeout 60 --save captures    # live capture (needs admin/root)
    eveproto replay captures/20260101_120000.json  # decode a saved session
    eveproto serve --port 26000                    # accept clients, log messages
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from eveproto.net.server import EVEServer, ServerConfig
from eveproto.protocol.analyzer import MessageAnalyzer, render, to_python
from eveproto.protocol.decoder import DecoderConfig, MarshalDecoder, Message
from eveproto.protocol.errors import DecodeError
from eveproto.sniffer.capture import EVESniffer
from eveproto.sniffer.session import CaptureSession

log = logging.getLogger("eveproto")


def _decoder_config(args: argparse.Namespace) -> DecoderConfig:
    return DecoderConfig(max_depth=args.max_depth, strict=not args.lenient)


def _read_input(source: str) -> bytes:
    if source.startswith("@"):
        return Path(source[1:]).read_bytes()
    return bytes.fromhex("".join(source.split()))


def _print_message(message: Message, as_json: bool) -> None:
    if as_json:
        print(json.dumps({
            "save_count": message.save_count,
            "values": [to_python(v) for v in message.values],
        }, indent=2))
        return
    print(f"Message: save_count={message.save_count}, {len(message)} value(s)")
    for value in message.values:
        print(render(value, indent=1))


def cmd_decode(args: argparse.Namespace) -> int:
    try:
        data = _read_input(args.input)
    except ValueError as e:
        log.error("Input is not valid hex: %s", e)
        return 2
    except OSError as e:
        log.error("Can't read input: %s", e)
        return 2

    try:
        message = MarshalDecoder(_decoder_config(args)).decode_message(data)
    except DecodeError as e:
        log.error("Decode failed: %s", e)
        return 1
    _print_message(message, args.json)
    return 0


def _replay(session: CaptureSession, args: argparse.Namespace) -> int:
    decoded = session.decoded_messages(_decoder_config(args))
    analyzer = MessageAnalyzer()
    failures = 0
    for entry in decoded:
        client, direction = entry.stream
        if not entry.ok:
            failures += 1
            print(f"[!] #{entry.packet_index} {direction} {client}: {entry.error}")
            continue
        analyzer.add(entry.message)
        if not args.quiet:
            print(f"[{direction}] {client} (packet #{entry.packet_index}, {len(entry.raw)} bytes)")
            _print_message(entry.message, args.json)
    print()
    print(analyzer.report())
    print(f"\n{len(decoded) - failures} decoded, {failures} failed")
    return 1 if failures else 0


def cmd_replay(args: argparse.Namespace) -> int:
    try:
        session = CaptureSession.load(args.session)
    except (OSError, ValueError, KeyError) as e:
        log.error("Can't load session %s: %s", args.session, e)
        return 2
    print(session.summary())
    print()
    return _replay(session, args)


def cmd_sniff(args: argparse.Namespace) -> int:
    sniffer = EVESniffer(server_ips=args.server_ip, ports=args.port, iface=args.iface)
    session = CaptureSession()
    session.record(sniffer, timeout=args.timeout)
    print(session.summary())
    if args.save:
        path = session.save(args.save)
        print(f"[*] Saved to {path}")
    return _replay(session, args)


async def _serve(config: ServerConfig, as_json: bool) -> None:
    server = EVEServer(config)
    await server.start()
    print(f"[*] Listening on {config.host}:{server.port}")
    serve_task = asyncio.create_task(server.serve_forever())
    try:
        while True:
            event = await server.manager.next_event()
            if event.message is not None:
                print(f"[client {event.client_id}] {event.peer}")
                _print_message(event.message, as_json)
            elif event.error is not None:
                print(f"[!] client {event.client_id} dropped: {event.error}")
            elif event.closed:
                print(f"[*] client {event.client_id} disconnected")
    finally:
        serve_task.cancel()
        await server.shutdown()


def cmd_serve(args: argparse.Namespace) -> int:
    config = ServerConfig(host=args.host, port=args.port, decoder=_decoder_config(args))
    try:
        asyncio.run(_serve(config, args.json))
    except KeyboardInterrupt:
        print("\n[*] Stopped by user")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="eveproto",
        description="EVE marshal protocol decoder",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("-v", "--verbose", action="store_true",
                        help="Enable debug logging")

    decoding = argparse.ArgumentParser(add_help=False)
    decoding.add_argument("--lenient", action="store_true",
                          help="Stop quietly at a truncated trailing value instead of failing")
    decoding.add_argument("--max-depth", type=int, default=DecoderConfig.max_depth,
                          help=f"Maximum container nesting (default: {DecoderConfig.max_depth})")
    decoding.add_argument("--json", action="store_true",
                          help="Print messages as JSON instead of a tree")

    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("decode", parents=[decoding], help="Decode one framed message")
    p.add_argument("input", help="Hex string, or @path to a binary file")
    p.set_defaults(func=cmd_decode)

    p = sub.add_parser("sniff", parents=[decoding], help="Capture live traffic and decode it")
    p.add_argument("--server-ip", action="append", default=None,
                   help="Server IP to watch (repeatable)")
    p.add_argument("--port", action="append", type=int, default=None,
                   help="Server port to watch (repeatable)")
    p.add_argument("--iface", default=None, help="Network interface")
    p.add_argument("--timeout", type=int, default=None, help="Stop after N seconds")
    p.add_argument("--save", default=None, metavar="DIR", help="Save the session to DIR")
    p.add_argument("-q", "--quiet", action="store_true", help="Only print the report")
    p.set_defaults(func=cmd_sniff)

    p = sub.add_parser("replay", parents=[decoding], help="Decode a saved capture session")
    p.add_argument("session", help="Path to a session .json")
    p.add_argument("-q", "--quiet", action="store_true", help="Only print the report")
    p.set_defaults(func=cmd_replay)

    p = sub.add_parser("serve", parents=[decoding], help="Accept clients and print their messages")
    p.add_argument("--host", default=ServerConfig.host)
    p.add_argument("--port", type=int, default=ServerConfig.port)
    p.set_defaults(func=cmd_serve)

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
