# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

import argparse
import asyncio
import contextlib
import json
import logging
import signal

from .config import Config
from .coordinator import ReceiverService, scan_and_stream
from .discovery.protocol import format_endpoint_list
from .discovery.scanner import Scanner
from .exceptions import ConnectError, NetworkError, ScreenShareError
from .media.protocol import CaptureFactory, DisplayFactory
from .utils.cancel import CancellationToken


EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CANNOT_SEARCH = 2


def setup_logging(config, override_level=None):
    """Configure logging based on config settings."""
    log_level_str = override_level.lower() if override_level else config.get("log.level").lower()

    level_map = {
        "debug": logging.DEBUG,
        "info": logging.INFO,
        "warning": logging.WARNING,
        "warn": logging.WARNING,  # alias
        "error": logging.ERROR,
        "critical": logging.CRITICAL,
    }

    logging.basicConfig(
        level=level_map.get(log_level_str, logging.INFO),
        format="[%(levelname)s] [%(name)s] %(message)s",
        handlers=[logging.StreamHandler()],
        force=True,  # Reset any existing configuration
    )


def install_signal_handlers(token: CancellationToken) -> None:
    """Cancel ``token`` on SIGINT/SIGTERM so loops can shut down cooperatively."""
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        # add_signal_handler is unavailable on Windows event loops
        with contextlib.suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(sig, token.cancel, f"signal {sig.name}")


async def cmd_receive(args: argparse.Namespace, config: Config) -> int:
    kind = args.display or config.get("display.kind")
    display_options = {}
    if kind == "snapshot":
        display_options = {
            "snapshot_dir": args.snapshot_dir or config.get("display.snapshot_dir"),
            "snapshot_every": config.get("display.snapshot_every"),
        }
    # One display per receiver process, reused across sessions
    display = DisplayFactory.create(kind, **display_options)

    overrides = {"host": args.host}
    if args.port is not None:
        overrides["port"] = args.port
    service = ReceiverService.from_config(lambda: display, advertise=not args.no_advertise, **overrides)
    install_signal_handlers(service.token)

    try:
        await service.serve()
    except NetworkError as e:
        logging.getLogger("main").error(f"cannot serve: {e}")
        return EXIT_FAILED
    return EXIT_OK


async def cmd_scan(args: argparse.Namespace, config: Config) -> int:
    scanner = Scanner.from_config()
    try:
        endpoints = await scanner.scan(args.window, False if args.no_probe else None)
    except NetworkError as e:
        logging.getLogger("main").error(f"cannot search: {e}")
        return EXIT_CANNOT_SEARCH

    if args.json:
        payload = [{"address": ep.address, "port": ep.port, "service_id": ep.service_id} for ep in endpoints]
        print(json.dumps(payload, indent=2))
    elif endpoints:
        print(format_endpoint_list(endpoints))
    else:
        print("no receivers found")
    return EXIT_OK


async def cmd_send(args: argparse.Namespace, config: Config) -> int:
    width = args.width if args.width is not None else config.get("stream.width")
    height = args.height if args.height is not None else config.get("stream.height")
    fps = args.fps if args.fps is not None else config.get("stream.fps")
    source = args.source or config.get("capture.source")

    if fps <= 0 or width <= 0 or height <= 0:
        logging.getLogger("main").error(f"invalid stream geometry {width}x{height}@{fps}")
        return EXIT_FAILED

    try:
        capture = CaptureFactory.create(source, width, height, fit=config.get("capture.fit"))
    except (ValueError, ScreenShareError) as e:
        logging.getLogger("main").error(f"cannot open capture source: {e}")
        return EXIT_FAILED

    token = CancellationToken()
    install_signal_handlers(token)

    try:
        result = await scan_and_stream(
            capture,
            fps=fps,
            target=args.target,
            index=args.index,
            window_s=args.window,
            probe=False if args.no_probe else None,
            token=token,
            max_frames=args.frames,
            max_lag_ticks=config.get("stream.max_lag_ticks"),
            connect_timeout_s=config.get("stream.connect_timeout_s"),
        )
    except ConnectError as e:
        logging.getLogger("main").error(f"cannot connect: {e}")
        return EXIT_FAILED
    except NetworkError as e:
        logging.getLogger("main").error(f"cannot search: {e}")
        return EXIT_CANNOT_SEARCH
    except (LookupError, ValueError) as e:
        logging.getLogger("main").error(str(e))
        return EXIT_FAILED
    finally:
        capture.close()

    if result is None:
        print("no receivers found")
        return EXIT_FAILED
    return EXIT_OK if result.ok else EXIT_FAILED


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="screenshare", description="LAN screen sharing with zero configuration")
    parser.add_argument("--config", default=None, help="Path to YAML/TOML/JSON config file")
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["debug", "info", "warning", "warn", "error", "critical"],
        type=str.lower,
        help="Set logging level (overrides config file)",
    )
    sub = parser.add_subparsers(dest="cmd", required=True)

    recv = sub.add_parser("receive", help="Advertise this host and display incoming streams")
    recv.add_argument("--host", default="0.0.0.0", help="Address to accept senders on")
    recv.add_argument("--port", type=int, default=None, help="Streaming port (default from config)")
    recv.add_argument("--display", choices=["null", "snapshot"], default=None)
    recv.add_argument("--snapshot-dir", default=None)
    recv.add_argument("--no-advertise", action="store_true", help="Accept connections without discovery")
    recv.set_defaults(func=cmd_receive)

    scan = sub.add_parser("scan", help="List receivers on the local network")
    scan.add_argument("--window", type=float, default=None, help="Seconds to collect responses")
    scan.add_argument("--no-probe", action="store_true", help="Skip the stream port reachability check")
    scan.add_argument("--json", action="store_true")
    scan.set_defaults(func=cmd_scan)

    send = sub.add_parser("send", help="Stream frames to a receiver")
    pick = send.add_mutually_exclusive_group()
    pick.add_argument("--target", default=None, help="Receiver ip[:port]; ip:port skips discovery")
    pick.add_argument("--index", type=int, default=None, help="Index in the discovered receiver list")
    send.add_argument("--source", default=None, help="'screen', 'pattern', or an image path")
    send.add_argument("--width", type=int, default=None)
    send.add_argument("--height", type=int, default=None)
    send.add_argument("--fps", type=int, default=None)
    send.add_argument("--frames", type=int, default=None, help="Stop after this many frames")
    send.add_argument("--window", type=float, default=None, help="Discovery window in seconds")
    send.add_argument("--no-probe", action="store_true")
    send.set_defaults(func=cmd_send)

    return parser


async def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    config = Config()
    config.load(args.config)

    setup_logging(config, override_level=args.log_level)
    logging.getLogger("main").debug(f"loaded config: {config.get()}")

    return await args.func(args, config)


def run():
    """Entry point for setuptools console scripts."""
    try:
        raise SystemExit(asyncio.run(main()))
    except KeyboardInterrupt:
        logging.getLogger("main").info("Shutting down...")


if __name__ == "__main__":
    run()
