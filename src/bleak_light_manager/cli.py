"""Command line entry point.

Runs the light manager and its WebSocket server until interrupted::

    bleak-light-manager --config lights.json --port 8080

or lists the lights currently advertising nearby::

    bleak-light-manager --scan
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys

from .adapter import BleakRadioAdapter
from .config import load_config
from .const import ManagerConfig
from .exceptions import AdapterUnavailable, DiscoveryFailure
from .manager import LightManager
from .server import LightControlServer

_LOGGER = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bleak-light-manager",
        description="Keep a set of BLE CCT lights connected and control them over WebSocket.",
    )
    parser.add_argument("--config", "-c", help="JSON file listing the lights to manage")
    parser.add_argument("--host", default="0.0.0.0", help="WebSocket bind address")
    parser.add_argument("--port", type=int, default=8080, help="WebSocket port")
    parser.add_argument(
        "--no-server", action="store_true", help="Run the manager without the WebSocket server"
    )
    parser.add_argument(
        "--scan", action="store_true", help="List nearby lights and exit"
    )
    parser.add_argument(
        "--scan-time", type=float, default=10.0, help="Scan duration in seconds for --scan"
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    return parser


async def _scan(duration: float, adapter: str | None) -> int:
    radio = BleakRadioAdapter(adapter)
    try:
        handles = await radio.discover(duration)
    except DiscoveryFailure as exc:
        _LOGGER.error("Scan failed: %s", exc)
        return 1
    if not handles:
        print("No lights found.")
        return 0
    for handle in sorted(handles, key=lambda h: h.rssi or -999, reverse=True):
        print(f"{handle.name}\t{handle.address}\tRSSI {handle.rssi} dBm")
    return 0


async def _run(args: argparse.Namespace) -> int:
    if args.config is None:
        _LOGGER.error("--config is required unless --scan is given")
        return 2
    try:
        devices, config = load_config(args.config)
    except (OSError, ValueError) as exc:
        _LOGGER.error("Cannot load %s: %s", args.config, exc)
        return 2

    manager = LightManager(devices, config=config)
    server = None if args.no_server else LightControlServer(manager, args.host, args.port)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except (NotImplementedError, RuntimeError):
            pass

    try:
        await manager.initialize()
    except AdapterUnavailable as exc:
        _LOGGER.error("Bluetooth adapter unavailable: %s", exc)
        await manager.shutdown()
        return 1

    try:
        if server is not None:
            await server.start()
        _LOGGER.info("System ready, press Ctrl+C to exit")
        await stop.wait()
    finally:
        _LOGGER.info("Shutting down")
        if server is not None:
            await server.stop()
        await manager.shutdown()
    return 0


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if args.scan:
        adapter = ManagerConfig().adapter
        if args.config:
            try:
                adapter = load_config(args.config)[1].adapter
            except (OSError, ValueError) as exc:
                _LOGGER.error("Cannot load %s: %s", args.config, exc)
                return 2
        return asyncio.run(_scan(args.scan_time, adapter))
    try:
        return asyncio.run(_run(args))
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    sys.exit(main())
