"""Command-line interface for camera-observer."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional, TextIO

from . import constants
from .adapters import Device, DeviceCommandError, SmartThingsClient
from .app import CameraObserverApp, StartupError
from .config import (
    ConfigurationError,
    load_broker_address,
    load_config,
    parse_broker_address,
)
from .logging import configure_logging
from .probe import probe_broker

LOGGER = logging.getLogger(__name__)

DEFAULT_PROBE_BROKER = f"localhost:{constants.DEFAULT_BROKER_PORT}"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="camera-observer",
        description="Power-cycle SmartThings switches when Frigate cameras stall",
    )
    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=constants.DEFAULT_CONFIG_PATH,
        help=f"Path to configuration file (default: {constants.DEFAULT_CONFIG_PATH})",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("start", help="Start the camera-observer service")

    list_parser = subparsers.add_parser(
        "list-devices", help="List SmartThings devices visible to a token"
    )
    list_parser.add_argument("--token", default="", help="SmartThings API token")

    subparsers.add_parser(
        "probe", help="Check that the configured MQTT broker port is reachable"
    )

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "start":
        return _run_service(args.config)

    configure_logging("INFO")

    if args.command == "list-devices":
        return _list_devices(args.token)

    if args.command == "probe":
        return _probe(args.config)

    LOGGER.error("Unknown command: %s", args.command)
    return 1


def _run_service(config_path: Path) -> int:
    try:
        config = load_config(config_path)
    except ConfigurationError as exc:
        configure_logging("INFO")
        LOGGER.error("Failed to load configuration: %s", exc)
        return 1

    try:
        CameraObserverApp.start(config)
    except StartupError as exc:
        LOGGER.error("%s", exc)
        return 1
    return 0


def _list_devices(token: str) -> int:
    if not token:
        LOGGER.error("Please provide --token with your SmartThings API token")
        return 1

    async def _fetch() -> List[Device]:
        async with SmartThingsClient(token) as client:
            return await client.list_devices()

    try:
        devices = asyncio.run(_fetch())
    except DeviceCommandError as exc:
        LOGGER.error("Failed to list devices: %s", exc)
        return 1

    print_devices(devices)
    return 0


def print_devices(devices: List[Device], stream: Optional[TextIO] = None) -> None:
    out = stream or sys.stdout
    print("\n=== SmartThings Devices ===\n", file=out)
    for device in devices:
        print(f"Device ID: {device.device_id}", file=out)
        print(f"  Name: {device.name}", file=out)
        print(f"  Label: {device.label}\n", file=out)


def _probe(config_path: Path) -> int:
    try:
        host, port = load_broker_address(config_path)
    except ConfigurationError as exc:
        LOGGER.warning("%s; probing %s instead", exc, DEFAULT_PROBE_BROKER)
        host, port = parse_broker_address(DEFAULT_PROBE_BROKER)

    result = asyncio.run(probe_broker(host, port))
    print(result.describe())
    return 0 if result.ok else 1


if __name__ == "__main__":
    sys.exit(main())
