"""Command-line interface for bambu-bridge."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional

from . import constants
from .adapters import ControlPlaneClient, ControlPlaneError
from .app import BambuBridgeApp
from .config import BridgeConfig, ControlPlaneConfig, load_config
from .core import PrinterDescriptor

LOGGER = logging.getLogger(__name__)

SECRET_KEYS = frozenset({"api_key"})


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=constants.APP_NAME,
        description="Bridge Bambu Lab LAN printers to the fleet control plane",
    )
    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=constants.DEFAULT_CONFIG_PATH,
        help=f"Path to configuration file (default: {constants.DEFAULT_CONFIG_PATH})",
    )
    parser.add_argument(
        "--log-level",
        help="Override [logging] level for this run (e.g. DEBUG)",
    )

    commands = parser.add_subparsers(dest="command", required=True)
    commands.add_parser("start", help="Run the bridge until interrupted")
    commands.add_parser(
        "check", help="Ask the control plane for the printer list once and exit"
    )
    commands.add_parser(
        "show-config", help="Print the resolved configuration, secrets masked"
    )
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    config = load_config(args.config)
    if args.log_level:
        config.logging.level = args.log_level
        config.raw.set("logging", "level", args.log_level)

    if args.command == "start":
        return BambuBridgeApp.start(config)
    if args.command == "check":
        return _check(config)
    if args.command == "show-config":
        _show_config(config)
        return 0

    LOGGER.error("Unknown command: %s", args.command)
    return 1


def _check(config: BridgeConfig) -> int:
    if not config.control_plane.api_key:
        print(f"No API key configured ([control_plane] api_key or {constants.API_KEY_ENV})")
        return 1

    try:
        printers = asyncio.run(_fetch_printers(config.control_plane))
    except ControlPlaneError as exc:
        print(f"Control plane at {config.control_plane.base_url} failed: {exc}")
        return 1

    print(f"Control plane at {config.control_plane.base_url} reachable")
    print(f"{len(printers)} printer(s) assigned to this bridge")
    for printer in printers:
        print(
            f"  {printer.id}: {printer.model_hint or 'unknown model'} "
            f"at {printer.host} (serial {printer.serial_number})"
        )
    return 0


async def _fetch_printers(config: ControlPlaneConfig) -> List[PrinterDescriptor]:
    client = ControlPlaneClient(config)
    try:
        return await client.init()
    finally:
        await client.close()


def _show_config(config: BridgeConfig) -> None:
    print(f"Configuration loaded from {config.path!s}\n")
    for section in config.raw.sections():
        print(f"[{section}]")
        for key, value in config.raw[section].items():
            if key in SECRET_KEYS and value:
                value = "***"
            print(f"{key} = {value}")
        print()


if __name__ == "__main__":
    sys.exit(main())
