"""Command-line interface for solar-bridge."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

from . import constants
from .adapters.serial_port import SerialPortOpener, TransportOpener
from .app import SolarBridgeApp
from .channel import SendOutcome
from .config import BridgeConfig, ConfigurationError, load_config
from .connection import SerialConnection
from .logging import configure_logging
from .protocol import CommandParseError, OutboundCommand, parse_command
from .telemetry import TelemetryStateStore

LOGGER = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=constants.APP_NAME,
        description="Serial bridge for the dual-axis solar tracker",
    )
    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=constants.DEFAULT_CONFIG_PATH,
        help=f"Path to configuration file (default: {constants.DEFAULT_CONFIG_PATH})",
    )
    parser.add_argument(
        "-p", "--port", help="Serial port to use instead of the configured one"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("start", help="Start the solar-bridge service")

    send_parser = subparsers.add_parser(
        "send", help="Send a single command token (AUTO, MANUAL, START, STOP, CENTER, H<n>, V<n>)"
    )
    send_parser.add_argument("token", help="Command token, e.g. CENTER or H120")

    subparsers.add_parser(
        "show-config", help="Print the resolved configuration and exit"
    )

    return parser


async def send_once(
    config: BridgeConfig,
    command: OutboundCommand,
    *,
    opener: Optional[TransportOpener] = None,
) -> SendOutcome:
    """Open the link, send one command and close it again."""

    connection = SerialConnection(
        opener or SerialPortOpener(config.serial),
        store=TelemetryStateStore(),
        encoding=config.serial.encoding,
    )
    if not await connection.open():
        return SendOutcome.NOT_CONNECTED
    try:
        return await connection.send(command)
    finally:
        await connection.close()


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)
    except ConfigurationError as exc:
        LOGGER.error("%s", exc)
        return 1

    if args.port:
        config.serial.port = args.port
        config.raw.set("serial", "port", args.port)

    if args.command == "start":
        SolarBridgeApp.start(config)
        return 0

    if args.command == "send":
        try:
            command = parse_command(args.token)
        except CommandParseError as exc:
            LOGGER.error("%s", exc)
            return 1

        configure_logging(config.logging.level, log_serial=config.logging.log_serial)
        outcome = asyncio.run(send_once(config, command))
        if outcome != SendOutcome.SENT:
            LOGGER.error("Command %s not sent (%s)", command, outcome.value)
            return 1
        return 0

    if args.command == "show-config":
        print(f"Configuration loaded from {config.path!s}\n")
        for section in config.raw.sections():
            print(f"[{section}]")
            for key, value in config.raw[section].items():
                print(f"{key} = {value}")
            print()
        return 0

    LOGGER.error("Unknown command: %s", args.command)
    return 1


if __name__ == "__main__":
    sys.exit(main())
