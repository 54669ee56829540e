"""Command line entry point.

Usage:
    emadmin <serial port> [get_params|set_params|set_time|set_keyday|set_aes|read_info|read_highres|read_months]

One session per invocation: open the port at 8N1, send the wakeup burst,
wait for the meter, switch to 8E1 and run a single command. Results are
printed as EM_* lines on stdout.

Logging is configured at INFO, so only results and errors are printed.
The DEBUG events (UART hex dumps of every frame and the MBUS_C, MBUS_ADR,
MBUS_CI and per-record MBUS_* lines) stay hidden unless a caller lowers
the level of the "emadmin" logger.

Exit status:
    0           success
    1           the port could not be opened
    EIO         no (complete) exchange on the line
    EPROTO      invalid or unexpected response
    ENOTSUP     command not verified on a meter
"""

from __future__ import annotations

import argparse
import asyncio
import errno
import logging
import sys
from collections.abc import Sequence
from datetime import datetime
from typing import Any

from .commands import (
    COMMANDS,
    DEFAULT_COMMAND,
    DeviceParameters,
    HighResReading,
    KeyDay,
    MeterInfo,
    MonthlyUsage,
    run_command,
)
from .exceptions import MBusConnectionError, MBusProtocolError, MBusTransportError, MBusUnverifiedCommandError
from .protocol.frame import RspUdHeader
from .protocol.settings import SettingsBlob
from .transaction import WAKEUP_SETTLE_TIME, Transaction
from .transport import PARITY_EVEN, PARITY_NONE, MBusTransport

_LOGGER = logging.getLogger(__name__)

EXIT_OPEN_FAILED = 1


# =============================================================================
# Rendering
# =============================================================================


def _bits(value: int, width: int) -> str:
    return format(value & ((1 << width) - 1), f"0{width}b")


def _active(flag: bool) -> str:
    return "active" if flag else "inactive"


def render_header(header: RspUdHeader) -> list[str]:
    return [
        f"MBUS_SECADR: 0x{header.secondary_address:08x}",
        f"MBUS_MANUFACTURER: 0x{header.manufacturer_code:04X} ({header.manufacturer})",
        f"MBUS_VERSION: {header.version}",
        f"MBUS_MEDIUM: 0x{header.medium:02x}",
        f"MBUS_ACCESSCOUNT: {header.access_counter}",
        f"MBUS_STATE: 0x{header.status:02x}",
        f"MBUS_SIGNATURE: 0x{header.signature:04X}",
    ]


def render_settings(settings: SettingsBlob) -> list[str]:
    return [
        f"EM_FLAGS: 0x{int(settings.flags):02x}",
        f"EM_OMSMODE: {int(settings.oms_mode)}",
        f"EM_FRAMETYPE: {int(settings.frame_type)}",
        f"EM_INTERVAL: {settings.interval_seconds} s",
        f"EM_MONTHS: 0b{_bits(settings.months_mask, 12)} (Dec .. Jan)",
        f"EM_WEEKOMS: 0b{_bits(settings.weeks_of_month_mask, 31)} (31 .. 1)",
        f"EM_DAYOWS: 0b{_bits(settings.days_of_week_mask, 7)} (Sun .. Mon)",
        f"EM_HOURS: 0b{_bits(settings.hours_mask, 24)} (23 .. 00)",
        f"EM_ONDAY: {settings.on_date} ({_active(settings.is_start_date_active)})",
        f"EM_ONVOL: {settings.on_volume_liters} l ({_active(settings.is_start_volume_active)})",
        f"EM_OPYEARS: {settings.operating_years}",
    ]


def render_result(result: Any) -> list[str]:
    """Format a command result as output lines."""
    if isinstance(result, DeviceParameters):
        return render_header(result.header) + render_settings(result.settings)

    if isinstance(result, SettingsBlob):
        return render_settings(result)

    if isinstance(result, MeterInfo):
        return render_header(result.header) + [
            f"{index:02d}: {record}" for index, record in enumerate(result.records)
        ]

    if isinstance(result, HighResReading):
        return render_header(result.header) + [f"EM_HIGHRES_READING: {result.milliliters} ml"]

    if isinstance(result, MonthlyUsage):
        return [
            f"EM_METER_READING_{reading.date}: {reading.liters}"
            for reading in result.end_of_month + result.middle_of_month
        ]

    if isinstance(result, datetime):
        return [f"EM_DEVICE_TIME: {result:%d.%m.%Y %H:%M} (no DST)"]

    if isinstance(result, KeyDay):
        return [f"EM_KEYDAY: {result}"]

    return []


# =============================================================================
# Session
# =============================================================================


async def run_session(device: str, command_name: str) -> int:
    """Wake the meter behind device, run one command and print its result.

    Returns:
        Process exit status
    """
    if not COMMANDS[command_name].verified:
        _LOGGER.error("Command %s is not tested on a meter, refusing to send it", command_name)
        return errno.ENOTSUP

    _LOGGER.info("Setting serial port to 2400 baud 8N1")
    transport = MBusTransport(device, parity=PARITY_NONE)

    try:
        await transport.open()
    except MBusConnectionError as err:
        _LOGGER.error("Failed to open serial port '%s': %s", device, err)
        return EXIT_OPEN_FAILED

    try:
        transaction = Transaction(transport)

        await transaction.wakeup()
        await asyncio.sleep(WAKEUP_SETTLE_TIME)

        _LOGGER.info("Setting serial port to 2400 baud 8E1")
        transport.set_parity(PARITY_EVEN)

        result = await run_command(transaction, command_name)
    except MBusUnverifiedCommandError as err:
        _LOGGER.error("%s", err)
        return errno.ENOTSUP
    except MBusTransportError as err:
        _LOGGER.error("M-Bus i/o failed: %s", err)
        return errno.EIO
    except MBusProtocolError as err:
        _LOGGER.error("M-Bus protocol error: %s", err)
        return errno.EPROTO
    finally:
        await transport.close()

    for line in render_result(result):
        _LOGGER.info("%s", line)

    _LOGGER.info("Operation completed successfully")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="emadmin", description="Optical M-Bus water meter administration")
    parser.add_argument("device", help="serial port or socket://host:port of the optical head")
    parser.add_argument(
        "command",
        nargs="?",
        default=DEFAULT_COMMAND,
        choices=list(COMMANDS),
        help=f"operation to run (default {DEFAULT_COMMAND})",
    )
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point -- parse args, run one command session.

    Example:
        From the shell::

            emadmin /dev/ttyUSB0
            emadmin /dev/ttyUSB0 read_months
    """
    args = build_parser().parse_args(argv)

    logging.basicConfig(format="%(message)s", level=logging.INFO, stream=sys.stdout)

    return asyncio.run(run_session(args.device, args.command))


if __name__ == "__main__":
    sys.exit(main())
