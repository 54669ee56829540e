"""
pyEMAdmin: Async Python library and tool for administering water meters over
an optical M-Bus head.

This library wakes the meter, exchanges M-Bus frames with it and decodes its
settings, telemetry records and stored monthly readings.
"""

from __future__ import annotations

from .commands import COMMANDS, CommandOptions, KeyDay, run_command
from .exceptions import (
    MBusConnectionError,
    MBusError,
    MBusProtocolError,
    MBusTimeoutError,
    MBusTransportError,
    MBusUnverifiedCommandError,
)
from .transaction import Transaction
from .transport import MBusTransport

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "COMMANDS",
    "CommandOptions",
    "KeyDay",
    "run_command",
    "Transaction",
    "MBusTransport",
    "MBusError",
    "MBusTransportError",
    "MBusConnectionError",
    "MBusTimeoutError",
    "MBusProtocolError",
    "MBusUnverifiedCommandError",
]
