"""M-Bus exception classes."""

from __future__ import annotations


class MBusError(Exception):
    """Base exception for all M-Bus errors."""


class MBusTransportError(MBusError):
    """Byte-stream level errors (nothing or nothing usable reached the wire)."""


class MBusConnectionError(MBusTransportError):
    """Connection-related errors."""


class MBusTimeoutError(MBusTransportError):
    """Timeout waiting for data or response."""


class MBusProtocolError(MBusError):
    """Protocol-level errors (frame validation, checksums, etc)."""


class MBusUnverifiedCommandError(MBusError):
    """Command whose wire format is known but which was never verified on hardware."""
