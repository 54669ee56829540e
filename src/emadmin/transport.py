"""Byte transport to the optical head.

The IR head is an ordinary serial device (or a serial server reached via
socket:// or rfc2217://), so pyserial-asyncio-fast opens every variant.
The meter listens at 2400 baud: the wakeup burst goes out as 8N1 and all
frames afterwards as 8E1, on the same open port.
"""

from __future__ import annotations

import asyncio
from typing import Any, Protocol

import serial_asyncio_fast

from .exceptions import MBusConnectionError

BAUDRATE = 2400
PARITY_NONE = "N"  # Wakeup
PARITY_EVEN = "E"  # Frame exchange

DEFAULT_INACTIVITY_TIMEOUT = 1.0  # Seconds of line silence that end a read
DEFAULT_TRANSMISSION_MULTIPLIER = 1.2


class ByteTransport(Protocol):
    """What Transaction needs from a connection."""

    async def write(self, data: bytes) -> int: ...

    async def read(self, max_bytes: int, timeout: float = DEFAULT_INACTIVITY_TIMEOUT) -> bytes: ...


class MBusTransport:
    """Serial connection to the optical head with switchable parity.

    Example:
        Wake the meter, then talk M-Bus on the same port::

            transport = MBusTransport("/dev/ttyUSB0", parity=PARITY_NONE)
            await transport.open()
            await transport.write(b"\\x55" * 25)
            transport.set_parity(PARITY_EVEN)
            response = await transport.read(64)
    """

    url: str
    transmission_multiplier: float
    serial_kwargs: dict[str, Any]

    _reader: asyncio.StreamReader | None
    _writer: asyncio.StreamWriter | None
    _connected: bool

    def __init__(
        self,
        url: str,
        baudrate: int = BAUDRATE,
        parity: str = PARITY_EVEN,
        transmission_multiplier: float = DEFAULT_TRANSMISSION_MULTIPLIER,
        **kwargs: Any,
    ) -> None:
        """Store the port settings; nothing is opened yet.

        Args:
            url: Device path or pyserial URL of the optical head
            baudrate: Line speed in baud
            parity: 'N' for the wakeup, 'E' for frames
            transmission_multiplier: Slack applied to the character time
            **kwargs: Passed on to pyserial (bytesize, stopbits, rtscts, ...)
        """
        self.url = url
        self.transmission_multiplier = transmission_multiplier
        self.serial_kwargs = {"bytesize": 8, "stopbits": 1, **kwargs, "baudrate": baudrate, "parity": parity}

        self._reader = None
        self._writer = None
        self._connected = False

    @property
    def character_time(self) -> float:
        """Seconds one character occupies on the line with the current settings."""
        bits = 1 + int(self.serial_kwargs["bytesize"]) + float(self.serial_kwargs["stopbits"])
        if self.serial_kwargs["parity"] != PARITY_NONE:
            bits += 1

        return bits / int(self.serial_kwargs["baudrate"])

    def _wait_timeout(self, timeout: float) -> float:
        """Bound for a single wait: inactivity timeout plus one character with slack."""
        return timeout + self.character_time * self.transmission_multiplier

    def is_connected(self) -> bool:
        return self._connected

    def _disconnected(self, message: str, err: Exception) -> MBusConnectionError:
        self._connected = False
        return MBusConnectionError(f"{message}: {err}")

    async def open(self) -> None:
        """Open the port (no-op if already open).

        Raises:
            MBusConnectionError: If the port cannot be opened
        """
        if self._connected:
            return

        try:
            self._reader, self._writer = await serial_asyncio_fast.open_serial_connection(
                url=self.url, **self.serial_kwargs
            )
        except Exception as e:
            raise self._disconnected(f"Failed to open connection to {self.url}", e) from e

        self._connected = True

    async def close(self) -> None:
        """Close the port; safe to call when already closed."""
        if not self._connected:
            return

        writer = self._writer
        self._reader = None
        self._writer = None
        self._connected = False

        if writer is None:
            return

        try:
            writer.close()
            await writer.wait_closed()
        except Exception:
            pass  # Port already gone

    def set_parity(self, parity: str) -> None:
        """Switch parity; applied to the open port at once, otherwise on open().

        Raises:
            MBusConnectionError: If the open port rejects the setting
        """
        self.serial_kwargs["parity"] = parity

        if not self._connected or self._writer is None:
            return

        try:
            self._writer.transport.serial.parity = parity  # type: ignore[attr-defined]
        except Exception as e:
            raise self._disconnected(f"Failed to set parity {parity!r}", e) from e

    async def write(self, data: bytes) -> int:
        """Send data and wait until it is handed to the port.

        Returns:
            Number of bytes written

        Raises:
            MBusConnectionError: If not connected or the write fails
        """
        if not self._connected or self._writer is None:
            raise MBusConnectionError("Transport is not connected")

        try:
            self._writer.write(data)
            await self._writer.drain()
        except Exception as e:
            raise self._disconnected("Failed to write data", e) from e

        return len(data)

    async def read(self, max_bytes: int, timeout: float = DEFAULT_INACTIVITY_TIMEOUT) -> bytes:
        """Collect up to max_bytes until the line has been idle for timeout.

        The optical head forwards the response in arbitrary chunks and the
        frame length is unknown in advance, so reading ends at the first gap
        longer than timeout (plus one character time), at end of stream, or
        when max_bytes have arrived.

        Returns:
            Whatever arrived, possibly b""; validation is up to the caller

        Raises:
            MBusConnectionError: If not connected or the port fails
        """
        if not self._connected or self._reader is None:
            raise MBusConnectionError("Transport is not connected")

        received = bytearray()

        while len(received) < max_bytes:
            try:
                chunk = await asyncio.wait_for(
                    self._reader.read(max_bytes - len(received)),
                    timeout=self._wait_timeout(timeout),
                )
            except TimeoutError:
                break
            except Exception as e:
                raise self._disconnected("Failed to read data", e) from e

            if not chunk:
                break

            received.extend(chunk)

        return bytes(received)

    async def __aenter__(self) -> MBusTransport:
        await self.open()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()
