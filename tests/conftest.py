"""Shared test fixtures for pyEMAdmin tests."""

from __future__ import annotations

import asyncio
import calendar
from collections.abc import AsyncGenerator, Iterable
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

# Fixed data header of the documented meter: secondary address 0x20C0FFEE,
# manufacturer DWZ, version 2, medium water, access number 3
RSP_UD_HEADER = bytes.fromhex("ee ff c0 20 fa 12 02 07 03 00 00 00")

# Settings blob from the documented get_params transcript
SAMPLE_SETTINGS = bytes.fromhex("07 03 12 a4 01 ff 0f ff ff ff 7f 7f ff ff ff 21 30 e8 03 0a")

# Telemetry records of a read_info response, followed by manufacturer data
INFO_RECORDS = bytes.fromhex(
    "04 6d 1e 0e 0f 33"  # 2024-03-15 14:30
    "04 13 39 30 00 00"  # Volume 12345
    "44 13 10 27 00 00"  # Volume 10000, storage 1
    "42 6c ff 2c"  # 2023-12-31, storage 1
    "84 01 13 f4 01 00 00"  # Volume 500, storage 2
    "02 fd 17 00 00"  # Error flags, raw
    "0f 00 01 02 03 04 05 06 07 08 09 0a 0b 0c 0d 0e"  # Manufacturer data
)

HIGHRES_MILLILITERS = 1234567


def make_long_frame(control: int, address: int, control_information: int, payload: bytes) -> bytes:
    """Assemble a long frame independently of the code under test."""
    body = bytes((control, address, control_information)) + payload
    return bytes((0x68, len(body), len(body), 0x68)) + body + bytes((sum(body) & 0xFF, 0x16))


def pack_date(year: int, month: int, day: int) -> bytes:
    return ((year - 2000) << 9 | month << 5 | day).to_bytes(2, "little")


def monthly_entries(day_of_month: int | None) -> list[tuple[int, int, int, int]]:
    """15 (year, month, day, liters) entries going back from December 2024."""
    entries = []
    year, month = 2024, 12
    for index in range(15):
        day = calendar.monthrange(year, month)[1] if day_of_month is None else day_of_month
        entries.append((year, month, day, 50000 - index * 1000))
        month -= 1
        if month == 0:
            year, month = year - 1, 12
    return entries


def months_payload(day_of_month: int | None) -> bytes:
    return RSP_UD_HEADER + b"".join(
        pack_date(year, month, day) + liters.to_bytes(4, "little")
        for year, month, day, liters in monthly_entries(day_of_month)
    )


PARAMS_RESPONSE = make_long_frame(0x08, 0x00, 0x72, RSP_UD_HEADER + SAMPLE_SETTINGS + bytes(4))
INFO_RESPONSE = make_long_frame(0x08, 0x00, 0x72, RSP_UD_HEADER + INFO_RECORDS)
HIGHRES_RESPONSE = make_long_frame(0x08, 0x00, 0x72, RSP_UD_HEADER + HIGHRES_MILLILITERS.to_bytes(4, "little"))
MONTHS_END_RESPONSE = make_long_frame(0x08, 0x00, 0x72, months_payload(None))
MONTHS_MIDDLE_RESPONSE = make_long_frame(0x08, 0x00, 0x72, months_payload(15))
ACK_RESPONSE = b"\xe5"


@pytest.fixture
def meter_frames() -> dict[str, bytes]:
    """Meter responses for every data command."""
    return {
        "ack": ACK_RESPONSE,
        "get_params": PARAMS_RESPONSE,
        "read_info": INFO_RESPONSE,
        "read_highres": HIGHRES_RESPONSE,
        "read_months_end": MONTHS_END_RESPONSE,
        "read_months_middle": MONTHS_MIDDLE_RESPONSE,
    }


@pytest.fixture
def mock_serial_connection() -> tuple[AsyncMock, AsyncMock]:
    """Create mock reader and writer for serial connections."""
    mock_reader = AsyncMock()
    mock_writer = AsyncMock()

    # Mock common methods
    mock_writer.write = MagicMock()
    mock_writer.drain = AsyncMock()
    mock_writer.close = MagicMock()
    mock_writer.wait_closed = AsyncMock()
    mock_writer.transport = MagicMock()

    mock_reader.read = AsyncMock()

    return mock_reader, mock_writer


@pytest.fixture
def mock_open_serial_connection(mock_serial_connection: tuple[AsyncMock, AsyncMock]) -> Any:
    """Mock serial_asyncio_fast.open_serial_connection."""
    mock_reader, mock_writer = mock_serial_connection

    async def mock_open(*_args: Any, **_kwargs: Any) -> tuple[AsyncMock, AsyncMock]:
        return mock_reader, mock_writer

    return mock_open


class ScriptedTransport:
    """Byte transport replaying canned responses, one per read()."""

    def __init__(self, responses: Iterable[bytes] = (), write_limit: int | None = None) -> None:
        self.responses = list(responses)
        self.write_limit = write_limit
        self.written: list[bytes] = []
        self.read_sizes: list[int] = []
        self.read_timeouts: list[float] = []

    async def write(self, data: bytes) -> int:
        self.written.append(bytes(data))
        if self.write_limit is not None:
            return min(len(data), self.write_limit)
        return len(data)

    async def read(self, max_bytes: int, timeout: float = 1.0) -> bytes:
        self.read_sizes.append(max_bytes)
        self.read_timeouts.append(timeout)
        if not self.responses:
            return b""
        return self.responses.pop(0)[:max_bytes]


@pytest.fixture
def scripted_transport() -> type[ScriptedTransport]:
    """Factory for scripted byte transports."""
    return ScriptedTransport


# Integration test fixtures


class FakeMeterServer:
    """TCP server behaving like a meter behind an optical head.

    Wakeup characters are skipped, complete frames are answered from the
    meter_frames table; anything unknown is left unanswered.
    """

    def __init__(self, host: str = "127.0.0.1", port: int = 0) -> None:
        self.host = host
        self.port = port
        self.server: asyncio.Server | None = None
        self.requests: list[bytes] = []
        self.wakeup_bytes = 0

    @property
    def url(self) -> str:
        return f"socket://{self.host}:{self.port}"

    async def start(self) -> None:
        """Start the mock server."""
        self.server = await asyncio.start_server(self._handle_client, self.host, self.port)
        if self.port == 0:
            self.port = self.server.sockets[0].getsockname()[1]

    async def stop(self) -> None:
        """Stop the mock server."""
        if self.server:
            self.server.close()
            await self.server.wait_closed()

    async def _handle_client(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        buffer = bytearray()
        try:
            while True:
                data = await reader.read(1024)
                if not data:
                    break

                buffer.extend(data)
                for request in self._take_frames(buffer):
                    self.requests.append(request)
                    for response in self._generate_responses(request):
                        writer.write(response)
                        await writer.drain()
        except ConnectionError:
            pass
        finally:
            writer.close()

    def _take_frames(self, buffer: bytearray) -> list[bytes]:
        frames = []
        while buffer:
            if buffer[0] == 0x55:
                del buffer[0]
                self.wakeup_bytes += 1
            elif buffer[0] == 0x10 and len(buffer) >= 5:
                frames.append(bytes(buffer[:5]))
                del buffer[:5]
            elif buffer[0] == 0x68 and len(buffer) >= 4 and len(buffer) >= buffer[1] + 6:
                length = buffer[1] + 6
                frames.append(bytes(buffer[:length]))
                del buffer[:length]
            elif buffer[0] in (0x10, 0x68):
                break  # Incomplete frame
            else:
                del buffer[0]
        return frames

    def _generate_responses(self, request: bytes) -> list[bytes]:
        if request[0] == 0x10 and request[1] == 0x7B:
            return [INFO_RESPONSE]

        function = request[7:9]
        if function == b"\x0f\x04":
            return [PARAMS_RESPONSE]
        if function == b"\x0f\x01":
            return [HIGHRES_RESPONSE]
        if function == b"\x0f\x02":
            return [MONTHS_END_RESPONSE]
        if function == b"\x0f\x03":
            return [MONTHS_MIDDLE_RESPONSE]
        if function in (b"\x0f\x81", b"\x04\xed", b"\x02\xec"):
            return [ACK_RESPONSE]
        return []


@pytest.fixture
async def fake_meter_server() -> AsyncGenerator[FakeMeterServer]:
    """Create a fake meter reachable through a socket:// URL."""
    server = FakeMeterServer()
    await server.start()
    yield server
    await server.stop()


# Test markers for different test types
def pytest_configure(config: Any) -> None:
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: mark test as a unit test (fast, uses mocks)")
    config.addinivalue_line("markers", "integration: mark test as an integration test (slower, uses real I/O)")
