"""Unit tests for the Transaction class."""

from __future__ import annotations

import asyncio
import logging

import pytest

from conftest import RSP_UD_HEADER, SAMPLE_SETTINGS, ScriptedTransport, make_long_frame
from emadmin.exceptions import MBusConnectionError, MBusProtocolError, MBusTimeoutError
from emadmin.protocol.common import CommunicationDirection
from emadmin.transaction import (
    ACK_RESPONSE_SIZE,
    RESPONSE_TIMEOUT,
    Transaction,
    TransactionState,
    validate_request,
)

# =============================================================================
# Test Constants - Duplicated from src for test isolation
# =============================================================================

TEST_REQ_UD2_FRAME = bytes([0x10, 0x7B, 0xFE, 0x79, 0x16])
TEST_GET_PARAMS_FRAME = bytes([0x68, 0x08, 0x08, 0x68, 0x53, 0xFE, 0x51, 0x0F, 0x04, 0x00, 0x00, 0x60, 0x15, 0x16])


@pytest.mark.unit
class TestValidateRequest:
    """Test outgoing frame checks."""

    def test_valid_short_and_long(self) -> None:
        validate_request(TEST_REQ_UD2_FRAME)
        validate_request(TEST_GET_PARAMS_FRAME)

    def test_bad_checksum(self) -> None:
        corrupted = bytearray(TEST_GET_PARAMS_FRAME)
        corrupted[-2] = 0x00

        with pytest.raises(MBusProtocolError):
            validate_request(bytes(corrupted))

    def test_trailing_bytes(self) -> None:
        with pytest.raises(MBusProtocolError):
            validate_request(TEST_GET_PARAMS_FRAME + b"\x00")

    def test_not_a_frame(self) -> None:
        with pytest.raises(MBusProtocolError):
            validate_request(b"\xe5")


@pytest.mark.unit
class TestWakeup:
    """Test the wakeup burst."""

    @pytest.mark.asyncio
    async def test_wakeup_burst(self) -> None:
        transport = ScriptedTransport()

        await Transaction(transport).wakeup()

        assert transport.written == [b"\x55" * 25] * 20
        assert transport.read_sizes == []

    @pytest.mark.asyncio
    async def test_wakeup_short_write(self) -> None:
        transport = ScriptedTransport(write_limit=10)

        with pytest.raises(MBusConnectionError):
            await Transaction(transport).wakeup()

        assert len(transport.written) == 1


@pytest.mark.unit
class TestExecute:
    """Test the raw request/response exchange."""

    @pytest.mark.asyncio
    async def test_execute_returns_response(self) -> None:
        transport = ScriptedTransport([b"\xe5"])
        transaction = Transaction(transport)

        response = await transaction.execute(TEST_REQ_UD2_FRAME, 256)

        assert response == b"\xe5"
        assert transport.written == [TEST_REQ_UD2_FRAME]
        assert transport.read_sizes == [256]
        assert transport.read_timeouts == [RESPONSE_TIMEOUT]
        assert transaction.state is TransactionState.IDLE

    @pytest.mark.asyncio
    async def test_malformed_request_not_sent(self) -> None:
        transport = ScriptedTransport([b"\xe5"])

        with pytest.raises(MBusProtocolError):
            await Transaction(transport).execute(TEST_GET_PARAMS_FRAME[:-1], 8)

        assert transport.written == []

    @pytest.mark.asyncio
    async def test_short_write(self) -> None:
        transport = ScriptedTransport([b"\xe5"], write_limit=4)

        with pytest.raises(MBusConnectionError):
            await Transaction(transport).execute(TEST_GET_PARAMS_FRAME, 8)

        assert transport.read_sizes == []

    @pytest.mark.asyncio
    async def test_timeout(self) -> None:
        transaction = Transaction(ScriptedTransport())

        with pytest.raises(MBusTimeoutError):
            await transaction.execute(TEST_GET_PARAMS_FRAME, 64)

        assert transaction.state is TransactionState.IDLE

    @pytest.mark.asyncio
    async def test_custom_response_timeout(self) -> None:
        transport = ScriptedTransport([b"\xe5"])

        await Transaction(transport, response_timeout=0.25).execute(TEST_REQ_UD2_FRAME, 8)

        assert transport.read_timeouts == [0.25]

    @pytest.mark.asyncio
    async def test_frames_logged_with_direction(self, caplog: pytest.LogCaptureFixture) -> None:
        transport = ScriptedTransport([b"\xe5"])

        with caplog.at_level(logging.DEBUG, logger="emadmin.transaction"):
            await Transaction(transport).execute(TEST_REQ_UD2_FRAME, 8)

        directions = [record.direction for record in caplog.records if hasattr(record, "direction")]
        assert directions == [CommunicationDirection.MASTER_TO_SLAVE, CommunicationDirection.SLAVE_TO_MASTER]

    @pytest.mark.asyncio
    async def test_exchanges_do_not_interleave(self) -> None:
        """Test concurrent callers are serialized by the lock."""
        events: list[str] = []

        class SlowTransport(ScriptedTransport):
            async def write(self, data: bytes) -> int:
                events.append("write")
                return await super().write(data)

            async def read(self, max_bytes: int, timeout: float = 1.0) -> bytes:
                events.append("read")
                await asyncio.sleep(0.01)
                return await super().read(max_bytes, timeout)

        transaction = Transaction(SlowTransport([b"\xe5", b"\xe5"]))

        await asyncio.gather(
            transaction.execute(TEST_REQ_UD2_FRAME, 8),
            transaction.execute(TEST_REQ_UD2_FRAME, 8),
        )

        assert events == ["write", "read", "write", "read"]


@pytest.mark.unit
class TestExecuteAcked:
    """Test acknowledged exchanges."""

    @pytest.mark.asyncio
    async def test_ack(self) -> None:
        transport = ScriptedTransport([b"\xe5"])

        await Transaction(transport).execute_acked(TEST_GET_PARAMS_FRAME)

        assert transport.read_sizes == [ACK_RESPONSE_SIZE]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("response", [b"\xe6", b"\xe5\xe5", b"\x00\xe5", TEST_REQ_UD2_FRAME])
    async def test_not_an_ack(self, response: bytes) -> None:
        with pytest.raises(MBusProtocolError):
            await Transaction(ScriptedTransport([response])).execute_acked(TEST_GET_PARAMS_FRAME)

    @pytest.mark.asyncio
    async def test_no_answer(self) -> None:
        with pytest.raises(MBusTimeoutError):
            await Transaction(ScriptedTransport()).execute_acked(TEST_GET_PARAMS_FRAME)


@pytest.mark.unit
class TestExecuteData:
    """Test exchanges answered by a long frame."""

    @pytest.mark.asyncio
    async def test_data_response(self, meter_frames: dict[str, bytes]) -> None:
        transport = ScriptedTransport([meter_frames["get_params"]])

        frame = await Transaction(transport).execute_data(TEST_GET_PARAMS_FRAME, 45, 64)

        assert frame.control_information == 0x72
        assert len(frame.payload) == 36
        assert transport.read_sizes == [64]

    @pytest.mark.asyncio
    async def test_response_below_minimum(self, meter_frames: dict[str, bytes]) -> None:
        transport = ScriptedTransport([meter_frames["get_params"]])

        with pytest.raises(MBusProtocolError, match="unprocessable"):
            await Transaction(transport).execute_data(TEST_GET_PARAMS_FRAME, 71, 256)

    @pytest.mark.asyncio
    async def test_ack_instead_of_data(self) -> None:
        with pytest.raises(MBusProtocolError):
            await Transaction(ScriptedTransport([b"\xe5"])).execute_data(TEST_GET_PARAMS_FRAME, 45, 64)

    @pytest.mark.asyncio
    async def test_corrupted_response(self, meter_frames: dict[str, bytes]) -> None:
        corrupted = bytearray(meter_frames["get_params"])
        corrupted[20] ^= 0xFF

        with pytest.raises(MBusProtocolError, match="checksum"):
            await Transaction(ScriptedTransport([bytes(corrupted)])).execute_data(TEST_GET_PARAMS_FRAME, 45, 64)

    @pytest.mark.asyncio
    async def test_response_not_rsp_ud(self) -> None:
        """Test a valid long frame with another CI field is refused before decoding."""
        response = make_long_frame(0x08, 0x00, 0x78, RSP_UD_HEADER + SAMPLE_SETTINGS + bytes(4))
        assert len(response) == 45

        with pytest.raises(MBusProtocolError, match="Unexpected CI field 0x78"):
            await Transaction(ScriptedTransport([response])).execute_data(TEST_GET_PARAMS_FRAME, 45, 64)
