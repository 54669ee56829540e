"""Half-duplex request/response handling on the optical link.

A transaction writes one validated frame and collects the reply until the
line goes idle. The meter only listens after a wakeup burst:

    1. wakeup(): 20 x 25 bytes of 0x55 at 8N1
    2. caller waits WAKEUP_SETTLE_TIME and switches the port to 8E1
    3. execute*(): one request, one response, no retries

Response interpretation is split by expectation:
    - execute_acked(): reply must be the single character ACK (0xE5)
    - execute_data(): reply must be a valid long frame of a minimum size
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum, auto

from .exceptions import MBusConnectionError, MBusProtocolError, MBusTimeoutError
from .protocol.common import CommunicationDirection
from .protocol.frame import (
    CI_RSP_UD,
    FRAME_ACK,
    FRAME_LONG_START,
    FRAME_SHORT_LENGTH,
    FRAME_SHORT_START,
    LongFrame,
    parse_long_frame,
    validate_long_frame,
    validate_short_frame,
)
from .transport import ByteTransport

_LOGGER = logging.getLogger(__name__)

# =============================================================================
# Timing and Size Constants
# =============================================================================

WAKEUP_CHARACTER = 0x55  # Alternating bit pattern
WAKEUP_BURST_SIZE = 25  # Bytes per write
WAKEUP_BURST_REPEAT = 20  # Number of writes
WAKEUP_SETTLE_TIME = 3.0  # Seconds between wakeup and first request

RESPONSE_TIMEOUT = 1.0  # Seconds of line silence that end a response

ACK_RESPONSE_SIZE = 8  # Read buffer for acknowledged commands


class TransactionState(Enum):
    IDLE = auto()
    AWAITING_RESPONSE = auto()


def validate_request(request: bytes) -> None:
    """Check that an outgoing frame is well-formed before it is sent.

    Raises:
        MBusProtocolError: If the request is neither a valid short nor long frame
    """
    if len(request) == FRAME_SHORT_LENGTH and request[0] == FRAME_SHORT_START:
        validate_short_frame(request)
        return

    if request and request[0] == FRAME_LONG_START:
        if validate_long_frame(request) != len(request):
            raise MBusProtocolError("Request carries bytes after the frame end")
        return

    raise MBusProtocolError(f"Request is not a valid frame ({len(request)} bytes)")


class Transaction:
    """Serialized request/response exchange over one byte transport.

    Only one exchange runs at a time; concurrent callers wait on a lock.
    A Transaction is created per session and borrows the transport only for
    that session; it never opens or closes it.
    """

    # Public attributes
    transport: ByteTransport
    response_timeout: float

    # Private attributes
    _lock: asyncio.Lock
    _state: TransactionState

    def __init__(self, transport: ByteTransport, response_timeout: float = RESPONSE_TIMEOUT) -> None:
        """Initialize transaction handler.

        Args:
            transport: Opened byte transport
            response_timeout: Inactivity timeout while collecting a response
        """
        self.transport = transport
        self.response_timeout = response_timeout

        self._lock = asyncio.Lock()
        self._state = TransactionState.IDLE

    @property
    def state(self) -> TransactionState:
        return self._state

    async def _write(self, data: bytes) -> None:
        written = await self.transport.write(data)

        _LOGGER.debug(
            "UART>%03d> %s",
            len(data),
            data.hex(" "),
            extra={"direction": CommunicationDirection.MASTER_TO_SLAVE, "raw": data},
        )

        if written != len(data):
            raise MBusConnectionError(f"Short write: {written} of {len(data)} bytes")

    async def wakeup(self) -> None:
        """Send the wakeup burst.

        The port must be set to 8N1; the settle delay and the switch to 8E1
        are left to the caller.

        Raises:
            MBusConnectionError: If a burst could not be written completely
        """
        burst = bytes((WAKEUP_CHARACTER,)) * WAKEUP_BURST_SIZE

        _LOGGER.info("Sending wakeup bytes")

        async with self._lock:
            for _ in range(WAKEUP_BURST_REPEAT):
                await self._write(burst)

    async def execute(self, request: bytes, max_response_bytes: int) -> bytes:
        """Send one frame and collect the raw response.

        Args:
            request: Complete outgoing frame
            max_response_bytes: Upper bound on the response size

        Returns:
            The received bytes (at least one)

        Raises:
            MBusProtocolError: If the request is malformed (nothing is sent)
            MBusConnectionError: If the request could not be written
            MBusTimeoutError: If no byte arrived before the inactivity timeout
        """
        validate_request(request)

        async with self._lock:
            await self._write(request)

            self._state = TransactionState.AWAITING_RESPONSE
            try:
                response = await self.transport.read(max_response_bytes, timeout=self.response_timeout)
            finally:
                self._state = TransactionState.IDLE

        if not response:
            _LOGGER.debug("UART< (read timeout)")
            raise MBusTimeoutError("No response from meter")

        _LOGGER.debug(
            "UART<%03d< %s",
            len(response),
            response.hex(" "),
            extra={"direction": CommunicationDirection.SLAVE_TO_MASTER, "raw": response},
        )

        return response

    async def execute_acked(self, request: bytes) -> None:
        """Send one frame that the meter must acknowledge.

        Raises:
            MBusProtocolError: If the response is anything but a single ACK
            MBusTransportError: On write failure or timeout
        """
        response = await self.execute(request, ACK_RESPONSE_SIZE)

        if response != bytes((FRAME_ACK,)):
            raise MBusProtocolError(f"Received {len(response)} unprocessable bytes (expected ACK)")

    async def execute_data(self, request: bytes, min_length: int, max_response_bytes: int) -> LongFrame:
        """Send one frame that the meter must answer with a long frame.

        Args:
            request: Complete outgoing frame
            min_length: Minimum frame size (L + 6) the response must have
            max_response_bytes: Upper bound on the response size

        Returns:
            The decoded response frame

        Raises:
            MBusProtocolError: If the response is invalid, too small, or not RSP_UD
            MBusTransportError: On write failure or timeout
        """
        response = await self.execute(request, max_response_bytes)

        frame_length = validate_long_frame(response)

        if frame_length < min_length:
            raise MBusProtocolError(
                f"Received {len(response)} unprocessable bytes (frame of {frame_length}, expected {min_length})"
            )

        frame = parse_long_frame(response)

        if frame.control_information != CI_RSP_UD:
            raise MBusProtocolError(f"Unexpected CI field 0x{frame.control_information:02x} (expected RSP_UD)")

        return frame
