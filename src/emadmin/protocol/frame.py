"""M-Bus link layer frames: build, validate and parse.

This module implements the three frame shapes used on the optical link:

Classes:
    - Ack: Single character acknowledge (0xE5)
    - ShortFrame: START C A CHK STOP
    - LongFrame: START L L START C A CI <payload> CHK STOP
    - RspUdHeader: Fixed data header following CI=0x72 in a meter response

Frame layouts:
    Short frame: 0x10 C A CHK 0x16, CHK = (C + A) mod 256
    Long frame:  0x68 L L 0x68 C A CI <payload> CHK 0x16
                 L = 3 + len(payload), CHK = (C + A + CI + sum(payload)) mod 256

Validation never trusts the buffer size alone: a long frame is bounded by its
own (redundant) length byte, and any bytes after the stop byte are ignored.

Reference: EN 13757-2 (link layer), EN 1434-3 (RSP_UD fixed header)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from ..exceptions import MBusProtocolError
from .common import log_field

_LOGGER = logging.getLogger(__name__)

# =============================================================================
# Frame Constants
# =============================================================================

FRAME_ACK = 0xE5  # Single character acknowledge
FRAME_SHORT_START = 0x10  # Start byte of a short frame
FRAME_LONG_START = 0x68  # Start byte (twice) of a long frame
FRAME_STOP = 0x16  # Stop byte of short and long frames

C_SND_UD = 0x53  # Send user data to slave
C_REQ_UD2 = 0x7B  # Request class 2 user data (FCB set)

CI_DATA_SEND = 0x51  # Data send (master to slave)
CI_RSP_UD = 0x72  # Variable data response with long header

ADDRESS_BROADCAST_REPLY = 0xFE  # Broadcast, all slaves reply (point-to-point optical link)

FRAME_SHORT_HEADER_LENGTH = 1 + 1 + 1  # START C A
FRAME_LONG_HEADER_LENGTH = 4 + 1 + 1 + 1  # START L L START C A CI
FRAME_FOOTER_LENGTH = 1 + 1  # CHK STOP

FRAME_SHORT_LENGTH = FRAME_SHORT_HEADER_LENGTH + FRAME_FOOTER_LENGTH
FRAME_LONG_MINIMUM_LENGTH = FRAME_LONG_HEADER_LENGTH + FRAME_FOOTER_LENGTH

FRAME_LONG_FIELDS_LENGTH = 3  # C A CI, counted in L
FRAME_LONG_PREFIX_LENGTH = 4  # START L L START, not counted in L
FRAME_LONG_MAXIMUM_PAYLOAD = 0xFF - FRAME_LONG_FIELDS_LENGTH

RSP_UD_HEADER_LENGTH = 4 + 2 + 1 + 1 + 1 + 1 + 2  # ADDR MAN VER MED ACC STAT SIG

MANUFACTURER_LETTER_OFFSET = 64  # 1 -> 'A'
MANUFACTURER_LETTER_MASK = 0b11111
MANUFACTURER_LETTER_BITS = 5


# =============================================================================
# Frame Classes
# =============================================================================


def _checksum(data: bytes) -> int:
    return sum(data) & 0xFF


def _check_byte(name: str, value: int) -> None:
    if not 0 <= value <= 0xFF:
        raise ValueError(f"{name} must fit in one byte, got {value}")


@dataclass(frozen=True)
class Ack:
    """Single character acknowledge."""

    def to_bytes(self) -> bytes:
        return bytes((FRAME_ACK,))


@dataclass(frozen=True, kw_only=True)
class ShortFrame:
    """Short frame: START C A CHK STOP."""

    control: int
    address: int

    def __post_init__(self) -> None:
        _check_byte("control", self.control)
        _check_byte("address", self.address)

    @property
    def checksum(self) -> int:
        return _checksum(bytes((self.control, self.address)))

    def to_bytes(self) -> bytes:
        return bytes((FRAME_SHORT_START, self.control, self.address, self.checksum, FRAME_STOP))


@dataclass(frozen=True, kw_only=True)
class LongFrame:
    """Long frame: START L L START C A CI <payload> CHK STOP.

    Attributes:
        control: C field
        address: A field (primary address)
        control_information: CI field
        payload: User data following the CI field
    """

    control: int
    address: int
    control_information: int
    payload: bytes = b""

    def __post_init__(self) -> None:
        _check_byte("control", self.control)
        _check_byte("address", self.address)
        _check_byte("control_information", self.control_information)

        if len(self.payload) > FRAME_LONG_MAXIMUM_PAYLOAD:
            raise ValueError(
                f"Long frame payload too large: {len(self.payload)} bytes (maximum {FRAME_LONG_MAXIMUM_PAYLOAD})"
            )

    @property
    def length(self) -> int:
        """L field: C + A + CI + payload."""
        return FRAME_LONG_FIELDS_LENGTH + len(self.payload)

    @property
    def checksum(self) -> int:
        return _checksum(bytes((self.control, self.address, self.control_information)) + self.payload)

    def to_bytes(self) -> bytes:
        return (
            bytes(
                (
                    FRAME_LONG_START,
                    self.length,
                    self.length,
                    FRAME_LONG_START,
                    self.control,
                    self.address,
                    self.control_information,
                )
            )
            + self.payload
            + bytes((self.checksum, FRAME_STOP))
        )


Frame = Ack | ShortFrame | LongFrame


# =============================================================================
# Building
# =============================================================================


def build_short_frame(control: int, address: int) -> bytes:
    """Build a short frame.

    Args:
        control: C field
        address: A field

    Returns:
        5 frame bytes
    """
    return ShortFrame(control=control, address=address).to_bytes()


def build_long_frame(control: int, address: int, control_information: int, payload: bytes) -> bytes:
    """Build a long frame.

    Args:
        control: C field
        address: A field
        control_information: CI field
        payload: User data (at most 252 bytes)

    Returns:
        Frame bytes (len(payload) + 9)
    """
    return LongFrame(
        control=control,
        address=address,
        control_information=control_information,
        payload=bytes(payload),
    ).to_bytes()


# =============================================================================
# Validation
# =============================================================================


def validate_short_frame(data: bytes) -> int:
    """Validate a short frame at the start of data.

    Args:
        data: Received or built bytes

    Returns:
        Number of bytes belonging to the frame (always 5)

    Raises:
        MBusProtocolError: If too short, start/stop byte wrong or checksum mismatch
    """
    if len(data) < FRAME_SHORT_LENGTH:
        raise MBusProtocolError(f"Short frame too small: {len(data)} bytes")

    if data[0] != FRAME_SHORT_START:
        raise MBusProtocolError(f"Short frame has invalid start byte 0x{data[0]:02X}")

    if data[FRAME_SHORT_LENGTH - 1] != FRAME_STOP:
        raise MBusProtocolError(f"Short frame has invalid stop byte 0x{data[FRAME_SHORT_LENGTH - 1]:02X}")

    if _checksum(data[1:FRAME_SHORT_HEADER_LENGTH]) != data[FRAME_SHORT_HEADER_LENGTH]:
        raise MBusProtocolError("Short frame has invalid checksum")

    return FRAME_SHORT_LENGTH


def validate_long_frame(data: bytes) -> int:
    """Validate a long frame at the start of data.

    Args:
        data: Received or built bytes, may carry trailing garbage

    Returns:
        Number of bytes belonging to the frame (L + 6)

    Raises:
        MBusProtocolError: If any structural check fails
    """
    if len(data) < FRAME_LONG_MINIMUM_LENGTH:
        raise MBusProtocolError(f"Long frame too small: {len(data)} bytes")

    if data[0] != FRAME_LONG_START or data[3] != FRAME_LONG_START:
        raise MBusProtocolError("Long frame has invalid start header")

    if data[1] != data[2]:
        raise MBusProtocolError(f"Long frame has mismatching length bytes {data[1]} and {data[2]}")

    frame_length = data[1] + FRAME_LONG_PREFIX_LENGTH + FRAME_FOOTER_LENGTH

    if frame_length > len(data):
        raise MBusProtocolError(f"Long frame length {frame_length} exceeds buffer size {len(data)}")

    if data[frame_length - 1] != FRAME_STOP:
        raise MBusProtocolError(f"Long frame has invalid stop byte 0x{data[frame_length - 1]:02X}")

    checksum_position = frame_length - FRAME_FOOTER_LENGTH
    if _checksum(data[FRAME_LONG_PREFIX_LENGTH:checksum_position]) != data[checksum_position]:
        raise MBusProtocolError("Long frame has invalid checksum")

    return frame_length


def parse_short_frame(data: bytes) -> ShortFrame:
    """Validate and decode a short frame."""
    validate_short_frame(data)

    return ShortFrame(control=data[1], address=data[2])


def parse_long_frame(data: bytes) -> LongFrame:
    """Validate and decode a long frame, ignoring bytes after its stop byte."""
    frame_length = validate_long_frame(data)

    frame = LongFrame(
        control=data[4],
        address=data[5],
        control_information=data[6],
        payload=bytes(data[FRAME_LONG_HEADER_LENGTH : frame_length - FRAME_FOOTER_LENGTH]),
    )

    log_field(_LOGGER, "MBUS_C", data[4:5], f"0x{frame.control:02x}")
    log_field(_LOGGER, "MBUS_ADR", data[5:6], frame.address)
    log_field(_LOGGER, "MBUS_CI", data[6:7], f"0x{frame.control_information:02x}")

    return frame


def parse_frame(data: bytes) -> Frame:
    """Decode any frame kind by its first byte.

    Raises:
        MBusProtocolError: If the data is empty, not a known frame or invalid
    """
    if not data:
        raise MBusProtocolError("Empty frame")

    if data[0] == FRAME_ACK and len(data) == 1:
        return Ack()

    if data[0] == FRAME_SHORT_START:
        return parse_short_frame(data)

    if data[0] == FRAME_LONG_START:
        return parse_long_frame(data)

    raise MBusProtocolError(f"Unknown frame start byte 0x{data[0]:02X} ({len(data)} bytes)")


# =============================================================================
# RSP_UD fixed header
# =============================================================================


def decode_manufacturer(code: int) -> str:
    """Unpack a 16-bit manufacturer code into its 3-letter tag.

    Each letter is a 5-bit group rendered as chr(64 + group), most significant
    group first. Example: 0x12FA -> "DWZ".
    """
    letters = []
    for shift in (2 * MANUFACTURER_LETTER_BITS, MANUFACTURER_LETTER_BITS, 0):
        letters.append(chr(MANUFACTURER_LETTER_OFFSET + ((code >> shift) & MANUFACTURER_LETTER_MASK)))

    return "".join(letters)


@dataclass(frozen=True, kw_only=True)
class RspUdHeader:
    """Fixed data header of a variable data response (CI=0x72).

    Attributes:
        secondary_address: Identification number (raw little-endian uint32)
        manufacturer_code: Raw 16-bit manufacturer field
        manufacturer: 3-letter manufacturer tag
        version: Device version/generation
        medium: Device type (0x07 = water)
        access_counter: Access number, incremented per response
        status: Status byte
        signature: Signature field (0x0000 when unencrypted)
    """

    secondary_address: int
    manufacturer_code: int
    manufacturer: str
    version: int
    medium: int
    access_counter: int
    status: int
    signature: int


def decode_rsp_header(payload: bytes) -> RspUdHeader:
    """Decode the 12-byte fixed header at the start of a response payload.

    Args:
        payload: Long frame payload (the bytes following CI)

    Raises:
        MBusProtocolError: If the payload is shorter than the header
    """
    if len(payload) < RSP_UD_HEADER_LENGTH:
        raise MBusProtocolError(f"Response payload too small for data header: {len(payload)} bytes")

    manufacturer_code = int.from_bytes(payload[4:6], byteorder="little")

    header = RspUdHeader(
        secondary_address=int.from_bytes(payload[0:4], byteorder="little"),
        manufacturer_code=manufacturer_code,
        manufacturer=decode_manufacturer(manufacturer_code),
        version=payload[6],
        medium=payload[7],
        access_counter=payload[8],
        status=payload[9],
        signature=int.from_bytes(payload[10:12], byteorder="little"),
    )

    log_field(_LOGGER, "MBUS_SECADR", payload[0:4], f"0x{header.secondary_address:08x}")
    log_field(_LOGGER, "MBUS_MANUFACTURER", payload[4:6], header.manufacturer)
    log_field(_LOGGER, "MBUS_VERSION", payload[6:7], header.version)
    log_field(_LOGGER, "MBUS_MEDIUM", payload[7:8], f"0x{header.medium:02x}")
    log_field(_LOGGER, "MBUS_ACCESSCOUNT", payload[8:9], header.access_counter)
    log_field(_LOGGER, "MBUS_STATE", payload[9:10], f"0x{header.status:02x}")
    log_field(_LOGGER, "MBUS_SIGNATURE", payload[10:12], f"0x{header.signature:04X}")

    return header
