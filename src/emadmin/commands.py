"""Meter administration commands.

Each command pairs request builders with a response interpreter and is
registered in COMMANDS. All requests are SND_UD (C=0x53) long frames with
CI=0x51 sent to the broadcast address 0xFE, except read_info which polls
with a REQ_UD2 short frame:

    get_params    0F 04 00 00 60                      -> settings (long frame >= 45)
    set_params    0F 81 00 00 60 00*4 <20 bytes> 00*4 -> ACK
    set_time      04 ED 00 <compact date-time>        -> ACK
    set_keyday    02 EC 00 <day|E0> <month|F0>        -> ACK
    set_aes       0F 83 00 00 60 00*4 <key reversed>  -> never sent, unverified
    read_info     REQ_UD2 short frame                 -> records (long frame >= 71)
    read_highres  0F 01 00 00 60                      -> volume in ml (long frame >= 25)
    read_months   0F 02 00 00 60, 0F 03 00 00 60      -> 2 x 15 readings (long frame >= 111)

The 0F xx 00 00 60 requests are manufacturer specific; 0F is the DIF for
manufacturer data and xx selects the function.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any

from .exceptions import MBusProtocolError, MBusUnverifiedCommandError
from .protocol.common import PACKED_DATE_LENGTH, PackedDate, log_field, unpack_date
from .protocol.data import encode_compact_date_time
from .protocol.frame import (
    ADDRESS_BROADCAST_REPLY,
    C_REQ_UD2,
    C_SND_UD,
    CI_DATA_SEND,
    RSP_UD_HEADER_LENGTH,
    LongFrame,
    RspUdHeader,
    build_long_frame,
    build_short_frame,
    decode_rsp_header,
)
from .protocol.record import TelemetryRecord, walk_records
from .protocol.settings import DEFAULT_SETTINGS, SETTINGS_LENGTH, SettingsBlob, decode_settings, encode_settings
from .transaction import Transaction

_LOGGER = logging.getLogger(__name__)

# =============================================================================
# Request Constants
# =============================================================================

DIF_MANUFACTURER_DATA = 0x0F  # Manufacturer specific data follows

FUNCTION_READ_HIGHRES = 0x01
FUNCTION_READ_END_OF_MONTH = 0x02
FUNCTION_READ_MIDDLE_OF_MONTH = 0x03
FUNCTION_GET_PARAMS = 0x04
FUNCTION_SET_PARAMS = 0x81
FUNCTION_SET_AES_KEY = 0x83

FUNCTION_SUFFIX = bytes((0x00, 0x00, 0x60))  # Unknown, constant
RESERVED_BLOCK = bytes(4)  # Unknown, sent as zeros

DIF_SET_TIME = 0x04  # 32 bit integer
VIF_SET_TIME = 0xED  # Date and time, VIFE follows
VIFE_SET_TIME = 0x00

DIF_SET_KEYDAY = 0x02  # 16 bit integer
VIF_SET_KEYDAY = 0xEC  # Date, VIFE follows
VIFE_SET_KEYDAY = 0x00
KEYDAY_DAY_FILL = 0b11100000  # Year bits set to all ones (every year)
KEYDAY_MONTH_FILL = 0b11110000

AES_KEY_LENGTH = 16

# =============================================================================
# Response Constants
# =============================================================================

MIN_LENGTH_GET_PARAMS = 45
MIN_LENGTH_READ_INFO = 71
MIN_LENGTH_READ_HIGHRES = 25
MIN_LENGTH_READ_MONTHS = 111

MAX_BYTES_GET_PARAMS = 64
MAX_BYTES_READ_INFO = 256
MAX_BYTES_READ_HIGHRES = 64
MAX_BYTES_READ_MONTHS = 256

MONTHLY_READING_COUNT = 15
MONTHLY_READING_LENGTH = PACKED_DATE_LENGTH + 4  # Packed date + uint32 liters

HIGHRES_VALUE_LENGTH = 4


# =============================================================================
# Options
# =============================================================================


@dataclass(frozen=True, kw_only=True)
class KeyDay:
    """Yearly due date of the meter (day and month, repeated every year)."""

    day: int
    month: int

    def __post_init__(self) -> None:
        if not 1 <= self.day <= 31:
            raise ValueError(f"Key day must be 1-31, got {self.day}")

        if not 1 <= self.month <= 12:
            raise ValueError(f"Key month must be 1-12, got {self.month}")

    def __str__(self) -> str:
        return f"{self.day:02d}.{self.month:02d}."


DEFAULT_KEYDAY = KeyDay(day=3, month=10)


@dataclass(frozen=True, kw_only=True)
class CommandOptions:
    """Operator-chosen values used by the write commands.

    Attributes:
        settings: Blob sent by set_params
        device_time: Time sent by set_time, current standard time if None
        keyday: Due date sent by set_keyday
        aes_key: 16-byte key for set_aes
        address: Primary address of the meter
    """

    settings: SettingsBlob = DEFAULT_SETTINGS
    device_time: datetime | None = None
    keyday: KeyDay = DEFAULT_KEYDAY
    aes_key: bytes | None = None
    address: int = ADDRESS_BROADCAST_REPLY


def device_time(timestamp: float | None = None) -> datetime:
    """Return local standard time (the meter clock ignores DST).

    One hour is subtracted while daylight saving time is in effect.
    """
    if timestamp is None:
        timestamp = time.time()

    if time.localtime(timestamp).tm_isdst > 0:
        timestamp -= 60 * 60

    return datetime.fromtimestamp(timestamp).replace(second=0, microsecond=0)


# =============================================================================
# Request Builders
# =============================================================================


def _manufacturer_request(function: int, data: bytes = b"", address: int = ADDRESS_BROADCAST_REPLY) -> bytes:
    payload = bytes((DIF_MANUFACTURER_DATA, function)) + FUNCTION_SUFFIX + data

    return build_long_frame(C_SND_UD, address, CI_DATA_SEND, payload)


def build_get_params_request(address: int = ADDRESS_BROADCAST_REPLY) -> bytes:
    return _manufacturer_request(FUNCTION_GET_PARAMS, address=address)


def build_set_params_request(settings: SettingsBlob, address: int = ADDRESS_BROADCAST_REPLY) -> bytes:
    data = RESERVED_BLOCK + encode_settings(settings) + RESERVED_BLOCK

    return _manufacturer_request(FUNCTION_SET_PARAMS, data, address=address)


def build_set_time_request(value: datetime, address: int = ADDRESS_BROADCAST_REPLY) -> bytes:
    payload = bytes((DIF_SET_TIME, VIF_SET_TIME, VIFE_SET_TIME)) + encode_compact_date_time(value)

    return build_long_frame(C_SND_UD, address, CI_DATA_SEND, payload)


def build_set_keyday_request(keyday: KeyDay, address: int = ADDRESS_BROADCAST_REPLY) -> bytes:
    payload = bytes(
        (
            DIF_SET_KEYDAY,
            VIF_SET_KEYDAY,
            VIFE_SET_KEYDAY,
            keyday.day | KEYDAY_DAY_FILL,
            keyday.month | KEYDAY_MONTH_FILL,
        )
    )

    return build_long_frame(C_SND_UD, address, CI_DATA_SEND, payload)


def build_set_aes_request(key: bytes, address: int = ADDRESS_BROADCAST_REPLY) -> bytes:
    """Build the AES key frame (key is sent least significant byte first).

    This frame has never been confirmed against a meter; run_command refuses
    to send it.

    Raises:
        ValueError: If the key is not 16 bytes
    """
    if len(key) != AES_KEY_LENGTH:
        raise ValueError(f"AES key must be {AES_KEY_LENGTH} bytes, got {len(key)}")

    return _manufacturer_request(FUNCTION_SET_AES_KEY, RESERVED_BLOCK + bytes(reversed(key)), address=address)


def build_read_info_request(address: int = ADDRESS_BROADCAST_REPLY) -> bytes:
    return build_short_frame(C_REQ_UD2, address)


def build_read_highres_request(address: int = ADDRESS_BROADCAST_REPLY) -> bytes:
    return _manufacturer_request(FUNCTION_READ_HIGHRES, address=address)


def build_read_months_request(middle_of_month: bool = False, address: int = ADDRESS_BROADCAST_REPLY) -> bytes:
    function = FUNCTION_READ_MIDDLE_OF_MONTH if middle_of_month else FUNCTION_READ_END_OF_MONTH

    return _manufacturer_request(function, address=address)


# =============================================================================
# Results
# =============================================================================


@dataclass(frozen=True, kw_only=True)
class DeviceParameters:
    header: RspUdHeader
    settings: SettingsBlob


@dataclass(frozen=True, kw_only=True)
class MeterInfo:
    header: RspUdHeader
    records: tuple[TelemetryRecord, ...]


@dataclass(frozen=True, kw_only=True)
class HighResReading:
    header: RspUdHeader
    milliliters: int


@dataclass(frozen=True, kw_only=True)
class MonthlyReading:
    date: PackedDate
    liters: int


@dataclass(frozen=True, kw_only=True)
class MonthlyUsage:
    """Two passes of 15 readings each, newest first as reported by the meter."""

    end_of_month: tuple[MonthlyReading, ...]
    middle_of_month: tuple[MonthlyReading, ...]


# =============================================================================
# Response Interpreters
# =============================================================================


def decode_monthly_readings(payload: bytes) -> tuple[MonthlyReading, ...]:
    """Decode the 15 readings following the data header of a months response.

    Raises:
        MBusProtocolError: If the payload is too small
    """
    end = RSP_UD_HEADER_LENGTH + MONTHLY_READING_COUNT * MONTHLY_READING_LENGTH

    if len(payload) < end:
        raise MBusProtocolError(f"Monthly readings truncated: {len(payload)} bytes (expected {end})")

    readings = []
    for offset in range(RSP_UD_HEADER_LENGTH, end, MONTHLY_READING_LENGTH):
        entry = payload[offset : offset + MONTHLY_READING_LENGTH]

        reading = MonthlyReading(
            date=unpack_date(entry),
            liters=int.from_bytes(entry[PACKED_DATE_LENGTH:], byteorder="little"),
        )
        log_field(_LOGGER, f"EM_METER_READING_{reading.date}", entry, reading.liters)

        readings.append(reading)

    return tuple(readings)


def _interpret_get_params(frames: tuple[LongFrame, ...], options: CommandOptions) -> DeviceParameters:
    payload = frames[0].payload

    return DeviceParameters(
        header=decode_rsp_header(payload),
        settings=decode_settings(payload[RSP_UD_HEADER_LENGTH : RSP_UD_HEADER_LENGTH + SETTINGS_LENGTH]),
    )


def _interpret_read_info(frames: tuple[LongFrame, ...], options: CommandOptions) -> MeterInfo:
    frame = frames[0]

    return MeterInfo(header=decode_rsp_header(frame.payload), records=tuple(walk_records(frame.to_bytes())))


def _interpret_read_highres(frames: tuple[LongFrame, ...], options: CommandOptions) -> HighResReading:
    payload = frames[0].payload
    data = payload[RSP_UD_HEADER_LENGTH : RSP_UD_HEADER_LENGTH + HIGHRES_VALUE_LENGTH]

    if len(data) < HIGHRES_VALUE_LENGTH:
        raise MBusProtocolError(f"High resolution reading truncated: {len(payload)} bytes")

    milliliters = int.from_bytes(data, byteorder="little")
    log_field(_LOGGER, "EM_HIGHRES_READING", data, milliliters)

    return HighResReading(header=decode_rsp_header(payload), milliliters=milliliters)


def _interpret_read_months(frames: tuple[LongFrame, ...], options: CommandOptions) -> MonthlyUsage:
    for frame in frames:
        decode_rsp_header(frame.payload)

    return MonthlyUsage(
        end_of_month=decode_monthly_readings(frames[0].payload),
        middle_of_month=decode_monthly_readings(frames[1].payload),
    )


# =============================================================================
# Command Table
# =============================================================================


@dataclass(frozen=True, kw_only=True)
class Command:
    """Descriptor of one meter command.

    Attributes:
        name: Command name as used on the command line
        description: Progress message logged before the exchange
        build_requests: Returns the frames to send, in order
        interpret: Turns the response frames into the result; called with an
            empty tuple for acknowledged commands
        min_response_length: Minimum long frame size, None if an ACK is expected
        max_response_bytes: Read buffer size per request
        verified: False for commands never confirmed against a meter
    """

    name: str
    description: str
    build_requests: Callable[[CommandOptions], tuple[bytes, ...]]
    interpret: Callable[[tuple[LongFrame, ...], CommandOptions], Any]
    min_response_length: int | None = None
    max_response_bytes: int = 0
    verified: bool = True

    @property
    def expects_ack(self) -> bool:
        return self.min_response_length is None


def _require_aes_key(options: CommandOptions) -> bytes:
    if options.aes_key is None:
        raise ValueError("set_aes requires an AES key")

    return options.aes_key


COMMANDS: dict[str, Command] = {
    command.name: command
    for command in (
        Command(
            name="get_params",
            description="Getting device parameters",
            build_requests=lambda options: (build_get_params_request(options.address),),
            interpret=_interpret_get_params,
            min_response_length=MIN_LENGTH_GET_PARAMS,
            max_response_bytes=MAX_BYTES_GET_PARAMS,
        ),
        Command(
            name="set_params",
            description="Setting device parameters",
            build_requests=lambda options: (build_set_params_request(options.settings, options.address),),
            interpret=lambda frames, options: options.settings,
        ),
        Command(
            name="set_time",
            description="Setting device time",
            build_requests=lambda options: (build_set_time_request(options.device_time, options.address),),
            interpret=lambda frames, options: options.device_time,
        ),
        Command(
            name="set_keyday",
            description="Setting keydate",
            build_requests=lambda options: (build_set_keyday_request(options.keyday, options.address),),
            interpret=lambda frames, options: options.keyday,
        ),
        Command(
            name="set_aes",
            description="Setting AES key",
            build_requests=lambda options: (build_set_aes_request(_require_aes_key(options), options.address),),
            interpret=lambda frames, options: None,
            verified=False,
        ),
        Command(
            name="read_info",
            description="Reading info",
            build_requests=lambda options: (build_read_info_request(options.address),),
            interpret=_interpret_read_info,
            min_response_length=MIN_LENGTH_READ_INFO,
            max_response_bytes=MAX_BYTES_READ_INFO,
        ),
        Command(
            name="read_highres",
            description="Reading high resolution",
            build_requests=lambda options: (build_read_highres_request(options.address),),
            interpret=_interpret_read_highres,
            min_response_length=MIN_LENGTH_READ_HIGHRES,
            max_response_bytes=MAX_BYTES_READ_HIGHRES,
        ),
        Command(
            name="read_months",
            description="Reading monthly usage",
            build_requests=lambda options: (
                build_read_months_request(False, options.address),
                build_read_months_request(True, options.address),
            ),
            interpret=_interpret_read_months,
            min_response_length=MIN_LENGTH_READ_MONTHS,
            max_response_bytes=MAX_BYTES_READ_MONTHS,
        ),
    )
}

DEFAULT_COMMAND = "get_params"


async def run_command(transaction: Transaction, name: str, options: CommandOptions | None = None) -> Any:
    """Run one command to completion.

    Args:
        transaction: Transaction on a woken-up link
        name: Key of COMMANDS
        options: Values for the write commands (defaults if None)

    Returns:
        The command result: DeviceParameters, MeterInfo, HighResReading,
        MonthlyUsage, or for acknowledged commands the value that was written

    Raises:
        ValueError: If the command name is unknown
        MBusUnverifiedCommandError: For unverified commands (nothing is sent)
        MBusTransportError: On write failure or timeout
        MBusProtocolError: On an invalid or unexpected response
    """
    try:
        command = COMMANDS[name]
    except KeyError as err:
        raise ValueError(f"Unknown command: {name}") from err

    if not command.verified:
        raise MBusUnverifiedCommandError(f"Command {name} has not been verified on a meter and is not sent")

    if options is None:
        options = CommandOptions()

    if options.device_time is None:
        options = replace(options, device_time=device_time())

    requests = command.build_requests(options)

    _LOGGER.info(command.description)

    frames = []
    for request in requests:
        if command.min_response_length is None:
            await transaction.execute_acked(request)
        else:
            frames.append(
                await transaction.execute_data(request, command.min_response_length, command.max_response_bytes)
            )

    return command.interpret(tuple(frames), options)
