"""Data decoding for telemetry records.

Interpretation is selected by (data field code, VIF byte):

    (0x04, 0x6D)  compact date-time, 4 bytes
    (0x04, other) unsigned 32-bit little-endian counter
    (0x02, 0x6C)  compact date, 2 bytes
    anything else kept as raw bytes

The compact date-time here deliberately does not mask the minute and hour
bytes; the meters send them plain. The compact date packing (year split over
both bytes, month in the low nibble of the second byte) is not the packing
used by the settings blob, see common.unpack_date.

Reference: EN 13757-3:2018, Annex A (types C, F, G)
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import date, datetime

from .value import IntegerValue, RawValue, TemporalValue, Value
from .vif import VIF_DATE, VIF_DATE_TIME

DATA_FIELD_COUNTER_32 = 0x04  # 32 bit integer
DATA_FIELD_INTEGER_16 = 0x02  # 16 bit integer

COMPACT_YEAR_BASE = 2000

# =============================================================================
# Numeric Data Type Decoders
# =============================================================================


def _decode_counter_32(data: bytes) -> IntegerValue:
    """Decode Type C: Unsigned 32-bit binary integer, little-endian.

    Unlike the generic M-Bus rule, all-ones is not treated as an invalid
    marker; the meters use the full counter range.

    Raises:
        ValueError: If data is not 4 bytes
    """
    if len(data) != 4:
        raise ValueError(f"Invalid data length for counter: {len(data)} bytes (expected 4)")

    return IntegerValue(True, int.from_bytes(data, byteorder="little"))


# =============================================================================
# Date/Time Data Type Decoders
# =============================================================================


def _compact_year(low_byte: int, high_byte: int) -> int:
    # Bits 5-7 of the low byte and 4-7 of the high byte
    return COMPACT_YEAR_BASE + ((low_byte >> 5) | ((high_byte & 0b11110000) >> 1))


def _is_valid_date(year: int, month: int, day: int) -> bool:
    try:
        date(year, month, day)
    except ValueError:
        return False
    return True


def _decode_compact_date(data: bytes) -> TemporalValue:
    """Decode Type G: Date (2 bytes).

    day = byte0 bits 0-4, month = byte1 bits 0-3,
    year = 2000 + (byte0 bits 5-7 | byte1 bits 4-7 << 3)

    Raises:
        ValueError: If data is not 2 bytes
    """
    if len(data) != 2:
        raise ValueError(f"Invalid data length for date: {len(data)} bytes (expected 2)")

    day = data[0] & 0b00011111
    month = data[1] & 0b00001111
    year = _compact_year(data[0], data[1])

    return TemporalValue(_is_valid_date(year, month, day), year=year, month=month, day=day)


def _decode_compact_date_time(data: bytes) -> TemporalValue:
    """Decode Type F: Date and time (4 bytes).

    minute = byte0, hour = byte1, day = byte2 bits 0-4, month = byte3 bits 0-3,
    year = 2000 + (byte2 bits 5-7 | byte3 bits 4-7 << 3)

    Raises:
        ValueError: If data is not 4 bytes
    """
    if len(data) != 4:
        raise ValueError(f"Invalid data length for datetime: {len(data)} bytes (expected 4)")

    minute = data[0]
    hour = data[1]
    day = data[2] & 0b00011111
    month = data[3] & 0b00001111
    year = _compact_year(data[2], data[3])

    is_valid = _is_valid_date(year, month, day) and hour <= 23 and minute <= 59

    return TemporalValue(is_valid, year=year, month=month, day=day, hour=hour, minute=minute)


# =============================================================================
# Encoders (requests to the meter)
# =============================================================================


def encode_compact_date_time(value: datetime) -> bytes:
    """Encode minute, hour, day+year low bits, month+year high bits.

    Raises:
        ValueError: If the year is outside 2000-2127
    """
    year = value.year - COMPACT_YEAR_BASE

    if not 0 <= year <= 0b1111111:
        raise ValueError(f"Year out of range for compact date-time: {value.year}")

    return bytes(
        (
            value.minute,
            value.hour,
            ((year & 0b00000111) << 5) | value.day,
            ((year & 0b01111000) << 1) | value.month,
        )
    )


# =============================================================================
# Dispatch
# =============================================================================


def _select_decoder(data_field_code: int, vif: int) -> Callable[[bytes], Value] | None:
    if data_field_code == DATA_FIELD_COUNTER_32:
        return _decode_compact_date_time if vif == VIF_DATE_TIME else _decode_counter_32

    if data_field_code == DATA_FIELD_INTEGER_16 and vif == VIF_DATE:
        return _decode_compact_date

    return None


def decode_value(data_field_code: int, vif: int, data: bytes) -> Value:
    """Interpret record data by its data field code and VIF byte.

    Args:
        data_field_code: DIF bits 0-3
        vif: Full VIF byte (extension bit included)
        data: Record data bytes

    Returns:
        TemporalValue, IntegerValue, or RawValue for shapes without a decoder
    """
    decoder = _select_decoder(data_field_code, vif)

    if decoder is None:
        return RawValue(True, data)

    return decoder(data)
