"""Common types and utilities shared across protocol components.

This module contains fundamental types used throughout the protocol layer:
the communication direction, the 2-byte date packing used by the meter's
settings blob and monthly readings, and the structured field event helper.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from enum import Flag, auto
from typing import Any


class CommunicationDirection(Flag):
    """Represents the actual direction of communication.

    Only two directions exist:
    - MASTER_TO_SLAVE: Data flows from master (e.g., commands, requests)
    - SLAVE_TO_MASTER: Data flows from slave (e.g., responses, data)
    """

    MASTER_TO_SLAVE = auto()
    SLAVE_TO_MASTER = auto()


# =============================================================================
# Packed date (settings blob and monthly readings)
# =============================================================================

PACKED_DATE_LENGTH = 2

PACKED_DATE_DAY_MASK = 0b0000000000011111  # Bits 0-4
PACKED_DATE_MONTH_MASK = 0b0000000111100000  # Bits 5-8
PACKED_DATE_MONTH_SHIFT = 5
PACKED_DATE_YEAR_MASK = 0b1111111000000000  # Bits 9-15
PACKED_DATE_YEAR_SHIFT = 9

PACKED_DATE_BASE_YEAR = 2000


@dataclass(frozen=True, kw_only=True)
class PackedDate:
    """Date stored in 16 bits as (year - 2000) << 9 | month << 5 | day.

    Components are kept as raw numbers so that every bit pattern survives a
    decode/encode cycle, even ones that are not a real calendar date.
    """

    year: int
    month: int
    day: int

    def to_date(self) -> date:
        """Convert to Python date.

        Raises:
            ValueError: If the components do not form a valid calendar date
        """
        return date(self.year, self.month, self.day)

    def __str__(self) -> str:
        return f"{self.year:04d}-{self.month:02d}-{self.day:02d}"


def unpack_date(data: bytes) -> PackedDate:
    """Decode a 2-byte little-endian packed date.

    Args:
        data: At least 2 bytes; only the first two are used

    Returns:
        PackedDate with day = bits 0-4, month = bits 5-8, year = 2000 + bits 9-15

    Raises:
        ValueError: If fewer than 2 bytes are given
    """
    if len(data) < PACKED_DATE_LENGTH:
        raise ValueError(f"Invalid data length for packed date: {len(data)} bytes (expected 2)")

    value = int.from_bytes(data[:PACKED_DATE_LENGTH], byteorder="little")

    return PackedDate(
        year=PACKED_DATE_BASE_YEAR + ((value & PACKED_DATE_YEAR_MASK) >> PACKED_DATE_YEAR_SHIFT),
        month=(value & PACKED_DATE_MONTH_MASK) >> PACKED_DATE_MONTH_SHIFT,
        day=value & PACKED_DATE_DAY_MASK,
    )


def pack_date(value: PackedDate) -> bytes:
    """Encode a PackedDate into its 2-byte little-endian form.

    Raises:
        ValueError: If a component does not fit its bit field
    """
    year_offset = value.year - PACKED_DATE_BASE_YEAR

    if not 0 <= year_offset <= PACKED_DATE_YEAR_MASK >> PACKED_DATE_YEAR_SHIFT:
        raise ValueError(f"Year out of range for packed date: {value.year}")

    if not 0 <= value.month <= PACKED_DATE_MONTH_MASK >> PACKED_DATE_MONTH_SHIFT:
        raise ValueError(f"Month out of range for packed date: {value.month}")

    if not 0 <= value.day <= PACKED_DATE_DAY_MASK:
        raise ValueError(f"Day out of range for packed date: {value.day}")

    packed = (
        (year_offset << PACKED_DATE_YEAR_SHIFT) | (value.month << PACKED_DATE_MONTH_SHIFT) | value.day
    )

    return packed.to_bytes(PACKED_DATE_LENGTH, byteorder="little")


# =============================================================================
# Structured field events
# =============================================================================


def log_field(logger: logging.Logger, field: str, raw: bytes, value: Any) -> None:
    """Emit one DEBUG event for a decoded field.

    The record carries field, raw and value as attributes (via extra) so
    handlers can consume them without parsing the message.
    """
    if not logger.isEnabledFor(logging.DEBUG):
        return

    logger.debug(
        "%s: %s (raw %s)",
        field,
        value,
        raw.hex(" "),
        extra={"field": field, "raw": raw, "value": value},
    )
