"""Device settings blob (radio and schedule configuration).

The meter reports and accepts its configuration as a fixed 20-byte block:

    Offset  Size  Field
    0       1     flags (SettingsFlag)
    1       1     OMS mode (OMSMode)
    2       1     frame type (FrameType)
    3       2     transmit interval in seconds (LE)
    5       2     months mask, bit 0 = January (LE)
    7       4     week-of-month mask, bit n = day n+1 (LE)
    11      1     days-of-week mask, bit 0 = Monday
    12      3     hours mask, bit n = hour n (LE)
    15      2     radio start date (packed date, see common.unpack_date)
    17      2     radio start volume in liters (LE)
    19      1     operating years

Decoding keeps every bit: unknown OMS modes and frame types stay plain ints
and the flag types keep bits without a named member, so encoding a decoded
blob reproduces the input exactly.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import IntEnum, IntFlag

from ..exceptions import MBusProtocolError
from .common import PackedDate, log_field, pack_date, unpack_date

_LOGGER = logging.getLogger(__name__)

SETTINGS_LENGTH = 20

# =============================================================================
# Field Types
# =============================================================================


class SettingsFlag(IntFlag):
    RADIO_AVAILABLE = 1 << 0  # Radio can be turned on
    RADIO_ON = 1 << 1  # Radio is on
    AES = 1 << 2  # AES encryption enabled
    START_ON_VOLUME = 1 << 3  # Enable radio after on_volume_liters were used
    START_ON_DATE = 1 << 4  # Enable radio after on_date


class OMSMode(IntEnum):
    T1_OMS3_ENC5 = 1
    C1_OMS3_ENC5 = 3
    T1_OMS4_ENC7 = 17
    C1_OMS4_ENC7 = 19


class FrameType(IntEnum):
    SHORT = 17
    LONG = 18


class Month(IntFlag):
    JANUARY = 1 << 0
    FEBRUARY = 1 << 1
    MARCH = 1 << 2
    APRIL = 1 << 3
    MAY = 1 << 4
    JUNE = 1 << 5
    JULY = 1 << 6
    AUGUST = 1 << 7
    SEPTEMBER = 1 << 8
    OCTOBER = 1 << 9
    NOVEMBER = 1 << 10
    DECEMBER = 1 << 11


class Weekday(IntFlag):
    MONDAY = 1 << 0
    TUESDAY = 1 << 1
    WEDNESDAY = 1 << 2
    THURSDAY = 1 << 3
    FRIDAY = 1 << 4
    SATURDAY = 1 << 5
    SUNDAY = 1 << 6


ALL_MONTHS = Month((1 << 12) - 1)
ALL_WEEKDAYS = Weekday((1 << 7) - 1)

WEEK_OF_MONTH_1 = 0b00000000000000000000000011111111  # Days 1-8
WEEK_OF_MONTH_2 = 0b00000000000000000111111100000000  # Days 9-15
WEEK_OF_MONTH_3 = 0b00000000011111111000000000000000  # Days 16-23
WEEK_OF_MONTH_4 = 0b01111111100000000000000000000000  # Days 24-31

_WEEK_OF_MONTH_GROUPS = (WEEK_OF_MONTH_1, WEEK_OF_MONTH_2, WEEK_OF_MONTH_3, WEEK_OF_MONTH_4)

ALL_WEEKS_OF_MONTH = WEEK_OF_MONTH_1 | WEEK_OF_MONTH_2 | WEEK_OF_MONTH_3 | WEEK_OF_MONTH_4
ALL_HOURS = (1 << 24) - 1


def week_of_month_mask(*groups: int) -> int:
    """Combine week-of-month groups (1-4) into a mask.

    Example:
        >>> hex(week_of_month_mask(1, 2))
        '0x7fff'
    """
    mask = 0
    for group in groups:
        if not 1 <= group <= len(_WEEK_OF_MONTH_GROUPS):
            raise ValueError(f"Week of month group must be 1-4, got {group}")
        mask |= _WEEK_OF_MONTH_GROUPS[group - 1]

    return mask


def hours_mask(*hours: int) -> int:
    """Combine hours of the day (0-23) into a mask."""
    mask = 0
    for hour in hours:
        if not 0 <= hour <= 23:
            raise ValueError(f"Hour must be 0-23, got {hour}")
        mask |= 1 << hour

    return mask


# =============================================================================
# Settings Blob
# =============================================================================


@dataclass(frozen=True, kw_only=True)
class SettingsBlob:
    """Decoded device settings.

    Attributes:
        flags: Radio and encryption flags
        oms_mode: OMS mode, int if the code is not known
        frame_type: Radio frame type, int if the code is not known
        interval_seconds: Radio transmit interval
        months_mask: Months with radio transmission
        weeks_of_month_mask: Days of month with radio transmission (31 bits)
        days_of_week_mask: Days of week with radio transmission
        hours_mask: Hours with radio transmission (24 bits)
        on_date: Radio start date, used with SettingsFlag.START_ON_DATE
        on_volume_liters: Radio start volume, used with SettingsFlag.START_ON_VOLUME
        operating_years: Configured operating lifetime
    """

    flags: SettingsFlag
    oms_mode: OMSMode | int
    frame_type: FrameType | int
    interval_seconds: int
    months_mask: Month
    weeks_of_month_mask: int
    days_of_week_mask: Weekday
    hours_mask: int
    on_date: PackedDate
    on_volume_liters: int
    operating_years: int

    @property
    def is_start_date_active(self) -> bool:
        return SettingsFlag.START_ON_DATE in self.flags

    @property
    def is_start_volume_active(self) -> bool:
        return SettingsFlag.START_ON_VOLUME in self.flags


DEFAULT_SETTINGS = SettingsBlob(
    flags=SettingsFlag.RADIO_AVAILABLE | SettingsFlag.RADIO_ON | SettingsFlag.AES,
    oms_mode=OMSMode.C1_OMS3_ENC5,
    frame_type=FrameType.LONG,
    interval_seconds=7 * 60,
    months_mask=ALL_MONTHS,
    weeks_of_month_mask=ALL_WEEKS_OF_MONTH,
    days_of_week_mask=ALL_WEEKDAYS,
    hours_mask=ALL_HOURS,
    on_date=PackedDate(year=2024, month=1, day=1),
    on_volume_liters=1000,
    operating_years=10,
)


# =============================================================================
# Codec
# =============================================================================


def _enum_or_int(enum_type: type[IntEnum], code: int) -> IntEnum | int:
    try:
        return enum_type(code)
    except ValueError:
        return code


def _uint(data: bytes, offset: int, length: int) -> int:
    return int.from_bytes(data[offset : offset + length], byteorder="little")


def _to_bytes(name: str, value: int, length: int) -> bytes:
    try:
        return int(value).to_bytes(length, byteorder="little")
    except OverflowError as err:
        raise ValueError(f"{name} does not fit in {length} byte(s): {value}") from err


def decode_settings(data: bytes) -> SettingsBlob:
    """Decode the 20-byte settings blob.

    Args:
        data: Settings bytes; only the first 20 are used

    Raises:
        MBusProtocolError: If fewer than 20 bytes are given
    """
    if len(data) < SETTINGS_LENGTH:
        raise MBusProtocolError(f"Settings block too small: {len(data)} bytes (expected {SETTINGS_LENGTH})")

    settings = SettingsBlob(
        flags=SettingsFlag(data[0]),
        oms_mode=_enum_or_int(OMSMode, data[1]),
        frame_type=_enum_or_int(FrameType, data[2]),
        interval_seconds=_uint(data, 3, 2),
        months_mask=Month(_uint(data, 5, 2)),
        weeks_of_month_mask=_uint(data, 7, 4),
        days_of_week_mask=Weekday(data[11]),
        hours_mask=_uint(data, 12, 3),
        on_date=unpack_date(data[15:17]),
        on_volume_liters=_uint(data, 17, 2),
        operating_years=data[19],
    )

    log_field(_LOGGER, "EM_FLAGS", data[0:1], f"0x{data[0]:02x}")
    log_field(_LOGGER, "EM_OMSMODE", data[1:2], int(settings.oms_mode))
    log_field(_LOGGER, "EM_FRAMETYPE", data[2:3], int(settings.frame_type))
    log_field(_LOGGER, "EM_INTERVAL", data[3:5], settings.interval_seconds)
    log_field(_LOGGER, "EM_MONTHS", data[5:7], int(settings.months_mask))
    log_field(_LOGGER, "EM_WEEKOMS", data[7:11], settings.weeks_of_month_mask)
    log_field(_LOGGER, "EM_DAYOWS", data[11:12], int(settings.days_of_week_mask))
    log_field(_LOGGER, "EM_HOURS", data[12:15], settings.hours_mask)
    log_field(_LOGGER, "EM_ONDAY", data[15:17], str(settings.on_date))
    log_field(_LOGGER, "EM_ONVOL", data[17:19], settings.on_volume_liters)
    log_field(_LOGGER, "EM_OPYEARS", data[19:20], settings.operating_years)

    return settings


def encode_settings(settings: SettingsBlob) -> bytes:
    """Encode a settings blob into its 20-byte wire form.

    Raises:
        ValueError: If a field does not fit its width
    """
    return b"".join(
        (
            _to_bytes("flags", settings.flags, 1),
            _to_bytes("oms_mode", settings.oms_mode, 1),
            _to_bytes("frame_type", settings.frame_type, 1),
            _to_bytes("interval_seconds", settings.interval_seconds, 2),
            _to_bytes("months_mask", settings.months_mask, 2),
            _to_bytes("weeks_of_month_mask", settings.weeks_of_month_mask, 4),
            _to_bytes("days_of_week_mask", settings.days_of_week_mask, 1),
            _to_bytes("hours_mask", settings.hours_mask, 3),
            pack_date(settings.on_date),
            _to_bytes("on_volume_liters", settings.on_volume_liters, 2),
            _to_bytes("operating_years", settings.operating_years, 1),
        )
    )
