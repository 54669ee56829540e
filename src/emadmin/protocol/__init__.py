"""Protocol layer components for the optical M-Bus link.

This package contains frame handling, telemetry record decoding and the
settings blob codec.

Reference: EN 13757-2, EN 13757-3:2018
"""

from .common import CommunicationDirection, PackedDate, pack_date, unpack_date
from .dif import DIF, DIFE
from .frame import (
    Ack,
    LongFrame,
    RspUdHeader,
    ShortFrame,
    build_long_frame,
    build_short_frame,
    decode_manufacturer,
    decode_rsp_header,
    parse_frame,
    validate_long_frame,
    validate_short_frame,
)
from .record import RECORDS_OFFSET, TelemetryRecord, walk_records
from .settings import (
    DEFAULT_SETTINGS,
    FrameType,
    Month,
    OMSMode,
    SettingsBlob,
    SettingsFlag,
    Weekday,
    decode_settings,
    encode_settings,
)
from .value import IntegerValue, RawValue, TemporalValue, Value
from .vif import VIF

__all__ = [
    # Common types
    "CommunicationDirection",
    "PackedDate",
    "pack_date",
    "unpack_date",
    # Frames
    "Ack",
    "LongFrame",
    "ShortFrame",
    "RspUdHeader",
    "build_long_frame",
    "build_short_frame",
    "decode_manufacturer",
    "decode_rsp_header",
    "parse_frame",
    "validate_long_frame",
    "validate_short_frame",
    # Records
    "DIF",
    "DIFE",
    "VIF",
    "RECORDS_OFFSET",
    "TelemetryRecord",
    "walk_records",
    "Value",
    "IntegerValue",
    "RawValue",
    "TemporalValue",
    # Settings
    "DEFAULT_SETTINGS",
    "FrameType",
    "Month",
    "OMSMode",
    "SettingsBlob",
    "SettingsFlag",
    "Weekday",
    "decode_settings",
    "encode_settings",
]
