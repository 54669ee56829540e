"""Telemetry record walker.

Walks the variable data records of a validated RSP_UD long frame:

    DIF [DIFE] VIF [VIFE] <data>

Only one DIFE and one VIFE are taken into account; the meters never send
more. The walk is a plain generator over the frame bytes, so it can be
restarted at any time by calling walk_records() again.

Stop conditions:
    - a data field code above 0x07 (e.g. 0x0F manufacturer specific data)
    - the next record position exceeds the frame's length byte
    - a record whose header or data would extend past the data area
      (4 + L, i.e. up to the checksum byte); such a record is not yielded

Reference: EN 13757-3:2018, Chapter 6
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from dataclasses import dataclass

from ..exceptions import MBusProtocolError
from .dif import DIF, DIFE, storage_number
from .data import decode_value
from .frame import FRAME_LONG_HEADER_LENGTH, FRAME_LONG_PREFIX_LENGTH, RSP_UD_HEADER_LENGTH
from .value import Value
from .vif import VIF

_LOGGER = logging.getLogger(__name__)

RECORDS_OFFSET = FRAME_LONG_HEADER_LENGTH + RSP_UD_HEADER_LENGTH  # First DIF in frame coordinates


@dataclass(frozen=True, kw_only=True)
class TelemetryRecord:
    """One decoded data record.

    Attributes:
        data_field_code: DIF bits 0-3
        has_dife: DIF extension bit
        has_vife: VIF extension bit
        dif: DIF byte
        dife: DIFE byte, None if absent
        vif: VIF byte
        vife: VIFE byte, None if absent
        storage_number: DIF bit 6 combined with DIFE bits 0-3
        raw: Record data bytes
        value: Interpreted value
    """

    data_field_code: int
    has_dife: bool
    has_vife: bool
    dif: int
    dife: int | None
    vif: int
    vife: int | None
    storage_number: int
    raw: bytes
    value: Value

    def __str__(self) -> str:
        dife = "   " if self.dife is None else f"-{self.dife:02x}"
        vife = "   " if self.vife is None else f"-{self.vife:02x}"

        return (
            f"DIF: {self.dif:02x}{dife} VIF: {self.vif:02x}{vife} SN: {self.storage_number} "
            f"RAW: {self.raw.hex(' ')} VAL: {self.value}"
        )


def walk_records(frame: bytes, start: int = RECORDS_OFFSET) -> Iterator[TelemetryRecord]:
    """Yield the telemetry records of a validated long frame in wire order.

    Args:
        frame: Complete long frame bytes (starting at the 0x68 start byte)
        start: Offset of the first DIF in frame coordinates

    Yields:
        TelemetryRecord for every fully contained record

    Raises:
        MBusProtocolError: If frame is not long enough to carry a length byte
    """
    if len(frame) < FRAME_LONG_PREFIX_LENGTH:
        raise MBusProtocolError(f"Frame too small for record walk: {len(frame)} bytes")

    declared_length = frame[1]
    data_end = min(FRAME_LONG_PREFIX_LENGTH + declared_length, len(frame))

    position = start
    index = 0

    while position < data_end:
        dif = DIF(frame[position])

        data_length = dif.data_length
        if data_length is None:
            _LOGGER.debug("Record walk stopped at unsupported DIF 0x%02x (offset %d)", dif.field_code, position)
            break

        cursor = position + 1

        dife = None
        if dif.has_extension:
            if cursor >= data_end:
                break
            dife = DIFE(frame[cursor])
            cursor += 1

        if cursor >= data_end:
            break
        vif = VIF(frame[cursor])
        cursor += 1

        vife = None
        if vif.has_extension:
            if cursor >= data_end:
                break
            vife = frame[cursor]
            cursor += 1

        if cursor + data_length > data_end:
            _LOGGER.debug("Record %d truncated at offset %d", index, position)
            break

        raw = bytes(frame[cursor : cursor + data_length])

        record = TelemetryRecord(
            data_field_code=dif.data_field_code,
            has_dife=dife is not None,
            has_vife=vife is not None,
            dif=dif.field_code,
            dife=None if dife is None else dife.field_code,
            vif=vif.field_code,
            vife=vife,
            storage_number=storage_number(dif, dife),
            raw=raw,
            value=decode_value(dif.data_field_code, vif.field_code, raw),
        )

        _LOGGER.debug(
            "Record %02d: %s",
            index,
            record,
            extra={"field": "MBUS_RECORD", "raw": raw, "value": record.value},
        )

        yield record

        index += 1
        position = cursor + data_length

        if position > declared_length:
            break
