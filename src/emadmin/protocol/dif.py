"""DIF (Data Information Field) interpretation for the meter's record subset.

The meters only report fixed-length integer fields, so this module covers
the narrow part of the DIF/DIFE system they use:

Classes:
    - DIF: Data Information Field (1 byte header)
    - DIFE: Data Information Field Extension (at most one is used here)

The DIF/DIFE structure:
    DIF (1 byte) + optional DIFE (1 byte)

    bit 7    extension bit (a DIFE follows)
    bit 6    storage number LSB
    bits 0-3 data field code (length of the data)

Data field codes above 0x07 (BCD, variable length, special functions such as
0x0F manufacturer data) are not supported and end a record walk.

Reference: EN 13757-3:2018
    - Table 4 (page 13): Data field encoding
    - Table 8 (page 14): DIFE encoding
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache

# =============================================================================
# DIF Constants (EN 13757-3:2018)
# =============================================================================


DIF_EXTENSION_BIT_MASK = 0b10000000  # Bit 7: extension bit (DIFE follows)
DIF_DATA_FIELD_BIT_MASK = 0b00001111  # Bits 0-3: data field code

DIF_STORAGE_NUMBER_BIT_MASK = 0b01000000  # Bit 6: LSB of storage number
DIF_STORAGE_NUMBER_BIT_SHIFT = 6  # Bit position shift for storage number
DIF_STORAGE_NUMBER_BIT_LENGTH = 1  # Number of bits for storage number in DIF

DIFE_STORAGE_NUMBER_BIT_MASK = 0b00001111  # Bits 0-3: additional storage number bits in DIFE
DIFE_STORAGE_NUMBER_BIT_SHIFT = 0  # Bit position shift for storage number

# =============================================================================
# DIF Descriptors
# =============================================================================


@dataclass(frozen=True, kw_only=True)
class _DataFieldDescriptor:
    code: int  # Data field code (DIF bits 0-3)
    length: int  # Number of data bytes
    description: str


# =============================================================================
# DIF Lookup Table (EN 13757-3:2018, Table 4, fixed length integers only)
# =============================================================================


_FieldTable: tuple[_DataFieldDescriptor, ...] = (
    _DataFieldDescriptor(code=0x00, length=0, description="No data"),
    _DataFieldDescriptor(code=0x01, length=1, description="8 bit integer"),
    _DataFieldDescriptor(code=0x02, length=2, description="16 bit integer"),
    _DataFieldDescriptor(code=0x03, length=3, description="24 bit integer"),
    _DataFieldDescriptor(code=0x04, length=4, description="32 bit integer"),
    _DataFieldDescriptor(code=0x05, length=4, description="32 bit real"),
    _DataFieldDescriptor(code=0x06, length=6, description="48 bit integer"),
    _DataFieldDescriptor(code=0x07, length=8, description="64 bit integer"),
)


@lru_cache(maxsize=16)
def _find_field_descriptor(data_field_code: int) -> _DataFieldDescriptor | None:
    """Find the descriptor for a data field code.

    Args:
        data_field_code: DIF bits 0-3

    Returns:
        The matching descriptor, or None if the code is not a supported fixed length
    """
    for field_descriptor in _FieldTable:
        if field_descriptor.code == data_field_code:
            return field_descriptor

    return None


# =============================================================================
# DIF/DIFE Classes
# =============================================================================


@dataclass(frozen=True)
class DIF:
    """Data Information Field.

    Attributes:
        field_code: The DIF byte value (0x00-0xFF)
    """

    field_code: int

    def __post_init__(self) -> None:
        if not 0 <= self.field_code <= 0xFF:
            raise ValueError(f"DIF must be a single byte, got {self.field_code}")

    @property
    def has_extension(self) -> bool:
        """True if a DIFE byte follows."""
        return self.field_code & DIF_EXTENSION_BIT_MASK != 0

    @property
    def data_field_code(self) -> int:
        return self.field_code & DIF_DATA_FIELD_BIT_MASK

    @property
    def data_length(self) -> int | None:
        """Number of data bytes, or None for unsupported data field codes."""
        field_descriptor = _find_field_descriptor(self.data_field_code)

        return None if field_descriptor is None else field_descriptor.length

    @property
    def storage_number(self) -> int:
        """Storage number LSB (0 or 1 from bit 6)."""
        return (self.field_code & DIF_STORAGE_NUMBER_BIT_MASK) >> DIF_STORAGE_NUMBER_BIT_SHIFT


@dataclass(frozen=True)
class DIFE:
    """Data Information Field Extension (first DIFE only).

    Attributes:
        field_code: The DIFE byte value (0x00-0xFF)
    """

    field_code: int

    def __post_init__(self) -> None:
        if not 0 <= self.field_code <= 0xFF:
            raise ValueError(f"DIFE must be a single byte, got {self.field_code}")

    @property
    def storage_number(self) -> int:
        """Contribution to the storage number, shifted past the DIF bit."""
        raw_bits = (self.field_code & DIFE_STORAGE_NUMBER_BIT_MASK) >> DIFE_STORAGE_NUMBER_BIT_SHIFT

        return raw_bits << DIF_STORAGE_NUMBER_BIT_LENGTH


def storage_number(dif: DIF, dife: DIFE | None = None) -> int:
    """Combine the storage number bits of a DIF and its optional DIFE."""
    if dife is None:
        return dif.storage_number

    return dif.storage_number | dife.storage_number
