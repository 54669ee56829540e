"""VIF (Value Information Field) handling for the meter's record subset.

The record walker only needs the extension bit (a VIFE follows) and the
VIF byte itself, which data.py compares against the two codes that select
the compact date and compact date-time decoders. Every other VIF is read
as a counter or kept raw, depending on the data field code.

Reference: EN 13757-3:2018, Table 10
"""

from __future__ import annotations

from dataclasses import dataclass

# ============================================================================
# VIF Constants
# ============================================================================


VIF_EXTENSION_BIT_MASK = 0b10000000  # Bit 7: extension bit (VIFE follows)

VIF_DATE = 0x6C  # E110 1100: Date (type G)
VIF_DATE_TIME = 0x6D  # E110 1101: Date and time (type F)


@dataclass(frozen=True)
class VIF:
    """Value Information Field (primary byte).

    Attributes:
        field_code: The VIF byte value including the extension bit
    """

    field_code: int

    def __post_init__(self) -> None:
        if not 0 <= self.field_code <= 0xFF:
            raise ValueError(f"VIF must be a single byte, got {self.field_code}")

    @property
    def has_extension(self) -> bool:
        """True if a VIFE byte follows."""
        return self.field_code & VIF_EXTENSION_BIT_MASK != 0
