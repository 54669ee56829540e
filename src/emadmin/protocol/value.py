"""Decoded record values.

Value classes carry the interpreted content of a telemetry record together
with a validity flag:
- IntegerValue: unsigned counters (int subclass)
- TemporalValue: compact dates and date-times
- RawValue: record data that is not interpreted (bytes subclass)

Reference: EN 13757-3:2018, Annex A
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import date, datetime


class Value(ABC):
    """Base of all record values; is_valid is False for out-of-range content."""

    is_valid: bool

    @abstractmethod
    def __init__(self, is_valid: bool) -> None:
        self.is_valid = is_valid


class IntegerValue(int, Value):
    """Unsigned counter; compares and calculates like a plain int."""

    def __new__(cls, is_valid: bool, numeric_value: int = 0) -> IntegerValue:
        return super().__new__(cls, numeric_value)

    def __init__(self, is_valid: bool, numeric_value: int = 0) -> None:
        Value.__init__(self, is_valid)  # int takes no __init__ arguments


class RawValue(bytes, Value):
    """Uninterpreted record data, printed as spaced hex."""

    def __new__(cls, is_valid: bool, raw_value: bytes = b"") -> RawValue:
        return super().__new__(cls, raw_value)

    def __init__(self, is_valid: bool, raw_value: bytes = b"") -> None:
        Value.__init__(self, is_valid)

    def __str__(self) -> str:
        return self.hex(" ")


class TemporalValue(Value):
    """Compact date (2 bytes) or date-time (4 bytes) value.

    Components are stored as decoded from the wire; is_valid is False when
    they do not form a real calendar date/time (e.g. month 0 on a meter that
    was never set).

    Examples:
        >>> str(TemporalValue(True, year=2025, month=3, day=15, hour=14, minute=30))
        '2025-03-15 14:30'
        >>> str(TemporalValue(True, year=2025, month=3, day=15))
        '2025-03-15'
    """

    year: int
    month: int
    day: int
    hour: int | None
    minute: int | None

    def __init__(
        self,
        is_valid: bool,
        year: int,
        month: int,
        day: int,
        hour: int | None = None,
        minute: int | None = None,
    ) -> None:
        super().__init__(is_valid)

        self.year = year
        self.month = month
        self.day = day
        self.hour = hour
        self.minute = minute

    @property
    def has_time(self) -> bool:
        """True for date-time values."""
        return self.hour is not None and self.minute is not None

    def to_date(self) -> date:
        """Convert to Python date.

        Raises:
            ValueError: If the value is invalid
        """
        if not self.is_valid:
            raise ValueError("Cannot convert invalid temporal value")

        return date(self.year, self.month, self.day)

    def to_datetime(self) -> datetime:
        """Convert to Python datetime (naive, meter local standard time).

        Raises:
            ValueError: If the value is invalid or has no time part
        """
        if not self.is_valid:
            raise ValueError("Cannot convert invalid temporal value")

        if self.hour is None or self.minute is None:
            raise ValueError("Cannot convert: missing time components")

        return datetime(self.year, self.month, self.day, self.hour, self.minute)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TemporalValue):
            return NotImplemented

        return (self.is_valid, self.year, self.month, self.day, self.hour, self.minute) == (
            other.is_valid,
            other.year,
            other.month,
            other.day,
            other.hour,
            other.minute,
        )

    def __hash__(self) -> int:
        return hash((self.is_valid, self.year, self.month, self.day, self.hour, self.minute))

    def __str__(self) -> str:
        text = f"{self.year:04d}-{self.month:02d}-{self.day:02d}"

        if self.has_time:
            text += f" {self.hour:02d}:{self.minute:02d}"

        return text

    def __repr__(self) -> str:
        """Developer representation showing all fields."""
        return (
            f"TemporalValue(year={self.year}, month={self.month}, day={self.day}, "
            f"hour={self.hour}, minute={self.minute}, is_valid={self.is_valid})"
        )
