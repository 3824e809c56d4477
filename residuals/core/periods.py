"""Processing periods: one calendar month of residuals data."""
from __future__ import annotations

import re
from calendar import month_name
from dataclasses import dataclass
from datetime import date

_PERIOD_PATTERN = re.compile(r"^(\d{4})-(\d{2})$")


@dataclass(frozen=True, slots=True, order=True)
class PeriodKey:
    """Year and month of a residuals cycle, ordered chronologically."""

    year: int
    month: int

    def __post_init__(self) -> None:
        if not 1 <= self.month <= 12:
            raise ValueError(f"month must be between 1 and 12, got {self.month}")
        if not 1 <= self.year <= 9999:
            raise ValueError(f"year out of range: {self.year}")

    @classmethod
    def parse(cls, value: str) -> "PeriodKey":
        """Parse the ``YYYY-MM`` form used by every upstream endpoint."""

        match = _PERIOD_PATTERN.fullmatch(str(value).strip())
        if match is None:
            raise ValueError(f"period must look like YYYY-MM, got {value!r}")
        return cls(int(match.group(1)), int(match.group(2)))

    @classmethod
    def from_date(cls, value: date) -> "PeriodKey":
        return cls(value.year, value.month)

    @classmethod
    def current(cls, today: date | None = None) -> "PeriodKey":
        return cls.from_date(today or date.today())

    def shift(self, months: int) -> "PeriodKey":
        index = self.year * 12 + (self.month - 1) + months
        return PeriodKey(index // 12, index % 12 + 1)

    @property
    def label(self) -> str:
        return f"{month_name[self.month]} {self.year}"

    def __str__(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"


def selectable_periods(
    today: date | None = None,
    *,
    trailing: int = 12,
    upcoming: int = 6,
) -> list[PeriodKey]:
    """Return the periods offered for selection, oldest first.

    The range covers ``trailing`` months before the current one, the current
    month itself and ``upcoming`` months after it.
    """

    if trailing < 0 or upcoming < 0:
        raise ValueError("trailing and upcoming must not be negative")
    anchor = PeriodKey.current(today)
    return [anchor.shift(offset) for offset in range(-trailing, upcoming + 1)]


__all__ = ["PeriodKey", "selectable_periods"]
