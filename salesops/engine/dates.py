"""
Report Date Ranges

Inclusive UTC day ranges. All datetimes handled by the engine are naive
and expressed in UTC.
"""

import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import List, Optional


class InvalidDateRange(ValueError):
    """Raised when report date parameters are missing or inconsistent"""


def utc_now() -> datetime:
    """Current time as a naive UTC datetime"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


_DAY_PATTERN = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")


def parse_day(value: Optional[str]) -> Optional[date]:
    """Parse a strict YYYY-MM-DD string, returning None when unparseable"""
    if not value:
        return None
    match = _DAY_PATTERN.match(value.strip())
    if not match:
        return None
    try:
        return date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
    except ValueError:
        return None


def start_of_day(day: date) -> datetime:
    return datetime.combine(day, time.min)


def end_of_day(day: date) -> datetime:
    return datetime.combine(day, time.max)


def inclusive_days(first: date, last: date) -> int:
    """Number of calendar days in [first, last]; 0 when last precedes first"""
    return max(0, (last - first).days + 1)


@dataclass(frozen=True)
class DateRange:
    """
    Inclusive report window [gte, lte].

    gte is the first instant of the first day, lte the last instant of
    the last day.
    """
    gte: datetime
    lte: datetime

    @classmethod
    def from_days(cls, first: date, last: date) -> "DateRange":
        if first > last:
            raise InvalidDateRange(f"Range start {first} is after range end {last}")
        return cls(gte=start_of_day(first), lte=end_of_day(last))

    @classmethod
    def parse(cls, from_str: Optional[str], to_str: Optional[str]) -> "DateRange":
        """
        Build a range from request strings.

        Raises:
            InvalidDateRange: if either bound is missing or malformed, or
                from is after to
        """
        first = parse_day(from_str)
        last = parse_day(to_str)
        if first is None or last is None:
            raise InvalidDateRange("from and to are required (YYYY-MM-DD)")
        return cls.from_days(first, last)

    @property
    def first_day(self) -> date:
        return self.gte.date()

    @property
    def last_day(self) -> date:
        return self.lte.date()

    @property
    def total_days(self) -> int:
        return inclusive_days(self.first_day, self.last_day)

    def contains(self, moment: Optional[datetime]) -> bool:
        return moment is not None and self.gte <= moment <= self.lte

    def previous(self) -> "DateRange":
        """Window of equal length ending the day before this one starts"""
        last = self.first_day - timedelta(days=1)
        first = last - timedelta(days=self.total_days - 1)
        return DateRange.from_days(first, last)

    def label(self) -> str:
        return f"{self.first_day.isoformat()}..{self.last_day.isoformat()}"


def month_key(moment: datetime) -> str:
    """Calendar period key, e.g. 2025-03"""
    return moment.strftime("%Y-%m")


def month_keys(date_range: DateRange) -> List[str]:
    """Every calendar period touched by the range, oldest first"""
    year, month = date_range.first_day.year, date_range.first_day.month
    last = (date_range.last_day.year, date_range.last_day.month)
    keys = []
    while (year, month) <= last:
        keys.append(f"{year:04d}-{month:02d}")
        year, month = (year + 1, 1) if month == 12 else (year, month + 1)
    return keys
