import re
from dataclasses import dataclass
from datetime import date, timedelta
from enum import Enum
from typing import Optional

YEAR_MONTH_RE = re.compile(r"^(\d{4})-(\d{2})$")


@dataclass(frozen=True)
class Period:
    """Half-open calendar window: ``start <= day < end``."""

    slug: str
    start: date
    end: date

    def contains(self, day: date) -> bool:
        return self.start <= day < self.end


def add_months(d: date, count: int) -> date:
    month_index = (d.year * 12) + (d.month - 1) + count
    year = month_index // 12
    month = (month_index % 12) + 1
    return date(year, month, 1)


def parse_year_month(value: str) -> tuple[int, int]:
    match = YEAR_MONTH_RE.match(value or "")
    if not match:
        raise ValueError("month must use the YYYY-MM format")
    year, month = int(match.group(1)), int(match.group(2))
    if year < 1 or not 1 <= month <= 12:
        raise ValueError("month must use the YYYY-MM format")
    return year, month


def format_year_month(year: int, month: int) -> str:
    return f"{year:04d}-{month:02d}"


def month_period(year: int, month: int) -> Period:
    start = date(year, month, 1)
    return Period(format_year_month(year, month), start, add_months(start, 1))


def previous_month_period(year: int, month: int) -> Period:
    prev = add_months(date(year, month, 1), -1)
    return month_period(prev.year, prev.month)


def year_period(year: int) -> Period:
    if year < 1:
        raise ValueError("year must be a positive YYYY value")
    return Period(str(year), date(year, 1, 1), date(year + 1, 1, 1))


def resolve_month(value: Optional[str], *, today: date) -> tuple[int, int]:
    if not value:
        return today.year, today.month
    return parse_year_month(value)


def parse_year(value: Optional[str], *, today: date) -> int:
    if not value:
        return today.year
    try:
        year = int(value)
    except ValueError as exc:
        raise ValueError("invalid year, use YYYY") from exc
    if year <= 0:
        raise ValueError("invalid year, use YYYY")
    return year


class WeeklyRange(str, Enum):
    days_7 = "7days"
    days_30 = "30days"
    days_90 = "90days"
    days_180 = "180days"
    days_365 = "365days"

    @classmethod
    def parse(cls, value: Optional[str]) -> "WeeklyRange":
        try:
            return cls(value)
        except ValueError:
            return cls.days_90


def _shift_months(d: date, months: int) -> date:
    first = add_months(d, months)
    # Calendar overflow rolls into the following month, e.g. May 31 - 3 months.
    return first + timedelta(days=d.day - 1)


def weekly_window(window: WeeklyRange, *, today: date) -> Period:
    """Lookback window ending with ``today`` inclusive."""
    if window == WeeklyRange.days_7:
        start = today - timedelta(days=7)
    elif window == WeeklyRange.days_30:
        start = today - timedelta(days=30)
    elif window == WeeklyRange.days_180:
        start = _shift_months(today, -6)
    elif window == WeeklyRange.days_365:
        start = _shift_months(today, -12)
    else:
        start = _shift_months(today, -3)
    return Period(window.value, start, today + timedelta(days=1))
