from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Optional


@dataclass(frozen=True)
class Period:
    year: int
    month: int
    start: date
    end: date

    @property
    def start_at(self) -> datetime:
        return datetime.combine(self.start, time.min)

    @property
    def end_at(self) -> datetime:
        return datetime.combine(self.end, time.max)

    @property
    def label(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"


def month_period(year: int, month: int) -> Period:
    if not 1 <= month <= 12:
        raise ValueError("Month must be between 1 and 12")
    if year < 1970 or year > 3000:
        raise ValueError("Year out of range")
    first = date(year, month, 1)
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return Period(year, month, first, next_month - date.resolution)


def resolve_month(
    month: Optional[int],
    year: Optional[int],
    *,
    today: Optional[date] = None,
) -> Period:
    today = today or date.today()
    if month is None and year is None:
        return month_period(today.year, today.month)
    if month is None or year is None:
        raise ValueError("Month and year must be given together")
    return month_period(year, month)
