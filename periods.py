from dataclasses import dataclass
from datetime import date, timedelta
from typing import Optional

CURRENT_MONTH = "current_month"
CURRENT_WEEK = "current_week"
LAST_30_DAYS = "last_30_days"
MONTH = "month"
MONTH_TO_DATE = "month_to_date"

MONTH_LABELS = (
    "Jan",
    "Feb",
    "Mar",
    "Apr",
    "May",
    "Jun",
    "Jul",
    "Aug",
    "Sep",
    "Oct",
    "Nov",
    "Dec",
)


@dataclass(frozen=True)
class Period:
    """A calendar-day range; ``start`` is inclusive and ``end`` is exclusive."""

    slug: str
    start: date
    end: date

    @property
    def last_day(self) -> date:
        return self.end - timedelta(days=1)

    @property
    def days(self) -> int:
        return (self.end - self.start).days

    def contains(self, day: date) -> bool:
        return self.start <= day < self.end


def first_of_month(year: int, month: int) -> date:
    return date(year, month, 1)


def first_of_next_month(day: date) -> date:
    if day.month == 12:
        return date(day.year + 1, 1, 1)
    return date(day.year, day.month + 1, 1)


def days_in_month(year: int, month: int) -> int:
    start = first_of_month(year, month)
    return (first_of_next_month(start) - start).days


def month_period(year: int, month: int, *, slug: str = MONTH) -> Period:
    start = first_of_month(year, month)
    return Period(slug, start, first_of_next_month(start))


def current_month(today: date) -> Period:
    return month_period(today.year, today.month, slug=CURRENT_MONTH)


def current_week(today: date) -> Period:
    # date.weekday() is Monday=0 .. Sunday=6, so Sunday lands six days after Monday.
    start = today - timedelta(days=today.weekday())
    return Period(CURRENT_WEEK, start, start + timedelta(days=7))


def last_30_days(today: date) -> Period:
    end = today + timedelta(days=1)
    return Period(LAST_30_DAYS, end - timedelta(days=30), end)


def month_to_date(today: date) -> Period:
    return Period(MONTH_TO_DATE, today.replace(day=1), today + timedelta(days=1))


def shift_month(year: int, month_index: int, offset: int) -> tuple[int, int]:
    """Move a (year, 0-based month) pair by ``offset`` months, borrowing years."""
    total = year * 12 + month_index + offset
    return total // 12, total % 12


def month_window(today: date, count: int) -> list[Period]:
    """The ``count`` calendar months ending with today's month, oldest first."""
    if count < 1:
        raise ValueError("count must be at least 1")
    months: list[Period] = []
    for back in range(count - 1, -1, -1):
        year, month_index = shift_month(today.year, today.month - 1, -back)
        months.append(month_period(year, month_index + 1))
    return months


def resolve_period(
    period: Optional[str],
    *,
    today: date,
    month: Optional[int] = None,
    year: Optional[int] = None,
) -> Period:
    """Map a period tag to concrete bounds.

    ``month`` is a 0-based month index (0 = January), matching the index that
    trend points carry, so a trend point can be fed straight back in.
    """
    if month is not None or year is not None or period == MONTH:
        if month is None or year is None:
            raise ValueError("Explicit month requires both month and year")
        if not 0 <= month <= 11:
            raise ValueError("Month must be between 0 and 11")
        if not 1970 <= year <= 3000:
            raise ValueError("Year out of range")
        return month_period(year, month + 1)
    if not period or period == CURRENT_MONTH:
        return current_month(today)
    if period == CURRENT_WEEK:
        return current_week(today)
    if period == LAST_30_DAYS:
        return last_30_days(today)
    if period == MONTH_TO_DATE:
        return month_to_date(today)
    raise ValueError(f"Unsupported period: {period}")
