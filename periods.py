import re
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Optional

from recurrence import add_months

_PERIOD_SUFFIX = re.compile(r" - [A-Z][a-z]{2}-\d{4}$")
_MONTH_ABBR = (
    "Jan", "Feb", "Mar", "Apr", "May", "Jun",
    "Jul", "Aug", "Sep", "Oct", "Nov", "Dec",
)


@dataclass(frozen=True)
class Period:
    """Inclusive date window."""

    start: date
    end: date

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end

    def overlaps(self, other: "Period") -> bool:
        return self.start <= other.end and self.end >= other.start


def month_period(day: date) -> Period:
    first = day.replace(day=1)
    return Period(first, add_months(first, 1) - timedelta(days=1))


def next_period(current: Period) -> Period:
    start = current.end + timedelta(days=1)
    return Period(start, add_months(start, 1) - timedelta(days=1))


def period_suffix(start: date) -> str:
    return f" - {_MONTH_ABBR[start.month - 1]}-{start.year}"


def next_period_name(name: str, start: date) -> str:
    base = _PERIOD_SUFFIX.sub("", name)
    return f"{base}{period_suffix(start)}"[:100]


def resolve_period(
    period: Optional[str],
    start: Optional[str],
    end: Optional[str],
    *,
    today: Optional[date] = None,
) -> Optional[Period]:
    """Translate list query parameters into a window; ``None`` means unbounded."""
    today = today or date.today()
    if not period or period == "all":
        return None
    if period == "last_month":
        return month_period(today.replace(day=1) - timedelta(days=1))
    if period == "custom":
        if not start or not end:
            raise ValueError("Custom period requires start and end dates")
        start_date = date.fromisoformat(start)
        end_date = date.fromisoformat(end)
        if start_date > end_date:
            raise ValueError("Start date must be before end date")
        return Period(start_date, end_date)
    if period == "this_month":
        return month_period(today)
    raise ValueError(f"Unknown period: {period}")
