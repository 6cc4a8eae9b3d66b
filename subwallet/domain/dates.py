"""
Calendar helpers shared by the allocation scheduler and budget periods.

Dates are naive (UTC by convention, see config.TIMEZONE).
"""
import calendar
from datetime import date, datetime, time, timedelta


def last_day_of_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def add_months(d: date, n: int, day: int | None = None) -> date:
    """Shift d by n calendar months, clamping the day to the target month length.

    day overrides the anchor day (e.g. day_of_month=31 from a rule).
    """
    month = d.month - 1 + n
    year = d.year + month // 12
    month = month % 12 + 1
    last = last_day_of_month(year, month)
    return date(year, month, min(day or d.day, last))


def start_of_day(d: date) -> datetime:
    return datetime.combine(d, time.min)


def end_of_day(d: date) -> datetime:
    return datetime.combine(d, time.max)


def month_bounds(d: date) -> tuple[datetime, datetime]:
    """[first day 00:00, last day 23:59:59.999999] of d's month."""
    first = d.replace(day=1)
    last = d.replace(day=last_day_of_month(d.year, d.month))
    return start_of_day(first), end_of_day(last)


def js_weekday(d: date) -> int:
    """Weekday with 0=Sunday..6=Saturday (rule anchors use this numbering)."""
    return (d.weekday() + 1) % 7


def days_until_weekday(d: date, target: int) -> int:
    """Days from d to the next target weekday (0=Sunday), never 0."""
    return (target - js_weekday(d) + 7) % 7 or 7


def add_days(d: date, n: int) -> date:
    return d + timedelta(days=n)
