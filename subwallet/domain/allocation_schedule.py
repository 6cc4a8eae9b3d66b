"""
Next-run calculator for ON_SCHEDULE allocation rules.

Frequencies:
- DAILY: midnight of the next calendar day
- WEEKLY: next day_of_week (0=Sunday, default), strictly after today
- BI_WEEKLY: now + 14 days, at midnight
- MONTHLY / QUARTERLY: +1 / +3 calendar months, day clamped to the month length

The result is always strictly later than now, so a re-armed rule never fires
twice in the same sweep.
"""
from datetime import datetime

from subwallet.domain.dates import add_days, add_months, days_until_weekday, start_of_day


FREQ_DAILY = "DAILY"
FREQ_WEEKLY = "WEEKLY"
FREQ_BI_WEEKLY = "BI_WEEKLY"
FREQ_MONTHLY = "MONTHLY"
FREQ_QUARTERLY = "QUARTERLY"
VALID_FREQUENCIES = frozenset({FREQ_DAILY, FREQ_WEEKLY, FREQ_BI_WEEKLY, FREQ_MONTHLY, FREQ_QUARTERLY})

DEFAULT_DAY_OF_WEEK = 0  # Sunday

_MONTHS_AHEAD = {FREQ_MONTHLY: 1, FREQ_QUARTERLY: 3}


def validate_anchors(frequency: str | None, day_of_month: int | None, day_of_week: int | None) -> None:
    if frequency is not None and frequency not in VALID_FREQUENCIES:
        raise ValueError(f"invalid frequency: {frequency}")
    if day_of_month is not None and not 1 <= day_of_month <= 31:
        raise ValueError("day_of_month must be between 1 and 31")
    if day_of_week is not None and not 0 <= day_of_week <= 6:
        raise ValueError("day_of_week must be between 0 (Sunday) and 6 (Saturday)")


def next_run(
    frequency: str,
    day_of_month: int | None,
    day_of_week: int | None,
    now: datetime,
) -> datetime:
    """Next eligible execution instant after now."""
    validate_anchors(frequency, day_of_month, day_of_week)
    today = now.date()

    if frequency == FREQ_DAILY:
        return start_of_day(add_days(today, 1))
    if frequency == FREQ_WEEKLY:
        target = DEFAULT_DAY_OF_WEEK if day_of_week is None else day_of_week
        return start_of_day(add_days(today, days_until_weekday(today, target)))
    if frequency == FREQ_BI_WEEKLY:
        return start_of_day(add_days(today, 14))
    if frequency in _MONTHS_AHEAD:
        return start_of_day(add_months(today, _MONTHS_AHEAD[frequency], day=day_of_month))
    raise ValueError(f"unhandled frequency: {frequency}")


def is_due(next_scheduled_at: datetime | None, now: datetime) -> bool:
    """A scheduled rule is due when it was never armed or its time has come."""
    return next_scheduled_at is None or next_scheduled_at <= now
