"""
Budget period state machine (pure).

ON_TRACK -> WARNING   (spent / budget >= alert_threshold %)
         -> EXCEEDED  (remaining < 0), may skip WARNING
any      -> COMPLETED (end_date passed), terminal
"""
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal

from subwallet.domain.dates import add_days, add_months, end_of_day, start_of_day


PERIOD_WEEKLY = "WEEKLY"
PERIOD_MONTHLY = "MONTHLY"
PERIOD_QUARTERLY = "QUARTERLY"
PERIOD_YEARLY = "YEARLY"
PERIOD_CUSTOM = "CUSTOM"
VALID_PERIOD_TYPES = frozenset({PERIOD_WEEKLY, PERIOD_MONTHLY, PERIOD_QUARTERLY, PERIOD_YEARLY, PERIOD_CUSTOM})

STATUS_ON_TRACK = "ON_TRACK"
STATUS_WARNING = "WARNING"
STATUS_EXCEEDED = "EXCEEDED"
STATUS_COMPLETED = "COMPLETED"
ALERT_STATUSES = (STATUS_WARNING, STATUS_EXCEEDED)

# Worst-first, used to fold several periods into one summary status
_SEVERITY = {STATUS_ON_TRACK: 0, STATUS_COMPLETED: 0, STATUS_WARNING: 1, STATUS_EXCEEDED: 2}

HUNDRED = Decimal("100")


@dataclass(frozen=True)
class SpendOutcome:
    spent_amount: Decimal
    remaining_amount: Decimal
    percent_used: Decimal
    status: str
    crossed_threshold: bool


def percent_used(spent: Decimal, budget: Decimal) -> Decimal:
    if budget <= 0:
        return Decimal("0")
    return spent / budget * HUNDRED


def derive_status(budget: Decimal, spent: Decimal, alert_threshold: Decimal) -> str:
    remaining = budget - spent
    if remaining < 0:
        return STATUS_EXCEEDED
    if percent_used(spent, budget) >= alert_threshold:
        return STATUS_WARNING
    return STATUS_ON_TRACK


def apply_spend(
    budget: Decimal,
    spent: Decimal,
    alert_threshold: Decimal,
    amount: Decimal,
) -> SpendOutcome:
    """Add amount to spent and re-derive the status."""
    new_spent = spent + amount
    used = percent_used(new_spent, budget)
    return SpendOutcome(
        spent_amount=new_spent,
        remaining_amount=budget - new_spent,
        percent_used=used,
        status=derive_status(budget, new_spent, alert_threshold),
        crossed_threshold=used >= alert_threshold,
    )


def worst_status(statuses) -> str:
    worst = STATUS_ON_TRACK
    for s in statuses:
        if _SEVERITY.get(s, 0) > _SEVERITY[worst]:
            worst = s
    return worst


def default_period_bounds(period_type: str, start: date) -> tuple[datetime, datetime]:
    """
    Default [start, end] for a period starting on start.

    End is the last instant of the day before the next period would begin,
    so consecutive default periods never overlap.
    """
    if period_type == PERIOD_WEEKLY:
        next_start = add_days(start, 7)
    elif period_type == PERIOD_QUARTERLY:
        next_start = add_months(start, 3)
    elif period_type == PERIOD_YEARLY:
        next_start = add_months(start, 12)
    elif period_type in (PERIOD_MONTHLY, PERIOD_CUSTOM):
        next_start = add_months(start, 1)
    else:
        raise ValueError(f"invalid period_type: {period_type}")
    return start_of_day(start), end_of_day(add_days(next_start, -1))


def ranges_overlap(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    """Closed intervals [a_start, a_end] and [b_start, b_end] intersect."""
    return a_start <= b_end and b_start <= a_end


def is_expired(end_date: datetime, now: datetime) -> bool:
    return end_date < now
