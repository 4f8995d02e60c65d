from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

from config import get_settings
from errors import ValidationError
from models import PaymentFrequency


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def add_months(base: date, months: int, *, desired_day: Optional[int] = None) -> date:
    """Shift by whole months, keeping ``desired_day`` and snapping to month end."""
    total_months = base.month - 1 + months
    year = base.year + total_months // 12
    month = total_months % 12 + 1
    day = desired_day or base.day
    return date(year, month, min(day, days_in_month(year, month)))


# BiMonthly means every second month, matching BiWeekly's every second week.
MONTHS_PER_PERIOD = {
    PaymentFrequency.monthly: 1,
    PaymentFrequency.bimonthly: 2,
    PaymentFrequency.yearly: 12,
}

DAYS_PER_PERIOD = {
    PaymentFrequency.weekly: 7,
    PaymentFrequency.biweekly: 14,
}


def next_due_date(
    due: date, frequency: PaymentFrequency, payment_day: Optional[int] = None
) -> date:
    if frequency in DAYS_PER_PERIOD:
        return due + timedelta(days=DAYS_PER_PERIOD[frequency])
    anchor = payment_day if payment_day and 1 <= payment_day <= 31 else due.day
    return add_months(due, MONTHS_PER_PERIOD[frequency], desired_day=anchor)


@dataclass(frozen=True)
class BillSchedule:
    frequency: PaymentFrequency
    next_due_date: date
    next_due_amount_cents: int
    payment_day: Optional[int] = None
    last_paid_date: Optional[date] = None
    last_paid_amount_cents: int = 0

    @property
    def is_settled(self) -> bool:
        return self.next_due_amount_cents == 0


def apply_payment(
    schedule: BillSchedule,
    amount_cents: int,
    payment_date: date,
    *,
    today: Optional[date] = None,
) -> BillSchedule:
    """Amortize one payment against the current cycle.

    A payment covering the amount due closes the cycle: the due date moves one
    period ahead and the amount due drops to zero until it is replenished.
    Anything less only reduces the amount due.
    """
    today = today or local_today()
    errors = []
    if amount_cents <= 0:
        errors.append("Amount must be greater than 0")
    if payment_date > today:
        errors.append("Payment date cannot be in the future")
    if errors:
        raise ValidationError(*errors)

    if amount_cents >= schedule.next_due_amount_cents:
        return replace(
            schedule,
            next_due_date=next_due_date(
                schedule.next_due_date, schedule.frequency, schedule.payment_day
            ),
            next_due_amount_cents=0,
            last_paid_date=payment_date,
            last_paid_amount_cents=amount_cents,
        )
    return replace(
        schedule,
        next_due_amount_cents=schedule.next_due_amount_cents - amount_cents,
        last_paid_date=payment_date,
        last_paid_amount_cents=amount_cents,
    )
