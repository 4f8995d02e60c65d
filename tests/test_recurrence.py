from datetime import date

import pytest

from errors import ValidationError
from models import PaymentFrequency
from recurrence import BillSchedule, add_months, apply_payment, next_due_date


def test_next_due_date_per_frequency():
    due = date(2024, 3, 1)
    assert next_due_date(due, PaymentFrequency.weekly) == date(2024, 3, 8)
    assert next_due_date(due, PaymentFrequency.biweekly) == date(2024, 3, 15)
    assert next_due_date(due, PaymentFrequency.monthly, 1) == date(2024, 4, 1)
    assert next_due_date(due, PaymentFrequency.yearly, 1) == date(2025, 3, 1)


def test_bimonthly_advances_two_months():
    assert next_due_date(date(2024, 3, 1), PaymentFrequency.bimonthly, 1) == date(
        2024, 5, 1
    )
    assert next_due_date(date(2024, 11, 15), PaymentFrequency.bimonthly, 15) == date(
        2025, 1, 15
    )


def test_month_end_snaps_and_recovers_anchor():
    first = next_due_date(date(2024, 1, 31), PaymentFrequency.monthly, 31)
    assert first == date(2024, 2, 29)
    assert next_due_date(first, PaymentFrequency.monthly, 31) == date(2024, 3, 31)


def test_add_months_across_year_boundary():
    assert add_months(date(2023, 12, 31), 2) == date(2024, 2, 29)


def _schedule(due_cents: int = 10000) -> BillSchedule:
    return BillSchedule(
        frequency=PaymentFrequency.monthly,
        next_due_date=date(2024, 3, 1),
        next_due_amount_cents=due_cents,
        payment_day=1,
    )


def test_partial_then_full_payment():
    today = date(2024, 2, 20)
    partial = apply_payment(_schedule(), 6000, date(2024, 2, 20), today=today)
    assert partial.next_due_amount_cents == 4000
    assert partial.next_due_date == date(2024, 3, 1)
    assert partial.last_paid_amount_cents == 6000

    full = apply_payment(partial, 4000, date(2024, 2, 20), today=today)
    assert full.next_due_amount_cents == 0
    assert full.next_due_date == date(2024, 4, 1)
    assert full.last_paid_date == date(2024, 2, 20)
    assert full.last_paid_amount_cents == 4000


def test_overpayment_closes_cycle():
    result = apply_payment(_schedule(), 15000, date(2024, 2, 1), today=date(2024, 2, 1))
    assert result.next_due_amount_cents == 0
    assert result.next_due_date == date(2024, 4, 1)


def test_payment_rejected_when_invalid():
    with pytest.raises(ValidationError) as exc:
        apply_payment(_schedule(), 0, date(2024, 3, 5), today=date(2024, 3, 1))
    assert len(exc.value.messages) == 2
