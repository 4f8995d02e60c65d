"""Turn a template into an operation draft ready for ``OperationService.create``."""

from __future__ import annotations

from datetime import date as date_type
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from models import Template
from recurrence import local_today
from schemas import AllocationIn, OperationIn


def rescale_amounts(amounts: list[int], total: int, new_total: int) -> list[int]:
    """Scale ``amounts`` (summing to ``total``) so they sum to ``new_total``.

    Each share is rounded half-up; the last entry absorbs the rounding
    remainder.
    """
    if not amounts or total == new_total:
        return list(amounts)
    if total == 0:
        raise ValueError("Cannot rescale an allocation with a zero total")
    scaled = [
        int(
            (Decimal(amount) * Decimal(new_total) / Decimal(total)).quantize(
                Decimal(1), rounding=ROUND_HALF_UP
            )
        )
        for amount in amounts[:-1]
    ]
    scaled.append(new_total - sum(scaled))
    return scaled


def materialize(
    template: Template,
    *,
    date: Optional[date_type] = None,
    title: Optional[str] = None,
    total_amount_cents: Optional[int] = None,
    comments: Optional[str] = None,
    today: Optional[date_type] = None,
) -> OperationIn:
    entries = list(template.allocations)
    total = template.total_amount_cents
    new_total = total if total_amount_cents is None else total_amount_cents
    amounts = rescale_amounts([e.amount_cents for e in entries], total, new_total)
    allocation = [
        AllocationIn(
            category_id=entry.category_id,
            sub_category_id=entry.sub_category_id,
            amount_cents=amount,
        )
        for entry, amount in zip(entries, amounts)
    ]
    return OperationIn(
        date=date or today or local_today(),
        title=title or template.title,
        type=template.type,
        vendor_id=template.vendor_id,
        account_id=template.account_id,
        destination_account_id=template.destination_account_id,
        total_amount_cents=new_total,
        comments=comments or "",
        category_type=template.category_type,
        allocation=allocation,
    )
