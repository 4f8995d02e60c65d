"""Signed balance effects of committed operations.

A debit account holds money: expenses take from it, income adds to it. A
credit account tracks money owed: charges raise it, income applied to it
(refunds, cashback) lowers it. Transfers ignore both tables and simply move
the total from the source to the destination account.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional

from errors import IntegrationFailure
from events import OperationSnapshot
from models import AccountType, CategoryType, OperationType

BALANCE_SIGNS: dict[tuple[AccountType, CategoryType], int] = {
    (AccountType.debit, CategoryType.expense): -1,
    (AccountType.debit, CategoryType.income): 1,
    (AccountType.credit, CategoryType.expense): 1,
    (AccountType.credit, CategoryType.income): -1,
}


@dataclass(frozen=True)
class BalanceAdjustment:
    account_id: int
    delta_cents: int


def balance_sign(account_type: AccountType, category_type: CategoryType) -> int:
    return BALANCE_SIGNS[(account_type, category_type)]


def resolve_adjustments(
    operation: OperationSnapshot, account_type: Optional[AccountType] = None
) -> list[BalanceAdjustment]:
    if operation.type == OperationType.transfer:
        if operation.destination_account_id is None:
            raise IntegrationFailure(
                f"Transfer {operation.operation_id} has no destination account"
            )
        return [
            BalanceAdjustment(operation.account_id, -operation.total_amount_cents),
            BalanceAdjustment(
                operation.destination_account_id, operation.total_amount_cents
            ),
        ]

    if account_type is None:
        raise IntegrationFailure("Account type is required to settle a simple operation")
    if operation.category_type is None:
        raise IntegrationFailure(
            f"Operation {operation.operation_id} has no category type to settle"
        )
    sign = balance_sign(account_type, operation.category_type)
    return [BalanceAdjustment(operation.account_id, operation.total_amount_cents * sign)]


def reverse_adjustments(
    adjustments: Iterable[BalanceAdjustment],
) -> list[BalanceAdjustment]:
    return [BalanceAdjustment(a.account_id, -a.delta_cents) for a in adjustments]


def net_adjustments(
    adjustments: Iterable[BalanceAdjustment],
) -> list[BalanceAdjustment]:
    """Collapse deltas per account, keeping first-seen order and dropping zeros."""
    totals: dict[int, int] = {}
    for adjustment in adjustments:
        totals[adjustment.account_id] = (
            totals.get(adjustment.account_id, 0) + adjustment.delta_cents
        )
    return [
        BalanceAdjustment(account_id, delta)
        for account_id, delta in totals.items()
        if delta != 0
    ]
