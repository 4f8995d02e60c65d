"""Allocation rules for operations and templates.

The validator is pure: callers hydrate the category types they reference and
get back every violation found, never just the first one.
"""

from __future__ import annotations

from collections import Counter
from typing import Mapping, Optional, Protocol, Sequence

from models import CategoryType, OperationType


class AllocationEntry(Protocol):
    category_id: int
    sub_category_id: Optional[int]
    amount_cents: int


def validate_allocation(
    *,
    operation_type: OperationType,
    total_amount_cents: int,
    account_id: int,
    destination_account_id: Optional[int],
    allocation: Sequence[AllocationEntry],
    category_types: Mapping[int, CategoryType],
    declared_type: Optional[CategoryType] = None,
) -> list[str]:
    errors: list[str] = []

    if operation_type == OperationType.simple and not allocation:
        errors.append("At least one category is required")

    pairs = Counter((entry.category_id, entry.sub_category_id) for entry in allocation)
    duplicates = sorted(
        (pair for pair, count in pairs.items() if count > 1),
        key=lambda pair: (pair[0], pair[1] or 0),
    )
    for category_id, sub_category_id in duplicates:
        errors.append(
            f"Categories must be unique: category {category_id} / "
            f"subcategory {sub_category_id} appears more than once"
        )

    if operation_type == OperationType.simple:
        allocated = sum(entry.amount_cents for entry in allocation)
        if allocated != total_amount_cents:
            errors.append(
                "The sum of the allocations must be equal to the total amount "
                f"({allocated} != {total_amount_cents})"
            )

    expected = declared_type
    for index, entry in enumerate(allocation, start=1):
        category_type = category_types.get(entry.category_id)
        if category_type is None:
            continue
        if expected is None:
            expected = category_type
            continue
        if category_type != expected:
            errors.append(
                f"Allocation {index}: category {entry.category_id} is "
                f"{category_type.value}, expected {expected.value}"
            )

    if operation_type == OperationType.transfer:
        if destination_account_id is None:
            errors.append("Destination account is required for transfers")
        elif destination_account_id == account_id:
            errors.append("Destination account must be different from the source account")
        if allocation:
            errors.append("Transfers cannot carry a category allocation")
    elif destination_account_id is not None:
        errors.append("Only transfers can have a destination account")

    return errors


def allocation_category_type(
    allocation: Sequence[AllocationEntry],
    category_types: Mapping[int, CategoryType],
    declared_type: Optional[CategoryType] = None,
) -> Optional[CategoryType]:
    """Representative category type of an already validated allocation."""
    if declared_type is not None:
        return declared_type
    for entry in allocation:
        if entry.category_id in category_types:
            return category_types[entry.category_id]
    return None
