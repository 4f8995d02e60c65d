"""Post-commit reactions to domain events and the dispatch table wiring them."""

from __future__ import annotations

import logging
from functools import lru_cache

from sqlalchemy.orm import Session

from balances import (
    BalanceAdjustment,
    net_adjustments,
    resolve_adjustments,
    reverse_adjustments,
)
from errors import ServiceError
from events import (
    EventDispatcher,
    OperationCreated,
    OperationRemoved,
    OperationSnapshot,
    OperationUpdated,
    UserCreated,
)
from models import Account, AccountType, CategoryType, OperationType
from schemas import AccountIn, CategoryIn, VendorIn

logger = logging.getLogger(__name__)

DEFAULT_ACCOUNTS = (
    ("Cash", AccountType.debit),
    ("Chequing", AccountType.debit),
    ("Credit Card", AccountType.credit),
    ("Savings", AccountType.debit),
)

DEFAULT_CATEGORIES = (
    ("Food", CategoryType.expense, ("Groceries", "Restaurants")),
    ("Entertainment", CategoryType.expense, ("Movies", "Games")),
    ("Utilities", CategoryType.expense, ("Electricity", "Water")),
    ("Rent", CategoryType.expense, ("Rent",)),
    ("Other", CategoryType.expense, ("Other",)),
    ("Salary", CategoryType.income, ("Salary",)),
    ("Other Income", CategoryType.income, ("Other",)),
)

DEFAULT_VENDORS = ("Other", "Amazon", "Walmart", "Costco")


def _adjustments_for(
    session: Session, operation: OperationSnapshot
) -> list[BalanceAdjustment]:
    if operation.type == OperationType.transfer:
        return resolve_adjustments(operation)
    account = session.get(Account, operation.account_id)
    if account is None:
        logger.warning(
            f"balance_adjustment_skipped: operation_id={operation.operation_id} "
            f"account_id={operation.account_id} reason=account_not_found"
        )
        return []
    return resolve_adjustments(operation, account.type)


def _settle(session: Session, user_id: int, adjustments: list[BalanceAdjustment]) -> None:
    from services import AccountService

    applied = AccountService(session, user_id).apply_adjustments(adjustments)
    logger.info(f"balances_adjusted: user_id={user_id} accounts={applied}")


def adjust_balance_on_created(event: OperationCreated, session: Session) -> None:
    operation = event.operation
    _settle(session, operation.user_id, _adjustments_for(session, operation))


def adjust_balance_on_updated(event: OperationUpdated, session: Session) -> None:
    adjustments = reverse_adjustments(_adjustments_for(session, event.previous))
    adjustments += _adjustments_for(session, event.current)
    _settle(session, event.current.user_id, net_adjustments(adjustments))


def adjust_balance_on_removed(event: OperationRemoved, session: Session) -> None:
    operation = event.operation
    _settle(
        session,
        operation.user_id,
        reverse_adjustments(_adjustments_for(session, operation)),
    )


def provision_user_defaults(event: UserCreated, session: Session) -> None:
    """Seed a new user with starter accounts, categories and vendors."""
    from services import AccountService, CategoryService, VendorService

    accounts = AccountService(session, event.user_id)
    categories = CategoryService(session, event.user_id)
    vendors = VendorService(session, event.user_id)

    defaults = [
        (f"account:{name}", accounts.create, AccountIn(name=name, type=account_type))
        for name, account_type in DEFAULT_ACCOUNTS
    ]
    defaults += [
        (
            f"category:{name}",
            categories.create,
            CategoryIn(name=name, type=category_type, subcategories=list(subs)),
        )
        for name, category_type, subs in DEFAULT_CATEGORIES
    ]
    defaults += [
        (f"vendor:{name}", vendors.create, VendorIn(name=name))
        for name in DEFAULT_VENDORS
    ]

    created = 0
    for label, create, data in defaults:
        try:
            create(data)
        except ServiceError as exc:
            logger.warning(
                f"user_default_skipped: user_id={event.user_id} item={label} reason={exc}"
            )
            continue
        created += 1
    logger.info(f"user_provisioned: user_id={event.user_id} items={created}")


def build_dispatcher() -> EventDispatcher:
    dispatcher = EventDispatcher()
    dispatcher.subscribe(OperationCreated, adjust_balance_on_created)
    dispatcher.subscribe(OperationUpdated, adjust_balance_on_updated)
    dispatcher.subscribe(OperationRemoved, adjust_balance_on_removed)
    dispatcher.subscribe(UserCreated, provision_user_defaults)
    return dispatcher


@lru_cache(maxsize=1)
def default_dispatcher() -> EventDispatcher:
    return build_dispatcher()
