from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Iterable, Optional

from sqlalchemy import func, or_, select, update
from sqlalchemy.orm import Session, joinedload

from allocation import allocation_category_type, validate_allocation
from balances import BalanceAdjustment
from config import get_settings
from errors import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ServiceError,
    UnauthorizedError,
    ValidationError,
)
from events import (
    EventDispatcher,
    OperationCreated,
    OperationRemoved,
    OperationSnapshot,
    OperationUpdated,
    UnitOfWork,
    UserCreated,
)
from materialize import materialize
from models import (
    Account,
    Bill,
    Budget,
    BudgetCategory,
    Category,
    CategoryType,
    Operation,
    OperationAllocation,
    OperationType,
    SubCategory,
    Template,
    TemplateAllocation,
    User,
    Vendor,
)
from periods import Period, next_period, next_period_name
from recurrence import BillSchedule, apply_payment, local_today
from schemas import (
    AccountIn,
    AccountUpdateIn,
    AllocationIn,
    BillIn,
    BillPaymentIn,
    BudgetCategoryIn,
    BudgetIn,
    CategoryIn,
    OperationIn,
    TemplateIn,
    UserIn,
    VendorIn,
)

logger = logging.getLogger(__name__)


def get_current_user_id() -> int:
    return get_settings().default_user_id


class _Service:
    def __init__(
        self,
        session: Session,
        user_id: Optional[int] = None,
        *,
        dispatcher: Optional[EventDispatcher] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()
        self._dispatcher = dispatcher
        self.cancel_event = cancel_event

    @property
    def dispatcher(self) -> EventDispatcher:
        if self._dispatcher is None:
            from handlers import default_dispatcher

            self._dispatcher = default_dispatcher()
        return self._dispatcher

    def unit_of_work(self) -> UnitOfWork:
        return UnitOfWork(self.session, self.dispatcher, cancel_event=self.cancel_event)

    def _owned(self, model, entity_id: Optional[int], label: str):
        entity = self.session.get(model, entity_id) if entity_id else None
        if not entity or entity.user_id != self.user_id:
            raise NotFoundError(f"{label} not found")
        return entity

    def _name_taken(self, model, name: str, exclude_id: Optional[int] = None) -> bool:
        stmt = select(model.id).where(
            model.user_id == self.user_id,
            func.lower(model.name) == name.strip().lower(),
        )
        if exclude_id is not None:
            stmt = stmt.where(model.id != exclude_id)
        return self.session.scalar(stmt) is not None


class UserService(_Service):
    def get(self, user_id: int) -> User:
        user = self.session.get(User, user_id)
        if not user:
            raise NotFoundError("User not found")
        return user

    def list_enabled(self) -> list[User]:
        stmt = select(User).where(User.is_enabled.is_(True)).order_by(User.id)
        return list(self.session.scalars(stmt).all())

    def require_enabled(self, user_id: Optional[int]) -> User:
        user = self.session.get(User, user_id) if user_id else None
        if not user:
            raise UnauthorizedError("Unknown user")
        if not user.is_enabled:
            raise ForbiddenError("User is disabled")
        return user

    def _email_taken(self, email: str, exclude_id: Optional[int] = None) -> bool:
        stmt = select(User.id).where(func.lower(User.email) == email.strip().lower())
        if exclude_id is not None:
            stmt = stmt.where(User.id != exclude_id)
        return self.session.scalar(stmt) is not None

    def create(self, data: UserIn) -> User:
        if self._email_taken(data.email):
            raise ValidationError("A user with this email already exists")
        with self.unit_of_work() as uow:
            user = User(
                name=data.name.strip(),
                email=data.email.strip().lower(),
                date_format=data.date_format,
                time_zone=data.time_zone,
                is_enabled=data.is_enabled,
            )
            self.session.add(user)
            self.session.flush()
            uow.record(UserCreated(user_id=user.id, name=user.name))
            logger.info(f"user_created: id={user.id}")
            uow.commit()
        return user

    def update(self, user_id: int, data: UserIn) -> User:
        user = self.get(user_id)
        if self._email_taken(data.email, exclude_id=user.id):
            raise ValidationError("A user with this email already exists")
        with self.unit_of_work() as uow:
            user.name = data.name.strip()
            user.email = data.email.strip().lower()
            user.date_format = data.date_format
            user.time_zone = data.time_zone
            user.is_enabled = data.is_enabled
            uow.commit()
        return user

    def disable(self, user_id: int) -> User:
        user = self.get(user_id)
        with self.unit_of_work() as uow:
            user.is_enabled = False
            uow.commit()
        logger.info(f"user_disabled: id={user.id}")
        return user


class AccountService(_Service):
    def list_all(self, *, enabled_only: bool = False) -> list[Account]:
        stmt = select(Account).where(Account.user_id == self.user_id)
        if enabled_only:
            stmt = stmt.where(Account.is_enabled.is_(True))
        return list(self.session.scalars(stmt.order_by(Account.name)).all())

    def get(self, account_id: int) -> Account:
        return self._owned(Account, account_id, "Account")

    def create(self, data: AccountIn) -> Account:
        if self._name_taken(Account, data.name):
            raise ValidationError("An account with this name already exists")
        with self.unit_of_work() as uow:
            account = Account(
                user_id=self.user_id,
                name=data.name.strip(),
                description=data.description,
                type=data.type,
                balance_cents=data.balance_cents,
                is_enabled=data.is_enabled,
            )
            self.session.add(account)
            uow.commit()
        logger.info(f"account_created: id={account.id} user_id={self.user_id}")
        return account

    def update(self, account_id: int, data: AccountUpdateIn) -> Account:
        account = self.get(account_id)
        if self._name_taken(Account, data.name, exclude_id=account.id):
            raise ValidationError("An account with this name already exists")
        if account.type != data.type and self._has_operations(account.id):
            raise ConflictError("Cannot change the type of an account with operations")
        with self.unit_of_work() as uow:
            account.name = data.name.strip()
            account.description = data.description
            account.type = data.type
            account.is_enabled = data.is_enabled
            uow.commit()
        return account

    def delete(self, account_id: int) -> None:
        account = self.get(account_id)
        in_use = self._has_operations(account.id) or self.session.scalar(
            select(func.count(Template.id)).where(
                or_(
                    Template.account_id == account.id,
                    Template.destination_account_id == account.id,
                )
            )
        )
        if in_use:
            raise ConflictError("Account is referenced by operations or templates")
        with self.unit_of_work() as uow:
            self.session.delete(account)
            uow.commit()

    def _has_operations(self, account_id: int) -> bool:
        count = self.session.scalar(
            select(func.count(Operation.id)).where(
                or_(
                    Operation.account_id == account_id,
                    Operation.destination_account_id == account_id,
                )
            )
        )
        return bool(count)

    def add_to_balance(
        self,
        account_id: int,
        delta_cents: int,
        expected_balance_cents: Optional[int] = None,
    ) -> None:
        """Apply ``delta_cents`` atomically in SQL; commits are left to the caller.

        With ``expected_balance_cents`` the update only lands when the stored
        balance still matches.
        """
        stmt = update(Account).where(
            Account.id == account_id, Account.user_id == self.user_id
        )
        if expected_balance_cents is not None:
            stmt = stmt.where(Account.balance_cents == expected_balance_cents)
        stmt = stmt.values(
            balance_cents=Account.balance_cents + delta_cents,
            version=Account.version + 1,
        ).execution_options(synchronize_session=False)
        result = self.session.execute(stmt)
        if result.rowcount:
            cached = self.session.identity_map.get(
                self.session.identity_key(Account, account_id)
            )
            if cached is not None:
                self.session.expire(cached, ["balance_cents", "version"])
            return
        exists = self.session.scalar(
            select(Account.id).where(
                Account.id == account_id, Account.user_id == self.user_id
            )
        )
        if exists is None:
            raise NotFoundError(f"Account {account_id} not found")
        raise ConflictError(f"Account {account_id} balance changed concurrently")

    def correct_balance(
        self,
        account_id: int,
        balance_cents: int,
        expected_balance_cents: Optional[int] = None,
    ) -> Account:
        account = self.get(account_id)
        expected = (
            account.balance_cents
            if expected_balance_cents is None
            else expected_balance_cents
        )
        with self.unit_of_work() as uow:
            self.add_to_balance(account.id, balance_cents - expected, expected)
            uow.commit()
        logger.info(
            f"account_balance_corrected: id={account.id} balance_cents={balance_cents}"
        )
        return account

    def apply_adjustments(self, adjustments: Iterable[BalanceAdjustment]) -> int:
        """Apply every adjustment in one commit; missing accounts are skipped."""
        applied = 0
        with self.unit_of_work() as uow:
            for adjustment in adjustments:
                if adjustment.delta_cents == 0:
                    continue
                try:
                    self.add_to_balance(adjustment.account_id, adjustment.delta_cents)
                except NotFoundError:
                    logger.warning(
                        f"balance_adjustment_skipped: account_id={adjustment.account_id} "
                        f"delta_cents={adjustment.delta_cents} reason=account_not_found"
                    )
                    continue
                applied += 1
            uow.commit()
        return applied


class CategoryService(_Service):
    def list_all(self, type: Optional[CategoryType] = None) -> list[Category]:
        stmt = (
            select(Category)
            .options(joinedload(Category.subcategories))
            .where(Category.user_id == self.user_id)
            .order_by(Category.type, Category.name)
        )
        if type:
            stmt = stmt.where(Category.type == type)
        return list(self.session.scalars(stmt).unique().all())

    def get(self, category_id: int) -> Category:
        return self._owned(Category, category_id, "Category")

    def create(self, data: CategoryIn) -> Category:
        if self._name_taken(Category, data.name):
            raise ValidationError("A category with this name already exists")
        with self.unit_of_work() as uow:
            category = Category(
                user_id=self.user_id,
                name=data.name.strip(),
                type=data.type,
                is_enabled=data.is_enabled,
                subcategories=[SubCategory(name=name) for name in data.subcategories],
            )
            self.session.add(category)
            uow.commit()
        return category

    def update(self, category_id: int, data: CategoryIn) -> Category:
        category = self.get(category_id)
        if self._name_taken(Category, data.name, exclude_id=category.id):
            raise ValidationError("A category with this name already exists")
        if category.type != data.type and self._is_referenced(category.id):
            raise ConflictError("Cannot change the type of a category in use")

        wanted = {name.lower(): name for name in data.subcategories}
        kept: list[SubCategory] = []
        for sub in category.subcategories:
            if sub.name.lower() in wanted:
                sub.name = wanted.pop(sub.name.lower())
                kept.append(sub)
            elif self._subcategory_in_use(sub.id):
                raise ConflictError(f"Subcategory {sub.name} is in use")
        kept.extend(SubCategory(name=name) for name in wanted.values())

        with self.unit_of_work() as uow:
            category.name = data.name.strip()
            category.type = data.type
            category.is_enabled = data.is_enabled
            category.subcategories = kept
            uow.commit()
        return category

    def delete(self, category_id: int) -> None:
        category = self.get(category_id)
        if self._is_referenced(category.id):
            raise ConflictError("Category is referenced by operations, templates or budgets")
        with self.unit_of_work() as uow:
            self.session.delete(category)
            uow.commit()

    def _is_referenced(self, category_id: int) -> bool:
        for model in (OperationAllocation, TemplateAllocation, BudgetCategory):
            count = self.session.scalar(
                select(func.count(model.id)).where(model.category_id == category_id)
            )
            if count:
                return True
        return False

    def _subcategory_in_use(self, sub_category_id: int) -> bool:
        for model in (OperationAllocation, TemplateAllocation):
            count = self.session.scalar(
                select(func.count(model.id)).where(
                    model.sub_category_id == sub_category_id
                )
            )
            if count:
                return True
        return False


class VendorService(_Service):
    def list_all(self, *, enabled_only: bool = False) -> list[Vendor]:
        stmt = select(Vendor).where(Vendor.user_id == self.user_id)
        if enabled_only:
            stmt = stmt.where(Vendor.is_enabled.is_(True))
        return list(self.session.scalars(stmt.order_by(Vendor.name)).all())

    def get(self, vendor_id: int) -> Vendor:
        return self._owned(Vendor, vendor_id, "Vendor")

    def create(self, data: VendorIn) -> Vendor:
        if self._name_taken(Vendor, data.name):
            raise ValidationError("A vendor with this name already exists")
        with self.unit_of_work() as uow:
            vendor = Vendor(
                user_id=self.user_id, name=data.name.strip(), is_enabled=data.is_enabled
            )
            self.session.add(vendor)
            uow.commit()
        return vendor

    def update(self, vendor_id: int, data: VendorIn) -> Vendor:
        vendor = self.get(vendor_id)
        if self._name_taken(Vendor, data.name, exclude_id=vendor.id):
            raise ValidationError("A vendor with this name already exists")
        with self.unit_of_work() as uow:
            vendor.name = data.name.strip()
            vendor.is_enabled = data.is_enabled
            uow.commit()
        return vendor

    def delete(self, vendor_id: int) -> None:
        vendor = self.get(vendor_id)
        for model in (Operation, Template):
            if self.session.scalar(
                select(func.count(model.id)).where(model.vendor_id == vendor.id)
            ):
                raise ConflictError("Vendor is referenced by operations or templates")
        with self.unit_of_work() as uow:
            self.session.delete(vendor)
            uow.commit()


def _reference_errors(
    session: Session,
    user_id: int,
    data: OperationIn | TemplateIn,
) -> tuple[list[str], dict[int, CategoryType]]:
    """Ownership checks for everything an operation or template points at."""
    errors: list[str] = []

    def owned(model, entity_id: Optional[int]):
        entity = session.get(model, entity_id) if entity_id else None
        return entity if entity and entity.user_id == user_id else None

    if not owned(Account, data.account_id):
        errors.append(f"Account {data.account_id} not found")
    if data.destination_account_id and not owned(Account, data.destination_account_id):
        errors.append(f"Account {data.destination_account_id} not found")
    if data.vendor_id and not owned(Vendor, data.vendor_id):
        errors.append(f"Vendor {data.vendor_id} not found")

    category_types: dict[int, CategoryType] = {}
    for entry in data.allocation:
        category = owned(Category, entry.category_id)
        if not category:
            errors.append(f"Category {entry.category_id} not found")
            continue
        category_types[category.id] = category.type
        if entry.sub_category_id is not None:
            sub = session.get(SubCategory, entry.sub_category_id)
            if not sub or sub.category_id != category.id:
                errors.append(
                    f"Subcategory {entry.sub_category_id} does not belong to "
                    f"category {entry.category_id}"
                )
    return errors, category_types


def _checked_category_type(
    session: Session, user_id: int, data: OperationIn | TemplateIn
) -> Optional[CategoryType]:
    errors, category_types = _reference_errors(session, user_id, data)
    errors.extend(
        validate_allocation(
            operation_type=data.type,
            total_amount_cents=data.total_amount_cents,
            account_id=data.account_id,
            destination_account_id=data.destination_account_id,
            allocation=data.allocation,
            category_types=category_types,
            declared_type=data.category_type,
        )
    )
    if errors:
        raise ValidationError(*errors)
    if data.type == OperationType.transfer:
        return None
    return allocation_category_type(data.allocation, category_types, data.category_type)


@dataclass
class OperationFilters:
    account_id: Optional[int] = None
    category_id: Optional[int] = None
    vendor_id: Optional[int] = None
    type: Optional[OperationType] = None
    query: Optional[str] = None


class OperationService(_Service):
    def get(self, operation_id: int) -> Operation:
        stmt = (
            select(Operation)
            .options(joinedload(Operation.allocations))
            .where(Operation.user_id == self.user_id, Operation.id == operation_id)
        )
        operation = self.session.scalars(stmt).unique().first()
        if not operation:
            raise NotFoundError("Operation not found")
        return operation

    def list(
        self,
        period: Optional[Period] = None,
        filters: Optional[OperationFilters] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Operation]:
        filters = filters or OperationFilters()
        stmt = (
            select(Operation)
            .options(joinedload(Operation.allocations))
            .where(Operation.user_id == self.user_id)
            .order_by(Operation.date.desc(), Operation.id.desc())
        )
        if period:
            stmt = stmt.where(Operation.date.between(period.start, period.end))
        if filters.account_id:
            stmt = stmt.where(
                or_(
                    Operation.account_id == filters.account_id,
                    Operation.destination_account_id == filters.account_id,
                )
            )
        if filters.vendor_id:
            stmt = stmt.where(Operation.vendor_id == filters.vendor_id)
        if filters.type:
            stmt = stmt.where(Operation.type == filters.type)
        if filters.category_id:
            stmt = stmt.where(
                Operation.id.in_(
                    select(OperationAllocation.operation_id).where(
                        OperationAllocation.category_id == filters.category_id
                    )
                )
            )
        if filters.query:
            like = f"%{filters.query.lower()}%"
            stmt = stmt.where(
                or_(
                    func.lower(Operation.title).like(like),
                    func.lower(Operation.comments).like(like),
                )
            )
        stmt = stmt.offset(offset).limit(limit)
        return list(self.session.scalars(stmt).unique().all())

    def add(self, data: OperationIn, uow: UnitOfWork) -> Operation:
        """Stage a new operation in ``uow`` without committing it."""
        category_type = _checked_category_type(self.session, self.user_id, data)
        operation = Operation(
            user_id=self.user_id,
            date=data.date,
            title=data.title.strip(),
            type=data.type,
            vendor_id=data.vendor_id,
            account_id=data.account_id,
            destination_account_id=data.destination_account_id,
            total_amount_cents=data.total_amount_cents,
            category_type=category_type,
            comments=data.comments,
            allocations=_operation_allocations(data.allocation),
        )
        self.session.add(operation)
        self.session.flush()
        uow.record(OperationCreated(OperationSnapshot.of(operation)))
        return operation

    def create(self, data: OperationIn) -> Operation:
        with self.unit_of_work() as uow:
            operation = self.add(data, uow)
            uow.commit()
        logger.info(
            f"operation_created: id={operation.id} user_id={self.user_id} "
            f"type={operation.type.value} total_cents={operation.total_amount_cents}"
        )
        return operation

    def update(self, operation_id: int, data: OperationIn) -> Operation:
        operation = self.get(operation_id)
        category_type = _checked_category_type(self.session, self.user_id, data)
        previous = OperationSnapshot.of(operation)
        with self.unit_of_work() as uow:
            operation.date = data.date
            operation.title = data.title.strip()
            operation.type = data.type
            operation.vendor_id = data.vendor_id
            operation.account_id = data.account_id
            operation.destination_account_id = data.destination_account_id
            operation.total_amount_cents = data.total_amount_cents
            operation.category_type = category_type
            operation.comments = data.comments
            operation.allocations = _operation_allocations(data.allocation)
            self.session.flush()
            uow.record(OperationUpdated(previous, OperationSnapshot.of(operation)))
            uow.commit()
        logger.info(f"operation_updated: id={operation.id} user_id={self.user_id}")
        return operation

    def delete(self, operation_id: int) -> None:
        operation = self.get(operation_id)
        snapshot = OperationSnapshot.of(operation)
        with self.unit_of_work() as uow:
            self.session.delete(operation)
            uow.record(OperationRemoved(snapshot))
            uow.commit()
        logger.info(f"operation_deleted: id={snapshot.operation_id} user_id={self.user_id}")


def _operation_allocations(entries: list[AllocationIn]) -> list[OperationAllocation]:
    return [
        OperationAllocation(
            category_id=entry.category_id,
            sub_category_id=entry.sub_category_id,
            amount_cents=entry.amount_cents,
            order=index,
        )
        for index, entry in enumerate(entries)
    ]


def _template_allocations(entries: list[AllocationIn]) -> list[TemplateAllocation]:
    return [
        TemplateAllocation(
            category_id=entry.category_id,
            sub_category_id=entry.sub_category_id,
            amount_cents=entry.amount_cents,
            order=index,
        )
        for index, entry in enumerate(entries)
    ]


class TemplateService(_Service):
    def list_all(self, *, enabled_only: bool = False) -> list[Template]:
        stmt = (
            select(Template)
            .options(joinedload(Template.allocations))
            .where(Template.user_id == self.user_id)
            .order_by(Template.title)
        )
        if enabled_only:
            stmt = stmt.where(Template.is_enabled.is_(True))
        return list(self.session.scalars(stmt).unique().all())

    def get(self, template_id: int) -> Template:
        return self._owned(Template, template_id, "Template")

    def create(self, data: TemplateIn) -> Template:
        category_type = _checked_category_type(self.session, self.user_id, data)
        with self.unit_of_work() as uow:
            template = Template(user_id=self.user_id)
            self._apply(template, data, category_type)
            self.session.add(template)
            uow.commit()
        return template

    def update(self, template_id: int, data: TemplateIn) -> Template:
        template = self.get(template_id)
        category_type = _checked_category_type(self.session, self.user_id, data)
        with self.unit_of_work() as uow:
            self._apply(template, data, category_type)
            uow.commit()
        return template

    @staticmethod
    def _apply(
        template: Template, data: TemplateIn, category_type: Optional[CategoryType]
    ) -> None:
        template.title = data.title.strip()
        template.type = data.type
        template.vendor_id = data.vendor_id
        template.account_id = data.account_id
        template.destination_account_id = data.destination_account_id
        template.total_amount_cents = data.total_amount_cents
        template.category_type = category_type
        template.is_enabled = data.is_enabled
        template.allocations = _template_allocations(data.allocation)

    def toggle(self, template_id: int, enabled: bool) -> Template:
        template = self.get(template_id)
        with self.unit_of_work() as uow:
            template.is_enabled = enabled
            uow.commit()
        return template

    def delete(self, template_id: int) -> None:
        template = self.get(template_id)
        if self.session.scalar(
            select(func.count(Bill.id)).where(Bill.template_id == template.id)
        ):
            raise ConflictError("Template is used by a bill")
        with self.unit_of_work() as uow:
            self.session.delete(template)
            uow.commit()

    def new_operation(
        self,
        template_id: int,
        *,
        operation_date: Optional[date] = None,
        total_amount_cents: Optional[int] = None,
    ) -> OperationIn:
        template = self.get(template_id)
        if total_amount_cents == 0:
            raise ValidationError("Total amount must not be zero")
        return materialize(
            template,
            date=operation_date,
            total_amount_cents=total_amount_cents,
            today=local_today(),
        )


class BillService(_Service):
    def list_all(self, *, enabled_only: bool = False) -> list[Bill]:
        stmt = select(Bill).where(Bill.user_id == self.user_id)
        if enabled_only:
            stmt = stmt.where(Bill.is_enabled.is_(True))
        return list(
            self.session.scalars(stmt.order_by(Bill.next_due_date, Bill.name)).all()
        )

    def get(self, bill_id: int) -> Bill:
        return self._owned(Bill, bill_id, "Bill")

    def _validate(
        self,
        data: BillIn,
        today: date,
        *,
        bill: Optional[Bill] = None,
    ) -> None:
        errors: list[str] = []
        if self._name_taken(Bill, data.name, exclude_id=bill.id if bill else None):
            errors.append("A bill with this name already exists")
        template = self.session.get(Template, data.template_id)
        if not template or template.user_id != self.user_id:
            errors.append(f"Template {data.template_id} not found")
        date_changed = bill is None or bill.next_due_date != data.next_due_date
        if date_changed and data.next_due_date <= today:
            errors.append("Next due date must be in the future")
        if errors:
            raise ValidationError(*errors)

    def create(self, data: BillIn, *, today: Optional[date] = None) -> Bill:
        self._validate(data, today or local_today())
        with self.unit_of_work() as uow:
            bill = Bill(user_id=self.user_id)
            self._apply(bill, data)
            self.session.add(bill)
            uow.commit()
        logger.info(f"bill_created: id={bill.id} user_id={self.user_id}")
        return bill

    def update(self, bill_id: int, data: BillIn, *, today: Optional[date] = None) -> Bill:
        bill = self.get(bill_id)
        self._validate(data, today or local_today(), bill=bill)
        with self.unit_of_work() as uow:
            self._apply(bill, data)
            uow.commit()
        return bill

    @staticmethod
    def _apply(bill: Bill, data: BillIn) -> None:
        bill.name = data.name.strip()
        bill.template_id = data.template_id
        bill.payment_frequency = data.payment_frequency
        bill.next_due_date = data.next_due_date
        bill.next_due_amount_cents = data.next_due_amount_cents
        bill.payment_day = data.payment_day
        bill.payment_month = data.payment_month
        bill.is_enabled = data.is_enabled

    def delete(self, bill_id: int) -> None:
        bill = self.get(bill_id)
        with self.unit_of_work() as uow:
            self.session.delete(bill)
            uow.commit()

    def pay(
        self, bill_id: int, data: BillPaymentIn, *, today: Optional[date] = None
    ) -> Bill:
        """Record a payment: one operation plus the advanced schedule, one commit."""
        bill = self.get(bill_id)
        if not bill.is_enabled:
            raise ValidationError("Bill is disabled")
        template = bill.template
        schedule = apply_payment(
            BillSchedule(
                frequency=bill.payment_frequency,
                next_due_date=bill.next_due_date,
                next_due_amount_cents=bill.next_due_amount_cents,
                payment_day=bill.payment_day,
                last_paid_date=bill.last_paid_date,
                last_paid_amount_cents=bill.last_paid_amount_cents,
            ),
            data.amount_cents,
            data.payment_date,
            today=today or local_today(),
        )
        signed_amount = (
            data.amount_cents if template.total_amount_cents > 0 else -data.amount_cents
        )
        draft = materialize(
            template,
            date=data.payment_date,
            title=f"Payment for {bill.name}",
            total_amount_cents=signed_amount,
            comments=data.comments,
        )
        operations = OperationService(
            self.session,
            self.user_id,
            dispatcher=self.dispatcher,
            cancel_event=self.cancel_event,
        )
        with self.unit_of_work() as uow:
            operation = operations.add(draft, uow)
            bill.next_due_date = schedule.next_due_date
            bill.next_due_amount_cents = schedule.next_due_amount_cents
            bill.last_paid_date = schedule.last_paid_date
            bill.last_paid_amount_cents = schedule.last_paid_amount_cents
            uow.commit()
        logger.info(
            f"bill_paid: id={bill.id} operation_id={operation.id} "
            f"amount_cents={data.amount_cents} next_due_date={bill.next_due_date} "
            f"due_cents={bill.next_due_amount_cents}"
        )
        return bill

    def replenish_due(self, today: Optional[date] = None) -> int:
        """Reset the amount due of settled bills whose next cycle is close."""
        today = today or local_today()
        horizon = today + timedelta(days=get_settings().bill_lookahead_days)
        stmt = (
            select(Bill)
            .options(joinedload(Bill.template))
            .where(
                Bill.user_id == self.user_id,
                Bill.is_enabled.is_(True),
                Bill.next_due_amount_cents == 0,
                Bill.next_due_date <= horizon,
            )
        )
        bills = list(self.session.scalars(stmt).all())
        with self.unit_of_work() as uow:
            for bill in bills:
                bill.next_due_amount_cents = abs(bill.template.total_amount_cents)
            uow.commit()
        if bills:
            logger.info(f"bills_replenished: user_id={self.user_id} count={len(bills)}")
        return len(bills)


@dataclass
class BudgetCategoryReport:
    category_id: int
    category_name: str
    budgeted_cents: int
    spent_cents: int

    @property
    def remaining_cents(self) -> int:
        return self.budgeted_cents - self.spent_cents


@dataclass
class BudgetReport:
    budget_id: int
    name: str
    start_date: date
    end_date: date
    amount_cents: int
    categories: list[BudgetCategoryReport] = field(default_factory=list)

    @property
    def spent_cents(self) -> int:
        return sum(c.spent_cents for c in self.categories)

    @property
    def remaining_cents(self) -> int:
        return self.amount_cents - self.spent_cents


class BudgetService(_Service):
    def list_all(self) -> list[Budget]:
        stmt = (
            select(Budget)
            .options(joinedload(Budget.categories))
            .where(Budget.user_id == self.user_id)
            .order_by(Budget.start_date.desc())
        )
        return list(self.session.scalars(stmt).unique().all())

    def get(self, budget_id: int) -> Budget:
        return self._owned(Budget, budget_id, "Budget")

    def current(self, on_date: Optional[date] = None) -> Optional[Budget]:
        on_date = on_date or local_today()
        stmt = select(Budget).where(
            Budget.user_id == self.user_id,
            Budget.start_date <= on_date,
            Budget.end_date >= on_date,
        )
        return self.session.scalars(stmt.order_by(Budget.start_date)).first()

    def _validate(self, data: BudgetIn, *, budget: Optional[Budget] = None) -> None:
        exclude_id = budget.id if budget else None
        errors: list[str] = []
        if self._name_taken(Budget, data.name, exclude_id=exclude_id):
            errors.append("A budget with this name already exists")

        seen: set[int] = set()
        for entry in data.categories:
            if entry.category_id in seen:
                errors.append(f"Category {entry.category_id} is budgeted more than once")
                continue
            seen.add(entry.category_id)
            category = self.session.get(Category, entry.category_id)
            if not category or category.user_id != self.user_id:
                errors.append(f"Category {entry.category_id} not found")

        window = Period(data.start_date, data.end_date)
        stmt = select(Budget).where(
            Budget.user_id == self.user_id,
            Budget.start_date <= window.end,
            Budget.end_date >= window.start,
        )
        if exclude_id is not None:
            stmt = stmt.where(Budget.id != exclude_id)
        overlapping = self.session.scalars(stmt).first()
        if overlapping:
            errors.append(f"Budget overlaps with {overlapping.name}")
        if errors:
            raise ValidationError(*errors)

    def create(self, data: BudgetIn) -> Budget:
        self._validate(data)
        with self.unit_of_work() as uow:
            budget = Budget(user_id=self.user_id)
            self._apply(budget, data)
            self.session.add(budget)
            uow.commit()
        logger.info(
            f"budget_created: id={budget.id} user_id={self.user_id} "
            f"start={budget.start_date} end={budget.end_date}"
        )
        return budget

    def update(self, budget_id: int, data: BudgetIn) -> Budget:
        budget = self.get(budget_id)
        self._validate(data, budget=budget)
        with self.unit_of_work() as uow:
            self._apply(budget, data)
            uow.commit()
        return budget

    @staticmethod
    def _apply(budget: Budget, data: BudgetIn) -> None:
        budget.name = data.name.strip()
        budget.amount_cents = data.amount_cents
        budget.start_date = data.start_date
        budget.end_date = data.end_date
        budget.categories = [
            BudgetCategory(category_id=entry.category_id, amount_cents=entry.amount_cents)
            for entry in data.categories
        ]

    def delete(self, budget_id: int) -> None:
        budget = self.get(budget_id)
        with self.unit_of_work() as uow:
            self.session.delete(budget)
            uow.commit()

    def report(self, budget_id: int) -> BudgetReport:
        budget = self.get(budget_id)
        category_ids = [entry.category_id for entry in budget.categories]
        spent_rows = self.session.execute(
            select(
                OperationAllocation.category_id,
                func.coalesce(func.sum(OperationAllocation.amount_cents), 0),
            )
            .join(Operation, OperationAllocation.operation_id == Operation.id)
            .where(
                Operation.user_id == self.user_id,
                Operation.type == OperationType.simple,
                Operation.date.between(budget.start_date, budget.end_date),
                OperationAllocation.category_id.in_(category_ids),
            )
            .group_by(OperationAllocation.category_id)
        ).all()
        spent = {row[0]: int(row[1] or 0) for row in spent_rows}
        return BudgetReport(
            budget_id=budget.id,
            name=budget.name,
            start_date=budget.start_date,
            end_date=budget.end_date,
            amount_cents=budget.amount_cents,
            categories=[
                BudgetCategoryReport(
                    category_id=entry.category_id,
                    category_name=entry.category.name,
                    budgeted_cents=entry.amount_cents,
                    spent_cents=spent.get(entry.category_id, 0),
                )
                for entry in budget.categories
            ],
        )

    def create_next_period(self, budget_id: int) -> Budget:
        budget = self.get(budget_id)
        window = next_period(Period(budget.start_date, budget.end_date))
        data = BudgetIn(
            name=next_period_name(budget.name, window.start),
            amount_cents=budget.amount_cents,
            start_date=window.start,
            end_date=window.end,
            categories=[
                BudgetCategoryIn(
                    category_id=entry.category_id, amount_cents=entry.amount_cents
                )
                for entry in budget.categories
            ],
        )
        return self.create(data)

    def roll_over_ended(self, today: Optional[date] = None) -> list[Budget]:
        """Create successors for ended budgets until one covers ``today``."""
        today = today or local_today()
        starts = set(
            self.session.scalars(
                select(Budget.start_date).where(Budget.user_id == self.user_id)
            ).all()
        )
        pending = list(
            self.session.scalars(
                select(Budget).where(
                    Budget.user_id == self.user_id, Budget.end_date < today
                )
            ).all()
        )
        created: list[Budget] = []
        while pending:
            budget = pending.pop(0)
            if budget.end_date + timedelta(days=1) in starts:
                continue
            try:
                successor = self.create_next_period(budget.id)
            except ServiceError as exc:
                logger.warning(
                    f"budget_rollover_skipped: id={budget.id} reason={exc}"
                )
                continue
            starts.add(successor.start_date)
            created.append(successor)
            if successor.end_date < today:
                pending.append(successor)
        return created
