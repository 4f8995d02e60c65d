from datetime import date

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker

from database import Base
from errors import ConflictError, ErrorKind, NotFoundError, ValidationError, capture
from models import AccountType, CategoryType, Operation, OperationType, PaymentFrequency
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
)
from services import (
    AccountService,
    BillService,
    BudgetService,
    CategoryService,
    OperationFilters,
    OperationService,
    TemplateService,
    UserService,
)


def make_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def _account(session, name, type=AccountType.debit, balance=0):
    return AccountService(session, 1).create(
        AccountIn(name=name, type=type, balance_cents=balance)
    )


def _category(session, name, type=CategoryType.expense, subs=("General",)):
    return CategoryService(session, 1).create(
        CategoryIn(name=name, type=type, subcategories=list(subs))
    )


def _expense(account, category, total, day=date(2024, 3, 5), title="Expense"):
    return OperationIn(
        date=day,
        title=title,
        account_id=account.id,
        total_amount_cents=total,
        allocation=[AllocationIn(category_id=category.id, amount_cents=total)],
    )


def _balance(session, account) -> int:
    session.refresh(account)
    return account.balance_cents


def test_debit_expense_updates_balance():
    session = make_session()
    cash = _account(session, "Cash", balance=10000)
    food = _category(session, "Food")

    OperationService(session, 1).create(_expense(cash, food, 2500))

    assert _balance(session, cash) == 7500
    session.refresh(cash)
    assert cash.version == 2


def test_credit_expense_increases_debt():
    session = make_session()
    card = _account(session, "Card", type=AccountType.credit)
    food = _category(session, "Food")

    operation = OperationService(session, 1).create(_expense(card, food, 4000))

    assert operation.category_type == CategoryType.expense
    assert _balance(session, card) == 4000


def test_transfer_moves_money_between_accounts():
    session = make_session()
    chequing = _account(session, "Chequing", balance=20000)
    savings = _account(session, "Savings", balance=1000)

    operation = OperationService(session, 1).create(
        OperationIn(
            date=date(2024, 3, 5),
            title="Move to savings",
            type=OperationType.transfer,
            account_id=chequing.id,
            destination_account_id=savings.id,
            total_amount_cents=5000,
        )
    )

    assert operation.category_type is None
    assert _balance(session, chequing) == 15000
    assert _balance(session, savings) == 6000


def test_update_and_delete_reverse_previous_adjustment():
    session = make_session()
    cash = _account(session, "Cash", balance=10000)
    card = _account(session, "Card", type=AccountType.credit)
    food = _category(session, "Food")
    service = OperationService(session, 1)

    operation = service.create(_expense(cash, food, 2500))
    service.update(operation.id, _expense(cash, food, 3000))
    assert _balance(session, cash) == 7000

    service.update(operation.id, _expense(card, food, 3000))
    assert _balance(session, cash) == 10000
    assert _balance(session, card) == 3000

    service.delete(operation.id)
    assert _balance(session, card) == 0
    assert session.scalars(select(Operation)).all() == []


def test_account_type_is_locked_once_operations_exist():
    session = make_session()
    cash = _account(session, "Cash", balance=10000)
    food = _category(session, "Food")
    accounts = AccountService(session, 1)
    service = OperationService(session, 1)

    operation = service.create(_expense(cash, food, 2500))
    assert _balance(session, cash) == 7500

    with pytest.raises(ConflictError):
        accounts.update(cash.id, AccountUpdateIn(name="Cash", type=AccountType.credit))
    assert accounts.get(cash.id).type == AccountType.debit

    accounts.update(cash.id, AccountUpdateIn(name="Wallet", type=AccountType.debit))
    service.delete(operation.id)
    assert _balance(session, cash) == 10000

    accounts.update(cash.id, AccountUpdateIn(name="Wallet", type=AccountType.credit))
    assert accounts.get(cash.id).type == AccountType.credit


def test_invalid_operation_reports_all_errors_and_writes_nothing():
    session = make_session()
    cash = _account(session, "Cash", balance=10000)
    food = _category(session, "Food")
    salary = _category(session, "Salary", type=CategoryType.income)

    with pytest.raises(ValidationError) as exc:
        OperationService(session, 1).create(
            OperationIn(
                date=date(2024, 3, 5),
                title="Mixed",
                account_id=cash.id,
                total_amount_cents=2500,
                allocation=[
                    AllocationIn(category_id=food.id, amount_cents=1000),
                    AllocationIn(category_id=salary.id, amount_cents=1000),
                    AllocationIn(category_id=999, amount_cents=499),
                ],
            )
        )

    messages = exc.value.messages
    assert "Category 999 not found" in messages
    assert any("sum of the allocations" in m for m in messages)
    assert any("is income, expected expense" in m for m in messages)
    assert session.scalars(select(Operation)).all() == []
    assert _balance(session, cash) == 10000


def test_list_operations_by_criteria():
    session = make_session()
    cash = _account(session, "Cash", balance=10000)
    food = _category(session, "Food")
    rent = _category(session, "Rent")
    service = OperationService(session, 1)
    service.create(_expense(cash, food, 1000, day=date(2024, 3, 1), title="Bakery"))
    service.create(_expense(cash, rent, 5000, day=date(2024, 3, 2), title="March rent"))

    by_category = service.list(filters=OperationFilters(category_id=rent.id))
    assert [op.title for op in by_category] == ["March rent"]
    by_query = service.list(filters=OperationFilters(query="bak"))
    assert [op.title for op in by_query] == ["Bakery"]


def test_correct_balance_uses_compare_and_swap():
    session = make_session()
    cash = _account(session, "Cash", balance=10000)
    service = AccountService(session, 1)

    service.correct_balance(cash.id, 12345)
    assert _balance(session, cash) == 12345

    with pytest.raises(ConflictError):
        service.correct_balance(cash.id, 0, expected_balance_cents=999)
    assert _balance(session, cash) == 12345

    result = capture(service.correct_balance, 424242, 0)
    assert not result.is_ok
    assert result.error.kind == ErrorKind.not_found


def test_delete_refused_while_referenced():
    session = make_session()
    cash = _account(session, "Cash", balance=10000)
    food = _category(session, "Food")
    OperationService(session, 1).create(_expense(cash, food, 100))

    with pytest.raises(ConflictError):
        AccountService(session, 1).delete(cash.id)
    with pytest.raises(ConflictError):
        CategoryService(session, 1).delete(food.id)


def test_other_users_rows_are_not_found():
    session = make_session()
    cash = _account(session, "Cash")
    with pytest.raises(NotFoundError):
        AccountService(session, 2).get(cash.id)


def test_new_user_is_provisioned_with_defaults():
    session = make_session()
    user = UserService(session).create(UserIn(name="Ada", email="ada@example.com"))

    accounts = AccountService(session, user.id).list_all()
    assert sorted((a.name, a.type) for a in accounts) == [
        ("Cash", AccountType.debit),
        ("Chequing", AccountType.debit),
        ("Credit Card", AccountType.credit),
        ("Savings", AccountType.debit),
    ]
    categories = {c.name: c for c in CategoryService(session, user.id).list_all()}
    assert len(categories) == 7
    assert [s.name for s in categories["Food"].subcategories] == [
        "Groceries",
        "Restaurants",
    ]
    assert categories["Salary"].type == CategoryType.income

    with pytest.raises(ValidationError):
        UserService(session).create(UserIn(name="Ada", email="ADA@example.com"))


def _rent_template(session, account, category, total=10000):
    return TemplateService(session, 1).create(
        TemplateIn(
            title="Rent",
            account_id=account.id,
            total_amount_cents=total,
            allocation=[AllocationIn(category_id=category.id, amount_cents=total)],
        )
    )


def test_bill_partial_then_full_payment():
    session = make_session()
    chequing = _account(session, "Chequing", balance=50000)
    rent = _category(session, "Rent")
    template = _rent_template(session, chequing, rent)
    bills = BillService(session, 1)
    bill = bills.create(
        BillIn(
            name="Rent",
            template_id=template.id,
            payment_frequency=PaymentFrequency.monthly,
            next_due_date=date(2024, 3, 1),
            next_due_amount_cents=10000,
            payment_day=1,
        ),
        today=date(2024, 2, 15),
    )

    today = date(2024, 2, 20)
    bills.pay(bill.id, BillPaymentIn(payment_date=today, amount_cents=6000), today=today)
    assert bill.next_due_amount_cents == 4000
    assert bill.next_due_date == date(2024, 3, 1)

    bills.pay(bill.id, BillPaymentIn(payment_date=today, amount_cents=4000), today=today)
    assert bill.next_due_amount_cents == 0
    assert bill.next_due_date == date(2024, 4, 1)
    assert bill.last_paid_amount_cents == 4000

    operations = OperationService(session, 1).list()
    assert sorted(op.total_amount_cents for op in operations) == [4000, 6000]
    assert all(op.title == "Payment for Rent" for op in operations)
    assert _balance(session, chequing) == 40000


def test_bill_payment_rejected_leaves_no_operation():
    session = make_session()
    chequing = _account(session, "Chequing", balance=50000)
    rent = _category(session, "Rent")
    template = _rent_template(session, chequing, rent)
    bills = BillService(session, 1)
    bill = bills.create(
        BillIn(
            name="Rent",
            template_id=template.id,
            next_due_date=date(2024, 3, 1),
            next_due_amount_cents=10000,
            payment_day=1,
        ),
        today=date(2024, 2, 15),
    )

    with pytest.raises(ValidationError):
        bills.pay(
            bill.id,
            BillPaymentIn(payment_date=date(2024, 3, 10), amount_cents=100),
            today=date(2024, 2, 20),
        )
    assert OperationService(session, 1).list() == []
    assert bill.next_due_amount_cents == 10000


def test_bill_validation():
    session = make_session()
    chequing = _account(session, "Chequing")
    rent = _category(session, "Rent")
    template = _rent_template(session, chequing, rent)
    bills = BillService(session, 1)
    data = BillIn(
        name="Rent",
        template_id=template.id,
        next_due_date=date(2024, 3, 1),
        next_due_amount_cents=0,
        payment_day=1,
    )
    bills.create(data, today=date(2024, 2, 1))

    with pytest.raises(ValidationError) as exc:
        bills.create(
            data.model_copy(update={"template_id": 999}), today=date(2024, 3, 1)
        )
    assert exc.value.messages == [
        "A bill with this name already exists",
        "Template 999 not found",
        "Next due date must be in the future",
    ]


def test_replenish_due_resets_settled_bills():
    session = make_session()
    chequing = _account(session, "Chequing")
    rent = _category(session, "Rent")
    template = _rent_template(session, chequing, rent, total=12000)
    bills = BillService(session, 1)
    bill = bills.create(
        BillIn(
            name="Rent",
            template_id=template.id,
            next_due_date=date(2024, 4, 1),
            next_due_amount_cents=0,
            payment_day=1,
        ),
        today=date(2024, 3, 1),
    )

    assert bills.replenish_due(date(2024, 3, 20)) == 0
    assert bills.replenish_due(date(2024, 3, 27)) == 1
    assert bill.next_due_amount_cents == 12000
    assert bills.replenish_due(date(2024, 3, 28)) == 0


def _march_budget(session, food, rent):
    return BudgetService(session, 1).create(
        BudgetIn(
            name="Household",
            amount_cents=30000,
            start_date=date(2024, 3, 1),
            end_date=date(2024, 3, 31),
            categories=[
                BudgetCategoryIn(category_id=food.id, amount_cents=20000),
                BudgetCategoryIn(category_id=rent.id, amount_cents=10000),
            ],
        )
    )


def test_budget_report_sums_allocations_in_window():
    session = make_session()
    cash = _account(session, "Cash", balance=100000)
    food = _category(session, "Food")
    rent = _category(session, "Rent")
    budget = _march_budget(session, food, rent)
    operations = OperationService(session, 1)
    operations.create(_expense(cash, food, 4500, day=date(2024, 3, 1)))
    operations.create(_expense(cash, food, 3000, day=date(2024, 3, 31)))
    operations.create(_expense(cash, food, 9999, day=date(2024, 4, 1)))

    report = BudgetService(session, 1).report(budget.id)

    assert report.spent_cents == 7500
    assert report.remaining_cents == 22500
    lines = {line.category_name: line for line in report.categories}
    assert lines["Food"].spent_cents == 7500
    assert lines["Food"].remaining_cents == 12500
    assert lines["Rent"].spent_cents == 0


def test_budget_overlap_and_next_period():
    session = make_session()
    food = _category(session, "Food")
    rent = _category(session, "Rent")
    budget = _march_budget(session, food, rent)
    service = BudgetService(session, 1)

    with pytest.raises(ValidationError) as exc:
        service.create(
            BudgetIn(
                name="Overlap",
                amount_cents=100,
                start_date=date(2024, 3, 31),
                end_date=date(2024, 4, 5),
                categories=[BudgetCategoryIn(category_id=food.id, amount_cents=100)],
            )
        )
    assert exc.value.messages == ["Budget overlaps with Household"]

    successor = service.create_next_period(budget.id)
    assert successor.name == "Household - Apr-2024"
    assert (successor.start_date, successor.end_date) == (
        date(2024, 4, 1),
        date(2024, 4, 30),
    )
    assert successor.amount_cents == 30000
    assert sorted(c.category_id for c in successor.categories) == [food.id, rent.id]
    assert service.current(date(2024, 4, 15)).id == successor.id


def test_roll_over_ended_catches_up_to_today():
    session = make_session()
    food = _category(session, "Food")
    rent = _category(session, "Rent")
    _march_budget(session, food, rent)
    service = BudgetService(session, 1)

    created = service.roll_over_ended(date(2024, 5, 10))

    assert [b.name for b in created] == ["Household - Apr-2024", "Household - May-2024"]
    assert service.roll_over_ended(date(2024, 5, 10)) == []
