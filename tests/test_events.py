import threading
from datetime import date

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker

from database import Base
from errors import OperationCancelled
from events import (
    EventDispatcher,
    OperationCreated,
    OperationSnapshot,
    UnitOfWork,
    UserCreated,
)
from handlers import build_dispatcher
from models import Account, AccountType, CategoryType, Operation, OperationType
from schemas import AccountIn, AllocationIn, CategoryIn, OperationIn
from services import AccountService, CategoryService, OperationService


def make_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def _snapshot(**overrides) -> OperationSnapshot:
    values = dict(
        operation_id=1,
        user_id=1,
        type=OperationType.simple,
        account_id=1,
        destination_account_id=None,
        total_amount_cents=2500,
        category_type=CategoryType.expense,
    )
    values.update(overrides)
    return OperationSnapshot(**values)


def test_event_is_delivered_at_most_once():
    session = make_session()
    calls = []
    dispatcher = EventDispatcher()
    dispatcher.subscribe(UserCreated, lambda event, s: calls.append(event.user_id))

    event = UserCreated(user_id=7, name="Ada")
    assert dispatcher.dispatch(event, session) == 1
    assert event.is_published
    assert dispatcher.dispatch(event, session) == 0
    assert calls == [7]


def test_failing_handler_does_not_stop_the_others(caplog):
    session = make_session()
    seen = []

    def broken(event, s):
        raise RuntimeError("boom")

    dispatcher = EventDispatcher()
    dispatcher.subscribe(UserCreated, broken)
    dispatcher.subscribe(UserCreated, lambda event, s: seen.append("second"))

    with UnitOfWork(session, dispatcher) as uow:
        first = UserCreated(user_id=1, name="A")
        second = UserCreated(user_id=2, name="B")
        uow.record(first, second)
        uow.commit()

    assert seen == ["second", "second"]
    assert first.is_published and second.is_published
    assert "event_handler_failed: event=UserCreated handler=broken" in caplog.text


def test_events_dispatch_in_raise_order_after_commit():
    session = make_session()
    order = []
    dispatcher = EventDispatcher()
    dispatcher.subscribe(UserCreated, lambda event, s: order.append(event.name))

    uow = UnitOfWork(session, dispatcher)
    uow.record(UserCreated(1, "first"), UserCreated(2, "second"))
    assert order == []
    uow.commit()
    assert order == ["first", "second"]
    assert uow.pending_events == []


def test_failed_commit_discards_events(monkeypatch):
    session = make_session()
    calls = []
    dispatcher = EventDispatcher()
    dispatcher.subscribe(UserCreated, lambda event, s: calls.append(event))

    def fail_commit():
        raise RuntimeError("disk full")

    monkeypatch.setattr(session, "commit", fail_commit)
    uow = UnitOfWork(session, dispatcher)
    uow.record(UserCreated(1, "A"))
    with pytest.raises(RuntimeError):
        uow.commit()
    assert calls == []
    assert uow.pending_events == []


def test_cancelled_command_leaves_no_partial_state():
    session = make_session()
    account = AccountService(session, 1).create(
        AccountIn(name="Cash", type=AccountType.debit, balance_cents=10000)
    )
    food = CategoryService(session, 1).create(
        CategoryIn(name="Food", type=CategoryType.expense, subcategories=["Groceries"])
    )
    cancel = threading.Event()
    cancel.set()
    service = OperationService(session, 1, cancel_event=cancel)

    with pytest.raises(OperationCancelled):
        service.create(
            OperationIn(
                date=date(2024, 3, 1),
                title="Groceries",
                account_id=account.id,
                total_amount_cents=2500,
                allocation=[AllocationIn(category_id=food.id, amount_cents=2500)],
            )
        )

    assert session.scalars(select(Operation)).all() == []
    session.refresh(account)
    assert account.balance_cents == 10000


def test_missing_account_is_skipped_not_fatal(caplog):
    session = make_session()
    account = AccountService(session, 1).create(
        AccountIn(name="Savings", type=AccountType.debit, balance_cents=1000)
    )
    event = OperationCreated(
        _snapshot(
            type=OperationType.transfer,
            account_id=999,
            destination_account_id=account.id,
            total_amount_cents=500,
            category_type=None,
        )
    )
    build_dispatcher().dispatch(event, session)

    session.refresh(account)
    assert account.balance_cents == 1500
    assert "balance_adjustment_skipped: account_id=999" in caplog.text
    assert session.get(Account, 999) is None
