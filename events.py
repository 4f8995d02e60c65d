"""Post-commit domain events.

Command services never attach events to entities. They hand them to the
``UnitOfWork`` that wraps their session; the unit of work commits first and
only then dispatches, in raise order, through a dispatch table built once at
startup (see ``handlers.build_dispatcher``).

Delivery is best effort: an event is flagged as published before its handlers
run so it can never be delivered twice, and a failing handler is logged and
skipped without undoing the write that raised the event.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

from sqlalchemy.orm import Session

from errors import OperationCancelled, ServiceError
from models import CategoryType, Operation, OperationType

logger = logging.getLogger(__name__)


class DomainEvent:
    is_published: bool = False


@dataclass(frozen=True)
class OperationSnapshot:
    operation_id: int
    user_id: int
    type: OperationType
    account_id: int
    destination_account_id: Optional[int]
    total_amount_cents: int
    category_type: Optional[CategoryType]

    @classmethod
    def of(cls, operation: Operation) -> "OperationSnapshot":
        return cls(
            operation_id=operation.id,
            user_id=operation.user_id,
            type=operation.type,
            account_id=operation.account_id,
            destination_account_id=operation.destination_account_id,
            total_amount_cents=operation.total_amount_cents,
            category_type=operation.category_type,
        )


@dataclass
class OperationCreated(DomainEvent):
    operation: OperationSnapshot


@dataclass
class OperationUpdated(DomainEvent):
    previous: OperationSnapshot
    current: OperationSnapshot


@dataclass
class OperationRemoved(DomainEvent):
    operation: OperationSnapshot


@dataclass
class UserCreated(DomainEvent):
    user_id: int
    name: str


E = TypeVar("E", bound=DomainEvent)
Handler = Callable[[E, Session], None]


class EventDispatcher:
    def __init__(self) -> None:
        self._handlers: dict[type, list[Callable[..., None]]] = {}

    def subscribe(self, event_type: type[E], handler: Handler) -> None:
        self._handlers.setdefault(event_type, []).append(handler)

    def handlers_for(self, event_type: type) -> list[Callable[..., None]]:
        return list(self._handlers.get(event_type, []))

    def dispatch(self, event: DomainEvent, session: Session) -> int:
        """Deliver one event; returns how many handlers were attempted."""
        event_name = type(event).__name__
        if event.is_published:
            logger.debug(f"event_skipped: event={event_name} reason=already_published")
            return 0
        event.is_published = True
        handlers = self.handlers_for(type(event))
        for handler in handlers:
            handler_name = getattr(handler, "__name__", repr(handler))
            try:
                handler(event, session)
            except ServiceError as exc:
                session.rollback()
                logger.warning(
                    f"event_handler_failed: event={event_name} handler={handler_name} "
                    f"kind={exc.kind.value} error={exc}"
                )
            except Exception:
                session.rollback()
                logger.exception(
                    f"event_handler_failed: event={event_name} handler={handler_name}"
                )
        logger.info(f"event_dispatched: event={event_name} handlers={len(handlers)}")
        return len(handlers)


class UnitOfWork:
    """Commit boundary that owns the events raised while it is open."""

    def __init__(
        self,
        session: Session,
        dispatcher: EventDispatcher,
        *,
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        self.session = session
        self.dispatcher = dispatcher
        self.cancel_event = cancel_event
        self._events: list[DomainEvent] = []

    def __enter__(self) -> "UnitOfWork":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is not None:
            self.rollback()

    @property
    def pending_events(self) -> list[DomainEvent]:
        return list(self._events)

    def record(self, *events: DomainEvent) -> None:
        self._events.extend(events)

    def rollback(self) -> None:
        self._events.clear()
        self.session.rollback()

    def commit(self) -> None:
        if self.cancel_event is not None and self.cancel_event.is_set():
            self.rollback()
            raise OperationCancelled("Operation cancelled before commit")
        try:
            self.session.commit()
        except Exception:
            self.rollback()
            raise
        events, self._events = self._events, []
        for event in events:
            if not event.is_published:
                self.dispatcher.dispatch(event, self.session)
