from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Generic, Optional, TypeVar

T = TypeVar("T")


class ErrorKind(str, Enum):
    validation = "validation"
    not_found = "not_found"
    conflict = "conflict"
    unauthorized = "unauthorized"
    forbidden = "forbidden"
    failure = "failure"


class ServiceError(ValueError):
    """Base for every anticipated failure raised by the services.

    Carries one or more human readable messages so that validation can report
    every violation at once.
    """

    kind = ErrorKind.failure

    def __init__(self, *messages: str) -> None:
        self.messages = [m for m in messages if m] or [self.__class__.__name__]
        super().__init__("; ".join(self.messages))


class ValidationError(ServiceError):
    kind = ErrorKind.validation


class NotFoundError(ServiceError):
    kind = ErrorKind.not_found


class ConflictError(ServiceError):
    kind = ErrorKind.conflict


class UnauthorizedError(ServiceError):
    kind = ErrorKind.unauthorized


class ForbiddenError(ServiceError):
    kind = ErrorKind.forbidden


class IntegrationFailure(ServiceError):
    kind = ErrorKind.failure


class OperationCancelled(ServiceError):
    kind = ErrorKind.failure


@dataclass(frozen=True)
class Error:
    kind: ErrorKind
    message: str
    details: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class Result(Generic[T]):
    value: Optional[T] = None
    error: Optional[Error] = None

    @property
    def is_ok(self) -> bool:
        return self.error is None

    @classmethod
    def ok(cls, value: T) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def err(cls, kind: ErrorKind, message: str, details: Optional[list[str]] = None):
        return cls(error=Error(kind=kind, message=message, details=details or [message]))

    def unwrap(self) -> T:
        if self.error is not None:
            raise RuntimeError(f"{self.error.kind.value}: {self.error.message}")
        return self.value  # type: ignore[return-value]


def capture(fn: Callable[..., T], *args, **kwargs) -> Result[T]:
    """Run a service call and fold anticipated failures into a Result."""
    try:
        return Result.ok(fn(*args, **kwargs))
    except ServiceError as exc:
        return Result.err(exc.kind, str(exc), list(exc.messages))
