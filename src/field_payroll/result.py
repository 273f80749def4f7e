"""Tagged success/failure results for domain operations.

Expected domain failures (guard violations, illegal transitions, missing
records) are returned as ``Failure`` values instead of being raised, so that
callers handle them explicitly. Storage faults are raised as
``PersistenceError`` instead.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Generic, TypeVar, Union

T = TypeVar("T")


class ErrorKind(str, Enum):
    """Categories of domain failure."""

    GUARD_VIOLATION = "guard_violation"
    INVALID_TRANSITION = "invalid_transition"
    NOT_FOUND = "not_found"
    PERSISTENCE_FAILURE = "persistence_failure"


@dataclass(frozen=True)
class DomainError:
    """A human-readable failure with its category."""

    kind: ErrorKind
    message: str
    details: tuple[str, ...] = field(default_factory=tuple)

    def __str__(self) -> str:
        return self.message


@dataclass(frozen=True)
class Success(Generic[T]):
    """Successful outcome carrying a value and an informational message."""

    value: T
    message: str = ""

    @property
    def is_success(self) -> bool:
        return True

    @property
    def is_failure(self) -> bool:
        return False

    def unwrap(self) -> T:
        return self.value


@dataclass(frozen=True)
class Failure:
    """Failed outcome carrying the domain error."""

    error: DomainError

    @property
    def is_success(self) -> bool:
        return False

    @property
    def is_failure(self) -> bool:
        return True

    @property
    def kind(self) -> ErrorKind:
        return self.error.kind

    @property
    def message(self) -> str:
        return self.error.message

    def unwrap(self):
        raise ValueError(f"Called unwrap() on a failure: {self.error.message}")

    @classmethod
    def guard_violation(cls, message: str, *details: str) -> Failure:
        return cls(DomainError(ErrorKind.GUARD_VIOLATION, message, details))

    @classmethod
    def invalid_transition(cls, message: str, *details: str) -> Failure:
        return cls(DomainError(ErrorKind.INVALID_TRANSITION, message, details))

    @classmethod
    def not_found(cls, message: str, *details: str) -> Failure:
        return cls(DomainError(ErrorKind.NOT_FOUND, message, details))


Result = Union[Success[T], Failure]
