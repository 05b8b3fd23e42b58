"""Call outcomes as seen by the circuit breaker."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Generic, TypeVar

T = TypeVar("T")


class OutcomeKind(StrEnum):
    """Classification of a finished call, decided by the outcome predicate."""

    HANDLED = "handled"
    UNHANDLED = "unhandled"


@dataclass(frozen=True, slots=True)
class Outcome(Generic[T]):
    """Result or exception produced by one protected call.

    Attributes:
        result: Value returned by the call, when it returned.
        exception: Exception raised by the call, when it raised.
    """

    result: T | None = None
    exception: BaseException | None = None

    @classmethod
    def from_result(cls, result: T) -> Outcome[T]:
        """Build an outcome for a call that returned ``result``."""
        return cls(result=result)

    @classmethod
    def from_exception(cls, exception: BaseException) -> Outcome[T]:
        """Build an outcome for a call that raised ``exception``."""
        return cls(exception=exception)

    @property
    def is_exception(self) -> bool:
        return self.exception is not None
