"""
Collaborator seams for the analytics core.

Patterns used:
- Protocol-based dependency injection (stores and sources are swapped in tests)
- Generic Result type so expected source failures are visible in signatures
"""

from datetime import datetime
from typing import Generic, Protocol, TypeVar, runtime_checkable

from capacity.domain.models import BiometricSample, DateRange, MetricKind, SymptomRecord
from capacity.services.contributors import ActivityEvent, MealEvent, SleepEvent

# Generic Result type for explicit error handling
ValueT = TypeVar("ValueT")
ErrorT = TypeVar("ErrorT", bound=BaseException)


class Result(Generic[ValueT, ErrorT]):
    """
    Explicit error handling without exceptions for expected failures.

    Why: Makes error paths visible in type system, forces handling decisions.
    When to use: A biometric query that times out or is denied is business as
    usual, not an exceptional condition.
    """

    def __init__(self, value: ValueT | None = None, error: ErrorT | None = None) -> None:
        if value is not None and error is not None:
            raise ValueError("Result cannot have both value and error")
        if value is None and error is None:
            raise ValueError("Result must have either value or error")
        self._value: ValueT | None = value
        self._error: ErrorT | None = error

    @classmethod
    def ok(cls, value: ValueT) -> "Result[ValueT, ErrorT]":
        return cls(value=value)

    @classmethod
    def err(cls, error: ErrorT) -> "Result[ValueT, ErrorT]":
        return cls(error=error)

    def is_ok(self) -> bool:
        return self._error is None

    def is_err(self) -> bool:
        return self._error is not None

    def unwrap(self) -> ValueT:
        if self._error is not None:
            raise self._error
        return self._value  # type: ignore

    def unwrap_or(self, default: ValueT) -> ValueT:
        return self._value if self._error is None else default  # type: ignore

    def unwrap_err(self) -> ErrorT:
        if self._error is None:
            raise ValueError("Called unwrap_err() on an Ok value")
        return self._error

    def __repr__(self) -> str:
        if self._error is not None:
            return f"Result.err({self._error!r})"
        return f"Result.ok({self._value!r})"


@runtime_checkable
class BiometricSource(Protocol):
    """
    Asynchronous provider of physiological samples.

    Why Protocol over ABC: Structural typing, easier mocking, less coupling.
    Design: Single method, async-first; failures come back as ``Result.err``.
    """

    async def query(
        self, kind: MetricKind, date_range: DateRange, sample_limit: int | None = None
    ) -> Result[list[BiometricSample], Exception]:
        """
        Fetch samples of ``kind`` inside ``date_range``.

        Returns:
            Samples sorted by end time, most recent first, capped at
            ``sample_limit`` when given; or the error that stopped the query.
        """
        ...


@runtime_checkable
class EventStore(Protocol):
    """Synchronous read-only access to logged events."""

    def symptoms(self, start: datetime, end: datetime) -> list[SymptomRecord]: ...

    def activities(self, start: datetime, end: datetime) -> list[ActivityEvent]: ...

    def meals(self, start: datetime, end: datetime) -> list[MealEvent]: ...

    def sleep(self, start: datetime, end: datetime) -> list[SleepEvent]: ...


@runtime_checkable
class KeyValueSettings(Protocol):
    """String key-value persistence used for baselines and preferences."""

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...
