"""
Result — a typed outcome that is either a ``Success`` or a ``Failure``.

Every fallible vault operation (crypto, remote repository, authentication)
returns a Result instead of raising for expected failures. Callers decide
when to unwrap::

    result = crypto.decrypt(blob, key)
    match result:
        case Success(value):
            ...
        case Failure(error):
            logger.warning("decrypt failed: %s", error.message)

Transformations never unwrap: ``map`` only touches a success value,
``map_error`` only touches an error, and ``flat_map`` short-circuits on the
first failure without calling its transform.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Generic, Optional, TypeVar

T = TypeVar("T")
E = TypeVar("E")
U = TypeVar("U")
F = TypeVar("F")


class Result(ABC, Generic[T, E]):
    """Base of the two-variant outcome type."""

    @property
    def is_success(self) -> bool:
        return isinstance(self, Success)

    @property
    def is_failure(self) -> bool:
        return isinstance(self, Failure)

    @property
    @abstractmethod
    def value_or_none(self) -> Optional[T]:
        """Success value, or None for a failure."""

    @property
    @abstractmethod
    def error_or_none(self) -> Optional[E]:
        """Error, or None for a success."""

    @abstractmethod
    def value_or(self, default: Any) -> Any:
        """Success value, or ``default`` for a failure."""

    @abstractmethod
    def unwrap(self) -> T:
        """Return the success value or raise the carried error.

        Raises:
            The error itself when it is an exception, otherwise ValueError.
        """

    @abstractmethod
    def map(self, transform: Callable[[T], U]) -> "Result[U, E]":
        """Transform the success value, leaving a failure untouched."""

    @abstractmethod
    def map_error(self, transform: Callable[[E], F]) -> "Result[T, F]":
        """Transform the error, leaving a success untouched."""

    @abstractmethod
    def flat_map(self, transform: Callable[[T], "Result[U, E]"]) -> "Result[U, E]":
        """Chain another Result-producing operation on the success value."""


@dataclass(frozen=True)
class Success(Result[T, E]):
    """A successful outcome carrying ``value``."""

    value: T

    @property
    def value_or_none(self) -> Optional[T]:
        return self.value

    @property
    def error_or_none(self) -> None:
        return None

    def value_or(self, default: Any) -> T:
        return self.value

    def unwrap(self) -> T:
        return self.value

    def map(self, transform: Callable[[T], U]) -> "Result[U, E]":
        return Success(transform(self.value))

    def map_error(self, transform: Callable[[E], F]) -> "Result[T, F]":
        return Success(self.value)

    def flat_map(self, transform: Callable[[T], Result[U, E]]) -> Result[U, E]:
        return transform(self.value)

    def __repr__(self) -> str:
        return f"Success({self.value!r})"


@dataclass(frozen=True)
class Failure(Result[T, E]):
    """A failed outcome carrying ``error``."""

    error: E

    @property
    def value_or_none(self) -> None:
        return None

    @property
    def error_or_none(self) -> Optional[E]:
        return self.error

    def value_or(self, default: Any) -> Any:
        return default

    def unwrap(self) -> T:
        if isinstance(self.error, BaseException):
            raise self.error
        raise ValueError(f"Called unwrap() on a failure: {self.error!r}")

    def map(self, transform: Callable[[T], U]) -> "Result[U, E]":
        return Failure(self.error)

    def map_error(self, transform: Callable[[E], F]) -> "Result[T, F]":
        return Failure(transform(self.error))

    def flat_map(self, transform: Callable[[T], Result[U, E]]) -> Result[U, E]:
        return Failure(self.error)

    def __repr__(self) -> str:
        return f"Failure({self.error!r})"
