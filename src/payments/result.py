from dataclasses import dataclass
from typing import Generic, Self, TypeVar

from src.payments.errors import ErrorKind, PaymentError


T = TypeVar("T")


@dataclass(frozen=True)
class Result(Generic[T]):
    """Outcome of a payment operation: either a value or a PaymentError."""

    value: T | None = None
    error: PaymentError | None = None

    @classmethod
    def success(cls, value: T) -> Self:
        return cls(value=value)

    @classmethod
    def failure(cls, error: PaymentError) -> Self:
        return cls(error=error)

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def kind(self) -> ErrorKind | None:
        return self.error.kind if self.error else None

    def unwrap(self) -> T:
        """Return the value or raise the carried error."""
        if self.error is not None:
            raise self.error
        return self.value
