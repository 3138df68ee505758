"""
Error taxonomy shared by every component of the donation pipeline.

Four kinds exist:
- ValidationError: caller supplied bad or incomplete input
- NotFoundError: a referenced entity is absent
- ExternalError: the payment gateway failed or returned unusable data
- DatabaseError: persistence failure, or anything unexpected while reconciling

Typed errors cross component boundaries unchanged; untyped exceptions are
wrapped into the most specific kind where they are caught.
"""
from dataclasses import dataclass
from typing import Any, Callable, Generic, Optional, TypeVar

T = TypeVar("T")


class DonationError(Exception):
    """Base class for the typed errors of the donation pipeline."""

    code = "DonationError"
    status_code = 500

    def __init__(
        self,
        message: str,
        *,
        tx_id: Optional[str] = None,
        original_error: Optional[BaseException] = None,
    ):
        """
        Initialize error.

        Args:
            message: Human readable message
            tx_id: Transaction id the failing operation was keyed on
            original_error: Exception this error wraps, if any
        """
        super().__init__(message)
        self.message = message
        self.tx_id = tx_id
        self.original_error = original_error

    def to_dict(self) -> dict[str, Any]:
        """Serialize for API error bodies."""
        body: dict[str, Any] = {"message": self.message, "code": self.code}
        if self.tx_id:
            body["txId"] = self.tx_id
        return body


class ValidationError(DonationError):
    """Raised when input is missing, malformed or incomplete."""

    code = "ValidationError"
    status_code = 409


class NotFoundError(DonationError):
    """Raised when a referenced entity does not exist."""

    code = "NotFoundError"
    status_code = 404


class ExternalError(DonationError):
    """Raised when the payment gateway fails or answers with unusable data."""

    code = "ExternalError"
    status_code = 502

    def __init__(
        self,
        message: str,
        *,
        gateway_code: Optional[str] = None,
        tx_id: Optional[str] = None,
        original_error: Optional[BaseException] = None,
    ):
        super().__init__(message, tx_id=tx_id, original_error=original_error)
        self.gateway_code = gateway_code


class DatabaseError(DonationError):
    """Raised when persistence fails or reconciliation hits an unexpected error."""

    code = "DatabaseError"
    status_code = 500


def passthrough_or_wrap(
    error: BaseException, wrapper: Callable[[BaseException], DonationError]
) -> DonationError:
    """
    Apply the propagation rule at a component boundary.

    Typed errors are returned unchanged. Anything else is wrapped with
    ``wrapper`` and chained to the original exception.

    Args:
        error: Exception caught at the boundary
        wrapper: Builds the typed error for an untyped exception

    Returns:
        DonationError: Error to raise from the boundary
    """
    if isinstance(error, DonationError):
        return error
    wrapped = wrapper(error)
    if wrapped.original_error is None:
        wrapped.original_error = error
    wrapped.__cause__ = error
    return wrapped


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """Result of one unit of work: a value or one of the typed errors."""

    value: Optional[T] = None
    error: Optional[DonationError] = None

    @classmethod
    def success(cls, value: Optional[T] = None) -> "Outcome[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: DonationError) -> "Outcome[T]":
        return cls(error=error)

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> Optional[T]:
        """Return the value, raising the carried error on failure."""
        if self.error is not None:
            raise self.error
        return self.value
