from __future__ import annotations

from typing import Any


class CreditWorkflowError(Exception):
    """Base class for every error raised by the ledger and workflow engines."""


class NotFoundError(CreditWorkflowError):
    """Raised when a referenced row does not exist."""


class AccountNotFoundError(NotFoundError):
    """Raised when a credit account id is missing from the store."""


class HoldNotFoundError(NotFoundError):
    """Raised when a credit hold id is missing from the store."""


class RequestNotFoundError(NotFoundError):
    """Raised when an approval request id is missing from the store."""


class InvalidArgumentError(CreditWorkflowError, ValueError):
    """Raised when an amount, enum tag or required field is invalid."""


class InvalidTransactionTypeError(InvalidArgumentError):
    """Raised when a transaction type does not belong to the expected partition."""


class InvalidStateError(CreditWorkflowError):
    """Raised when an operation is not legal from the current status."""


class InvalidHoldStateError(InvalidStateError):
    def __init__(self, status: Any, operation: str) -> None:
        self.status = status
        self.operation = operation
        super().__init__(f"Cannot {operation} hold with status: {_tag(status)}")


class InvalidTransitionError(InvalidStateError):
    def __init__(self, status: Any, operation: str) -> None:
        self.status = status
        self.operation = operation
        super().__init__(f"Cannot {operation} request with status: {_tag(status)}")


class DuplicateRequestError(CreditWorkflowError):
    """Raised when an idempotency key or unique constraint is reused with different input."""


class InsufficientCreditsError(CreditWorkflowError):
    def __init__(self, available: int, required: int) -> None:
        self.available = available
        self.required = required
        super().__init__(
            f"Insufficient credits. Available: {available}, Required: {required}"
        )


class ForbiddenError(CreditWorkflowError):
    """Raised when the caller is not allowed to act on a request."""


class NoEligibleApproverError(CreditWorkflowError):
    """Raised when routing needs an approver and the team has none."""


class TransientStoreError(CreditWorkflowError):
    """Raised when a transaction keeps failing with retryable database errors."""


def _tag(value: Any) -> str:
    return getattr(value, "value", value)
