"""
Custom Exception Hierarchy

Provides structured exceptions for consistent error handling across the ledger,
its stores and the HTTP layer.
"""
from decimal import Decimal
from typing import Any
from enum import Enum


class ErrorCode(str, Enum):
    """Standard error codes for API responses"""

    # General errors (1xxx)
    INTERNAL_ERROR = "ERR_1000"
    VALIDATION_ERROR = "ERR_1001"
    NOT_FOUND = "ERR_1002"
    CONFLICT = "ERR_1003"

    # Customer errors (2xxx)
    CUSTOMER_NOT_FOUND = "ERR_2001"
    MEMBERSHIP_ID_EXHAUSTED = "ERR_2002"
    MEMBERSHIP_ID_TAKEN = "ERR_2003"

    # Transaction errors (3xxx)
    INSUFFICIENT_BALANCE = "ERR_3001"
    POSSIBLE_DUPLICATE = "ERR_3002"
    INVALID_AMOUNT = "ERR_3003"

    # Store errors (5xxx)
    STORE_UNAVAILABLE = "ERR_5001"


def _money(value: Decimal) -> str:
    return f"{value:.2f}"


class AppException(Exception):
    """Base exception for all application errors"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        status_code: int = 500,
        details: dict[str, Any] | None = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for API response"""
        return {
            "error": {
                "code": self.error_code.value,
                "message": self.message,
                "details": self.details
            }
        }


class ValidationException(AppException):
    """Raised when input validation fails"""

    def __init__(
        self,
        message: str,
        field: str | None = None,
        details: dict[str, Any] | None = None,
        error_code: ErrorCode = ErrorCode.VALIDATION_ERROR,
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=400,
            details=details
        )
        if field:
            self.details["field"] = field


class NotFoundException(AppException):
    """Raised when a requested resource is not found"""

    def __init__(
        self,
        resource: str,
        identifier: Any,
        error_code: ErrorCode = ErrorCode.NOT_FOUND
    ):
        super().__init__(
            message=f"{resource} not found: {identifier}",
            error_code=error_code,
            status_code=404,
            details={"resource": resource, "identifier": str(identifier)}
        )


class CustomerNotFoundError(NotFoundException):
    """Raised when a customer id does not exist"""

    def __init__(self, customer_id: str):
        super().__init__(
            resource="Customer",
            identifier=customer_id,
            error_code=ErrorCode.CUSTOMER_NOT_FOUND
        )
        self.customer_id = customer_id


class InsufficientBalanceError(AppException):
    """Raised when a purchase exceeds the customer's balance.

    ``shortfall`` is exactly ``amount - balance``. The caller is expected to
    offer recording a fund transaction first instead of failing outright.
    """

    def __init__(
        self,
        customer_id: str,
        balance: Decimal,
        amount: Decimal,
    ):
        shortfall = amount - balance
        super().__init__(
            message=(
                f"Balance ${_money(balance)} is not sufficient for this "
                f"transaction (${_money(amount)}). Required additional funds: "
                f"${_money(shortfall)}"
            ),
            error_code=ErrorCode.INSUFFICIENT_BALANCE,
            status_code=400,
            details={
                "customer_id": customer_id,
                "balance": _money(balance),
                "amount": _money(amount),
                "shortfall": _money(shortfall),
                "suggested_action": "fund",
            }
        )
        self.customer_id = customer_id
        self.balance = balance
        self.amount = amount
        self.shortfall = shortfall


class DuplicateTransactionWarning(AppException):
    """A purchase looks like a repeat of the customer's latest transaction.

    Not a hard failure: repeating the request with ``confirm_duplicate`` lets
    the write through.
    """

    def __init__(
        self,
        customer_id: str,
        previous_transaction_id: str,
        seconds_since_previous: float,
    ):
        super().__init__(
            message="This appears to be a duplicate of a recent transaction",
            error_code=ErrorCode.POSSIBLE_DUPLICATE,
            status_code=409,
            details={
                "customer_id": customer_id,
                "previous_transaction_id": previous_transaction_id,
                "seconds_since_previous": round(seconds_since_previous, 1),
                "confirmable": True,
            }
        )
        self.previous_transaction_id = previous_transaction_id


class ConflictError(AppException):
    """Raised when a customer record changed between read and write"""

    def __init__(
        self,
        customer_id: str,
        expected_version: int | None = None,
        actual_version: int | None = None,
    ):
        super().__init__(
            message=(
                f"Customer {customer_id} was modified concurrently; "
                "reload the balance and retry"
            ),
            error_code=ErrorCode.CONFLICT,
            status_code=409,
            details={
                "customer_id": customer_id,
                "expected_version": expected_version,
                "actual_version": actual_version,
            }
        )


class MembershipIdExhaustedError(AppException):
    """Raised when no free membership id was found within the retry budget"""

    def __init__(self, attempts: int, width: int):
        super().__init__(
            message=f"No unused {width}-digit membership id found after {attempts} attempts",
            error_code=ErrorCode.MEMBERSHIP_ID_EXHAUSTED,
            status_code=503,
            details={"attempts": attempts, "width": width}
        )


class StoreUnavailableError(AppException):
    """Raised when the backing store cannot be reached or read"""

    def __init__(
        self,
        backend: str,
        message: str,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=f"Ledger store ({backend}) unavailable: {message}",
            error_code=ErrorCode.STORE_UNAVAILABLE,
            status_code=503,
            details=details
        )
        self.details["backend"] = backend
