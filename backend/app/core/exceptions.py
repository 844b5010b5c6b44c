# backend/app/core/exceptions.py
"""
Domain-specific exceptions for the settlement engine.

These exceptions provide clear, business-focused error messages
that can be caught and handled appropriately at the API layer.
"""

from decimal import Decimal
from typing import Any, Dict, Optional

from fastapi import HTTPException, status

HTTP_422_UNPROCESSABLE: int = getattr(status, "HTTP_422_UNPROCESSABLE_CONTENT", 422)


class DomainException(Exception):
    """Base exception for all domain-specific errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_http_exception(self) -> HTTPException:
        """Convert to an HTTPException using the class status code."""
        return HTTPException(
            status_code=self.status_code,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
        )


class ValidationException(DomainException):
    """Raised when business validation fails."""

    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundException(DomainException):
    """Raised when a requested resource is not found."""

    status_code = status.HTTP_404_NOT_FOUND


class ConflictException(DomainException):
    """Raised when there's a conflict with existing data."""

    status_code = status.HTTP_409_CONFLICT


class BusinessRuleException(DomainException):
    """Raised when a business rule is violated."""

    status_code = HTTP_422_UNPROCESSABLE


class ServiceException(DomainException):
    """Raised when a service operation fails."""

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "message": self.message or "An error occurred processing your request",
                "code": self.code,
                "details": self.details if self.details else {},
            },
        )


# Settlement exceptions


class InvalidAmountException(ValidationException):
    """Raised when a monetary amount is not strictly positive or breaks fee invariants."""

    def __init__(self, amount: Any, message: Optional[str] = None):
        super().__init__(
            message=message or f"Amount must be greater than zero (got {amount})",
            code="INVALID_AMOUNT",
            details={"amount": str(amount)},
        )


class InvalidTransitionException(ConflictException):
    """Raised on an illegal status or stage regression."""

    def __init__(self, entity: str, current: str, requested: str):
        super().__init__(
            message=f"Cannot move {entity} from '{current}' to '{requested}'",
            code="INVALID_TRANSITION",
            details={"entity": entity, "current": current, "requested": requested},
        )


class MissingPayoutEligibilityException(BusinessRuleException):
    """Raised when a workflow waits for payout but the transaction has no eligibility time."""

    def __init__(self, transaction_id: str):
        super().__init__(
            message="No teacher payout eligible time set",
            code="MISSING_PAYOUT_ELIGIBILITY",
            details={"transaction_id": transaction_id},
        )


class MissingPaymentMethodException(BusinessRuleException):
    """Raised when a teacher has no default active payout method."""

    def __init__(self, teacher_id: Optional[str], transaction_id: str):
        super().__init__(
            message=f"No default payment method found for teacher {teacher_id}",
            code="MISSING_PAYMENT_METHOD",
            details={"teacher_id": teacher_id, "transaction_id": transaction_id},
        )


class TooLateToCancelException(BusinessRuleException):
    """Raised when a cancellation falls inside the protected window before class start."""

    def __init__(
        self,
        window_hours: int,
        message: Optional[str] = None,
        *,
        details: Optional[Dict[str, Any]] = None,
    ):
        merged: Dict[str, Any] = {"window_hours": window_hours}
        merged.update(details or {})
        super().__init__(
            message=message
            or f"Cannot cancel within {window_hours} hours of the scheduled class time",
            code="TOO_LATE_TO_CANCEL",
            details=merged,
        )


class AlreadyResolvedException(ConflictException):
    """Raised when an unsettled finance record is resolved twice."""

    def __init__(self, record_id: str, resolved_amount: Optional[Decimal] = None):
        super().__init__(
            message=f"Unsettled finance record {record_id} is already resolved",
            code="ALREADY_RESOLVED",
            details={
                "record_id": record_id,
                "resolution_amount": str(resolved_amount) if resolved_amount is not None else None,
            },
        )


class RepositoryException(Exception):
    """
    Exception raised for repository layer errors.

    This exception is used when data access operations fail,
    such as database connection issues, query failures, or
    constraint violations.
    """
