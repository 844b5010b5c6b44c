"""Payment gateway events consumed by the settlement engine.

Signature verification and SDK parsing happen upstream; these models are
the already-verified payloads handed to ``GatewayEventService``.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from app.core.constants import DEFAULT_CLASS_DURATION_MINUTES
from app.models.payment_transaction import TransactionType


class GatewayEvent(BaseModel):
    model_config = ConfigDict(extra="ignore")

    gateway_reference: str = Field(..., min_length=1, max_length=255)
    amount: Decimal = Field(..., max_digits=10, decimal_places=2)
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class PaymentConfirmedEvent(GatewayEvent):
    """Student payment captured for a class booking or a course purchase."""

    transaction_type: TransactionType = TransactionType.BOOKING_PAYMENT
    student_id: str
    teacher_id: str
    booking_id: Optional[str] = None
    course_id: Optional[str] = None
    enrollment_id: Optional[str] = None
    scheduled_at: Optional[datetime] = None
    duration_minutes: int = Field(default=DEFAULT_CLASS_DURATION_MINUTES, gt=0)

    @model_validator(mode="after")
    def _payment_type_only(self) -> "PaymentConfirmedEvent":
        if self.transaction_type not in (
            TransactionType.BOOKING_PAYMENT,
            TransactionType.COURSE_PAYMENT,
        ):
            raise ValueError("transaction_type must be booking_payment or course_payment")
        if self.transaction_type == TransactionType.BOOKING_PAYMENT and not self.booking_id:
            raise ValueError("booking_id is required for booking payments")
        return self


class RefundIssuedEvent(GatewayEvent):
    """Refund confirmed by the gateway for an earlier payment."""

    refund_reference: Optional[str] = None
    reason: Optional[str] = None


class PaymentFailedEvent(GatewayEvent):
    """Payment attempt that failed or was abandoned at the gateway."""

    transaction_type: TransactionType = TransactionType.BOOKING_PAYMENT
    student_id: Optional[str] = None
    teacher_id: Optional[str] = None
    booking_id: Optional[str] = None
    course_id: Optional[str] = None
    failure_reason: Optional[str] = None
