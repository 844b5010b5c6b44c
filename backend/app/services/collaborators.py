"""Interfaces to systems outside the settlement engine.

Bookings, enrollments and seat provisioning belong to the wider
marketplace; the settlement services only see these snapshots and call
these protocols.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Optional, Protocol, Tuple, runtime_checkable

if TYPE_CHECKING:
    from app.models.payment_transaction import PaymentTransaction
    from app.schemas.gateway_events import PaymentConfirmedEvent


class BookingState(str, Enum):
    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class CancelledEntity(str, Enum):
    BOOKING = "booking"
    ENROLLMENT = "enrollment"


@dataclass(frozen=True)
class BookingSnapshot:
    id: str
    student_id: str
    teacher_id: str
    scheduled_at: datetime
    status: BookingState = BookingState.SCHEDULED
    course_id: Optional[str] = None

    @property
    def is_cancelled(self) -> bool:
        return self.status == BookingState.CANCELLED


@dataclass(frozen=True)
class EnrollmentSnapshot:
    id: str
    student_id: str
    teacher_id: str
    course_id: str
    total_classes: int
    completed_classes: int
    status: BookingState = BookingState.SCHEDULED
    # Scheduled, not yet held classes of this enrollment
    upcoming_classes: Tuple[BookingSnapshot, ...] = field(default_factory=tuple)
    total_price: Optional[Decimal] = None

    @property
    def is_cancelled(self) -> bool:
        return self.status == BookingState.CANCELLED


@runtime_checkable
class BookingDirectory(Protocol):
    """Read and cancel bookings/enrollments owned by the marketplace."""

    def get_booking(self, booking_id: str) -> Optional[BookingSnapshot]:
        ...

    def get_enrollment(self, enrollment_id: str) -> Optional[EnrollmentSnapshot]:
        ...

    def mark_cancelled(
        self,
        entity_id: str,
        *,
        kind: CancelledEntity,
        cancelled_by: str,
        reason: Optional[str] = None,
    ) -> None:
        ...


@runtime_checkable
class BookingProvisioner(Protocol):
    """Creates the booking/enrollment a confirmed payment paid for."""

    def provision(self, event: "PaymentConfirmedEvent", transaction: "PaymentTransaction") -> None:
        ...
