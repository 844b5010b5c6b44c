"""
Cancellation and refund rules.

Every cancellation path ends the same way: the captured payment is
cancelled with a refund scheduled ``refund_settlement_delay_hours`` out, its
workflow jumps to the refund branch, and the booking or enrollment is marked
cancelled in the marketplace. Refunds are never instantaneous.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
import logging
from typing import Any, Iterable, Optional

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.constants import MONEY_QUANTUM
from app.core.exceptions import (
    DomainException,
    NotFoundException,
    TooLateToCancelException,
    ValidationException,
)
from app.models.payment_transaction import PaymentTransaction
from app.schemas.settlement import BulkCancellationResult, CancellationFailure, CancellationResult
from app.services.base import BaseService
from app.services.collaborators import (
    BookingDirectory,
    BookingSnapshot,
    CancelledEntity,
    EnrollmentSnapshot,
)
from app.services.payment_workflow_service import PaymentWorkflowService
from app.services.transaction_ledger import TransactionLedgerService

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def prorated_refund(
    total_price: Decimal, total_classes: int, completed: int, within_window: int
) -> Decimal:
    """``total_price * refundable / total`` rounded to cents; never negative."""
    if total_classes <= 0:
        return ZERO
    refundable = max(total_classes - completed - within_window, 0)
    amount = Decimal(total_price) * refundable / total_classes
    return amount.quantize(MONEY_QUANTUM, rounding=ROUND_HALF_UP)


class CancellationService(BaseService):
    """Student, teacher and admin cancellation of bookings and course enrollments."""

    def __init__(
        self,
        db: Session,
        booking_directory: BookingDirectory,
        ledger: Optional[Any] = None,
        workflow_service: Optional[PaymentWorkflowService] = None,
    ):
        super().__init__(db)
        self.booking_directory = booking_directory
        self.ledger = ledger or TransactionLedgerService(db)
        self.workflow_service = workflow_service or PaymentWorkflowService(db, ledger=self.ledger)
        self.window = timedelta(hours=settings.cancellation_window_hours)
        self.refund_delay = timedelta(hours=settings.refund_settlement_delay_hours)

    # Bookings

    @BaseService.measure_operation("cancel_booking")
    def cancel_booking(
        self,
        booking_id: str,
        requested_by: str,
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> CancellationResult:
        """
        Student cancellation; allowed only before the cancellation window opens.

        Raises:
            NotFoundException: unknown booking
            ValidationException: booking already cancelled
            TooLateToCancelException: inside the window before class start
        """
        now = now or _now_utc()
        booking = self._load_booking(booking_id)
        if now >= booking.scheduled_at - self.window:
            raise TooLateToCancelException(
                settings.cancellation_window_hours,
                details={"booking_id": booking_id, "scheduled_at": booking.scheduled_at.isoformat()},
            )
        return self._cancel_paid_booking(booking, requested_by, reason, now)

    def cancel_bookings_bulk(
        self,
        booking_ids: Iterable[str],
        requested_by: str,
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> BulkCancellationResult:
        """Cancel each booking independently; failures are reported, not raised."""
        now = now or _now_utc()
        result = BulkCancellationResult()
        for booking_id in booking_ids:
            try:
                result.successful.append(
                    self.cancel_booking(booking_id, requested_by, reason, now)
                )
            except DomainException as exc:
                result.failed.append(CancellationFailure(id=booking_id, reason=exc.message))
        logger.info(
            f"Bulk cancellation: {len(result.successful)} cancelled, {len(result.failed)} failed",
            extra={"requested_by": requested_by, "failed": [f.id for f in result.failed]},
        )
        return result

    @BaseService.measure_operation("teacher_cancel_booking")
    def teacher_cancel_before_start(
        self,
        booking_id: str,
        teacher_id: str,
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> CancellationResult:
        """Teacher cancellation, allowed until the class starts; full refund."""
        now = now or _now_utc()
        booking = self._load_booking(booking_id)
        if booking.teacher_id != teacher_id:
            raise ValidationException(
                "Only the booked teacher can cancel this class",
                code="NOT_BOOKING_TEACHER",
                details={"booking_id": booking_id},
            )
        if now >= booking.scheduled_at:
            raise TooLateToCancelException(
                0,
                "Cannot cancel a class that has already started",
                details={"booking_id": booking_id},
            )
        return self._cancel_paid_booking(booking, teacher_id, reason, now)

    @BaseService.measure_operation("admin_cancel_booking")
    def admin_cancel(
        self,
        booking_id: str,
        admin_id: str,
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> CancellationResult:
        """Administrative cancellation at any time; full refund."""
        now = now or _now_utc()
        booking = self._load_booking(booking_id)
        return self._cancel_paid_booking(booking, admin_id, reason, now)

    # Enrollments

    @BaseService.measure_operation("cancel_course_enrollment")
    def cancel_course_enrollment(
        self,
        enrollment_id: str,
        requested_by: str,
        force_cancel: bool = False,
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> CancellationResult:
        """
        Cancel a course enrollment with a prorated refund.

        Classes starting inside the cancellation window are kept and not
        refunded; without ``force_cancel`` their presence blocks the request.
        """
        now = now or _now_utc()
        enrollment = self._load_enrollment(enrollment_id)

        upcoming = [b for b in enrollment.upcoming_classes if b.scheduled_at > now]
        live = [b for b in upcoming if not b.is_cancelled]
        blocking = [b for b in live if b.scheduled_at <= now + self.window]
        cancellable = [b for b in live if b not in blocking]
        if blocking and not force_cancel:
            raise TooLateToCancelException(
                settings.cancellation_window_hours,
                f"Some classes cannot be cancelled (within {settings.cancellation_window_hours} hours)",
                details={
                    "enrollment_id": enrollment_id,
                    "blocking_classes": [b.id for b in blocking],
                    "cancellable_count": len(cancellable),
                },
            )

        with self.transaction():
            payment = self.ledger.get_settled_payment(enrollment_id=enrollment_id)
            total_price = enrollment.total_price
            if total_price is None:
                total_price = payment.amount if payment is not None else ZERO
            refund = prorated_refund(
                total_price, enrollment.total_classes, enrollment.completed_classes, len(blocking)
            )

            refund_at = now + self.refund_delay
            if payment is not None and refund > ZERO:
                self._schedule_refund(
                    payment,
                    refund_at,
                    now,
                    amount=min(refund, payment.amount),
                    note=(
                        f"Prorated refund {refund} of {total_price} for enrollment "
                        f"{enrollment_id} ({len(blocking)} kept, "
                        f"{enrollment.completed_classes} completed of {enrollment.total_classes})"
                    ),
                )

            for booking in cancellable:
                self.booking_directory.mark_cancelled(
                    booking.id, kind=CancelledEntity.BOOKING, cancelled_by=requested_by, reason=reason
                )
            self.booking_directory.mark_cancelled(
                enrollment_id,
                kind=CancelledEntity.ENROLLMENT,
                cancelled_by=requested_by,
                reason=reason,
            )

        logger.info(
            f"Enrollment {enrollment_id} cancelled; refund {refund}",
            extra={
                "enrollment_id": enrollment_id,
                "refund_amount": str(refund),
                "kept_classes": len(blocking),
                "cancelled_classes": len(cancellable),
                "requested_by": requested_by,
            },
        )
        return CancellationResult(
            enrollment_id=enrollment_id,
            transaction_id=payment.id if payment is not None else None,
            refund_amount=refund,
            scheduled_refund_at=refund_at,
        )

    # Internals

    def _cancel_paid_booking(
        self,
        booking: BookingSnapshot,
        cancelled_by: str,
        reason: Optional[str],
        now: datetime,
    ) -> CancellationResult:
        refund_at = now + self.refund_delay
        with self.transaction():
            payment = self.ledger.get_settled_payment(booking_id=booking.id)
            refund = payment.amount if payment is not None else ZERO
            if payment is not None:
                self._schedule_refund(
                    payment, refund_at, now, note=f"Booking {booking.id} cancelled by {cancelled_by}"
                )
            self.booking_directory.mark_cancelled(
                booking.id, kind=CancelledEntity.BOOKING, cancelled_by=cancelled_by, reason=reason
            )

        logger.info(
            f"Booking {booking.id} cancelled by {cancelled_by}; refund {refund} at {refund_at.isoformat()}",
            extra={
                "booking_id": booking.id,
                "cancelled_by": cancelled_by,
                "refund_amount": str(refund),
                "transaction_id": payment.id if payment is not None else None,
            },
        )
        return CancellationResult(
            booking_id=booking.id,
            transaction_id=payment.id if payment is not None else None,
            refund_amount=refund,
            scheduled_refund_at=refund_at,
        )

    def _schedule_refund(
        self,
        payment: PaymentTransaction,
        refund_at: datetime,
        now: datetime,
        *,
        note: str,
        amount: Optional[Decimal] = None,
    ) -> None:
        self.ledger.mark_scheduled_refund(payment.id, refund_at, amount)
        self.ledger.append_note(payment.id, note)
        self.workflow_service.cancel_workflow(payment.id, now)

    def _load_booking(self, booking_id: str) -> BookingSnapshot:
        booking = self.booking_directory.get_booking(booking_id)
        if booking is None:
            raise NotFoundException(
                f"Booking {booking_id} not found",
                code="BOOKING_NOT_FOUND",
                details={"booking_id": booking_id},
            )
        if booking.is_cancelled:
            raise ValidationException(
                "Booking is already cancelled",
                code="ALREADY_CANCELLED",
                details={"booking_id": booking_id},
            )
        return booking

    def _load_enrollment(self, enrollment_id: str) -> EnrollmentSnapshot:
        enrollment = self.booking_directory.get_enrollment(enrollment_id)
        if enrollment is None:
            raise NotFoundException(
                f"Enrollment {enrollment_id} not found",
                code="ENROLLMENT_NOT_FOUND",
                details={"enrollment_id": enrollment_id},
            )
        if enrollment.is_cancelled:
            raise ValidationException(
                "Enrollment is already cancelled",
                code="ALREADY_CANCELLED",
                details={"enrollment_id": enrollment_id},
            )
        return enrollment
