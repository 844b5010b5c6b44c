from datetime import timedelta
from decimal import Decimal

import pytest

from app.core.exceptions import NotFoundException, TooLateToCancelException, ValidationException
from app.models.payment_transaction import TransactionStage, TransactionStatus, TransactionType
from app.models.payment_workflow import WorkflowStage, WorkflowStatus
from app.services.cancellation_service import CancellationService, prorated_refund
from app.services.collaborators import (
    BookingSnapshot,
    BookingState,
    CancelledEntity,
    EnrollmentSnapshot,
)


@pytest.fixture
def service(db, booking_directory, ledger, workflow_service):
    return CancellationService(
        db, booking_directory, ledger=ledger, workflow_service=workflow_service
    )


def _paid_booking(booking_directory, make_payment, booking_id, scheduled_at, amount="100.00"):
    booking_directory.add_booking(
        BookingSnapshot(
            id=booking_id,
            student_id="student-1",
            teacher_id="teacher-1",
            scheduled_at=scheduled_at,
        )
    )
    return make_payment(amount, booking_id=booking_id, scheduled_at=scheduled_at)


class TestStudentCancellation:
    def test_cancel_outside_window_schedules_full_refund(
        self, service, booking_directory, make_payment, now
    ):
        transaction, workflow = _paid_booking(
            booking_directory, make_payment, "bk-1", now + timedelta(hours=6, minutes=1)
        )

        result = service.cancel_booking("bk-1", "student-1", "schedule clash", now=now)

        assert result.refund_amount == Decimal("100.00")
        assert result.scheduled_refund_at == now + timedelta(hours=48)
        assert result.transaction_id == transaction.id
        assert transaction.status == TransactionStatus.CANCELLED
        assert transaction.workflow_stage == TransactionStage.REFUND_TO_STUDENT
        assert transaction.scheduled_refund_at == now + timedelta(hours=48)
        assert "cancelled by student-1" in transaction.notes
        assert workflow.current_stage == WorkflowStage.REFUND_TO_STUDENT
        assert workflow.status == WorkflowStatus.COMPLETED
        assert booking_directory.cancelled == [("bk-1", CancelledEntity.BOOKING, "student-1")]

    def test_cancel_inside_window_is_rejected(self, service, booking_directory, make_payment, now):
        transaction, _ = _paid_booking(
            booking_directory, make_payment, "bk-1", now + timedelta(hours=5, minutes=59)
        )

        with pytest.raises(TooLateToCancelException) as exc_info:
            service.cancel_booking("bk-1", "student-1", now=now)

        assert exc_info.value.details["window_hours"] == 6
        assert transaction.status == TransactionStatus.COMPLETED
        assert booking_directory.cancelled == []

    def test_refund_is_never_immediate(self, service, booking_directory, make_payment, ledger, now):
        _paid_booking(booking_directory, make_payment, "bk-1", now + timedelta(days=2))

        service.cancel_booking("bk-1", "student-1", now=now)

        assert ledger.list_due_refunds(now) == []
        assert len(ledger.list_due_refunds(now + timedelta(hours=48))) == 1

    def test_already_cancelled_booking(self, service, booking_directory, now):
        booking_directory.add_booking(
            BookingSnapshot(
                id="bk-1",
                student_id="student-1",
                teacher_id="teacher-1",
                scheduled_at=now + timedelta(days=1),
                status=BookingState.CANCELLED,
            )
        )

        with pytest.raises(ValidationException):
            service.cancel_booking("bk-1", "student-1", now=now)

    def test_unpaid_booking_cancels_with_zero_refund(self, service, booking_directory, now):
        booking_directory.add_booking(
            BookingSnapshot(
                id="bk-free",
                student_id="student-1",
                teacher_id="teacher-1",
                scheduled_at=now + timedelta(days=1),
            )
        )

        result = service.cancel_booking("bk-free", "student-1", now=now)

        assert result.refund_amount == Decimal("0.00")
        assert result.transaction_id is None


def test_bulk_cancellation_reports_each_failure(service, booking_directory, make_payment, now):
    _paid_booking(booking_directory, make_payment, "bk-ok", now + timedelta(days=1))
    _paid_booking(booking_directory, make_payment, "bk-late", now + timedelta(hours=2))
    booking_directory.add_booking(
        BookingSnapshot(
            id="bk-done",
            student_id="student-1",
            teacher_id="teacher-1",
            scheduled_at=now + timedelta(days=1),
            status=BookingState.CANCELLED,
        )
    )

    result = service.cancel_bookings_bulk(
        ["bk-ok", "bk-done", "bk-late", "bk-missing"], "student-1", now=now
    )

    assert [r.booking_id for r in result.successful] == ["bk-ok"]
    failures = {f.id: f.reason for f in result.failed}
    assert failures == {
        "bk-done": "Booking is already cancelled",
        "bk-late": "Cannot cancel within 6 hours of the scheduled class time",
        "bk-missing": "Booking bk-missing not found",
    }


class TestTeacherAndAdminCancellation:
    def test_teacher_can_cancel_inside_window(self, service, booking_directory, make_payment, now):
        transaction, _ = _paid_booking(
            booking_directory, make_payment, "bk-1", now + timedelta(hours=1)
        )

        result = service.teacher_cancel_before_start("bk-1", "teacher-1", now=now)

        assert result.refund_amount == Decimal("100.00")
        assert transaction.status == TransactionStatus.CANCELLED

    def test_teacher_cannot_cancel_started_class(self, service, booking_directory, make_payment, now):
        _paid_booking(booking_directory, make_payment, "bk-1", now - timedelta(minutes=5))

        with pytest.raises(TooLateToCancelException):
            service.teacher_cancel_before_start("bk-1", "teacher-1", now=now)

    def test_only_the_booked_teacher_can_cancel(self, service, booking_directory, make_payment, now):
        _paid_booking(booking_directory, make_payment, "bk-1", now + timedelta(days=1))

        with pytest.raises(ValidationException) as exc_info:
            service.teacher_cancel_before_start("bk-1", "teacher-2", now=now)

        assert exc_info.value.code == "NOT_BOOKING_TEACHER"

    def test_admin_can_cancel_any_time(self, service, booking_directory, make_payment, now):
        transaction, _ = _paid_booking(
            booking_directory, make_payment, "bk-1", now + timedelta(minutes=10)
        )

        result = service.admin_cancel("bk-1", "admin-1", "teacher no-show", now=now)

        assert result.refund_amount == Decimal("100.00")
        assert transaction.workflow_stage == TransactionStage.REFUND_TO_STUDENT
        assert booking_directory.cancelled == [("bk-1", CancelledEntity.BOOKING, "admin-1")]

    def test_unknown_booking(self, service, now):
        with pytest.raises(NotFoundException):
            service.admin_cancel("nope", "admin-1", now=now)


class TestCourseEnrollment:
    @pytest.fixture
    def course_payment(self, booking_directory, make_payment, now):
        upcoming = (
            BookingSnapshot("cls-soon", "student-1", "teacher-1", now + timedelta(hours=2)),
            BookingSnapshot("cls-4", "student-1", "teacher-1", now + timedelta(days=1)),
            BookingSnapshot("cls-5", "student-1", "teacher-1", now + timedelta(days=2)),
            BookingSnapshot("cls-6", "student-1", "teacher-1", now + timedelta(days=3)),
            BookingSnapshot("cls-7", "student-1", "teacher-1", now + timedelta(days=4)),
        )
        booking_directory.add_enrollment(
            EnrollmentSnapshot(
                id="enr-1",
                student_id="student-1",
                teacher_id="teacher-1",
                course_id="course-1",
                total_classes=8,
                completed_classes=3,
                upcoming_classes=upcoming,
                total_price=Decimal("800.00"),
            )
        )
        transaction, _ = make_payment(
            "800.00",
            enrollment_id="enr-1",
            transaction_type=TransactionType.COURSE_PAYMENT,
        )
        return transaction

    def test_class_inside_window_blocks_without_force(self, service, course_payment, booking_directory, now):
        with pytest.raises(TooLateToCancelException) as exc_info:
            service.cancel_course_enrollment("enr-1", "student-1", now=now)

        assert exc_info.value.message == "Some classes cannot be cancelled (within 6 hours)"
        assert exc_info.value.details["blocking_classes"] == ["cls-soon"]
        assert exc_info.value.details["cancellable_count"] == 4
        assert course_payment.status == TransactionStatus.COMPLETED
        assert booking_directory.cancelled == []

    def test_force_cancel_refunds_prorated_amount(
        self, service, course_payment, booking_directory, ledger, now
    ):
        result = service.cancel_course_enrollment("enr-1", "student-1", force_cancel=True, now=now)

        # 8 classes, 3 completed, 1 kept inside the window: 4/8 of 800
        assert result.refund_amount == Decimal("400.00")
        assert result.transaction_id == course_payment.id
        assert result.scheduled_refund_at == now + timedelta(hours=48)
        assert course_payment.status == TransactionStatus.CANCELLED
        assert "Prorated refund 400.00" in course_payment.notes
        assert course_payment.scheduled_refund_amount == Decimal("400.00")
        [due] = ledger.list_due_refunds(now + timedelta(hours=48))
        assert due.scheduled_refund_amount == Decimal("400.00")

        cancelled_ids = [entity_id for entity_id, _, _ in booking_directory.cancelled]
        assert cancelled_ids == ["cls-4", "cls-5", "cls-6", "cls-7", "enr-1"]
        assert "cls-soon" not in cancelled_ids

    def test_cancelled_class_inside_window_does_not_block(
        self, service, booking_directory, make_payment, now
    ):
        upcoming = (
            BookingSnapshot(
                "cls-dropped",
                "student-1",
                "teacher-1",
                now + timedelta(hours=2),
                status=BookingState.CANCELLED,
            ),
            BookingSnapshot("cls-next", "student-1", "teacher-1", now + timedelta(days=1)),
        )
        booking_directory.add_enrollment(
            EnrollmentSnapshot(
                id="enr-2",
                student_id="student-1",
                teacher_id="teacher-1",
                course_id="course-1",
                total_classes=8,
                completed_classes=3,
                upcoming_classes=upcoming,
                total_price=Decimal("800.00"),
            )
        )
        payment, _ = make_payment(
            "800.00", enrollment_id="enr-2", transaction_type=TransactionType.COURSE_PAYMENT
        )

        result = service.cancel_course_enrollment("enr-2", "student-1", now=now)

        # Nothing kept inside the window: 5/8 of 800
        assert result.refund_amount == Decimal("500.00")
        assert payment.scheduled_refund_amount == Decimal("500.00")
        cancelled_ids = [entity_id for entity_id, _, _ in booking_directory.cancelled]
        assert cancelled_ids == ["cls-next", "enr-2"]


@pytest.mark.parametrize(
    "total,completed,within,expected",
    [
        (8, 3, 1, "400.00"),
        (8, 0, 0, "800.00"),
        (8, 8, 0, "0.00"),
        (3, 1, 0, "533.33"),
        (0, 0, 0, "0.00"),
        (4, 3, 2, "0.00"),
    ],
)
def test_prorated_refund(total, completed, within, expected):
    assert prorated_refund(Decimal("800.00"), total, completed, within) == Decimal(expected)
