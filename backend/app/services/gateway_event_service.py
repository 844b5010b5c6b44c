"""
Payment gateway intake.

Turns already-verified gateway events into ledger rows and workflows. The
gateway only needs an acknowledgement, so nothing here raises: when the
business work fails it is rolled back and the money is parked in the
unsettled finance tracker instead. Duplicate deliveries are detected by
gateway reference and acknowledged without writing anything.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
import logging
from typing import Any, Optional

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import DomainException
from app.models.payment_transaction import (
    PaymentTransaction,
    TransactionStage,
    TransactionStatus,
    TransactionType,
)
from app.models.payment_workflow import WorkflowType
from app.models.types import ensure_utc
from app.models.unsettled_finance import ConflictType, UnsettledPriority
from app.schemas.gateway_events import PaymentConfirmedEvent, PaymentFailedEvent, RefundIssuedEvent
from app.schemas.settlement import GatewayAck, TransactionCreate
from app.services.base import BaseService
from app.services.collaborators import BookingProvisioner
from app.services.fee_calculator import compute_fee, to_money
from app.services.fee_policy_service import FeePolicyService
from app.services.payment_workflow_service import PaymentWorkflowService
from app.services.transaction_ledger import TransactionLedgerService
from app.services.unsettled_finance_service import UnsettledFinanceService

logger = logging.getLogger(__name__)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class GatewayEventService(BaseService):
    """Consume payment confirmed / refund issued / payment failed events."""

    def __init__(
        self,
        db: Session,
        ledger: Optional[Any] = None,
        workflow_service: Optional[PaymentWorkflowService] = None,
        fee_policy_service: Optional[FeePolicyService] = None,
        unsettled_service: Optional[UnsettledFinanceService] = None,
        provisioner: Optional[BookingProvisioner] = None,
    ):
        super().__init__(db)
        self.ledger = ledger or TransactionLedgerService(db)
        self.workflow_service = workflow_service or PaymentWorkflowService(db, ledger=self.ledger)
        self.fee_policy_service = fee_policy_service or FeePolicyService(db)
        self.unsettled_service = unsettled_service or UnsettledFinanceService(db)
        self.provisioner = provisioner
        self.window = timedelta(hours=settings.cancellation_window_hours)

    # Payment confirmed

    @BaseService.measure_operation("handle_payment_confirmed")
    def handle_payment_confirmed(
        self, event: PaymentConfirmedEvent, now: Optional[datetime] = None
    ) -> GatewayAck:
        """
        Record a captured payment and start its settlement workflow.

        The payment and workflow commit together. Booking provisioning runs in
        a savepoint afterwards; if it fails only the provisioning is undone and
        a ``failed_enrollment`` record is opened against the kept payment.
        """
        now = now or _now_utc()
        existing = self.ledger.get_transaction_by_gateway_ref(event.gateway_reference)
        if existing is not None:
            logger.info(
                f"Duplicate payment event for {event.gateway_reference}; "
                f"already recorded as {existing.id}",
                extra={"gateway_reference": event.gateway_reference, "transaction_id": existing.id},
            )
            return GatewayAck(transaction_id=existing.id, duplicate=True)

        try:
            with self.transaction():
                transaction = self._record_payment(event, now)
                unsettled_id = self._provision(event, transaction)
        except Exception as exc:
            logger.error(
                f"Payment intake failed for {event.gateway_reference}: {exc}",
                exc_info=True,
                extra={"gateway_reference": event.gateway_reference},
            )
            return self._park(
                event.gateway_reference,
                ConflictType.FAILED_ENROLLMENT,
                event.amount,
                f"Payment captured but could not be recorded: {exc}",
                priority=UnsettledPriority.HIGH,
            )

        return GatewayAck(transaction_id=transaction.id, unsettled_id=unsettled_id)

    def _record_payment(self, event: PaymentConfirmedEvent, now: datetime) -> PaymentTransaction:
        policy = self.fee_policy_service.resolve_policy()
        breakdown = compute_fee(event.amount, policy)
        scheduled_at = ensure_utc(event.scheduled_at) if event.scheduled_at else None

        transaction = self.ledger.create_transaction(
            TransactionCreate(
                transaction_type=event.transaction_type,
                amount=breakdown.gross,
                transaction_fee=breakdown.fee,
                net_amount=breakdown.net,
                currency=event.currency,
                from_user_id=event.student_id,
                to_user_id=event.teacher_id,
                status=TransactionStatus.COMPLETED,
                workflow_stage=TransactionStage.STUDENT_TO_ADMIN,
                gateway_reference=event.gateway_reference,
                booking_id=event.booking_id,
                course_id=event.course_id,
                enrollment_id=event.enrollment_id,
                scheduled_at=scheduled_at,
                cancellation_deadline=scheduled_at - self.window if scheduled_at else None,
                completed_at=now,
            )
        )

        if event.transaction_type == TransactionType.BOOKING_PAYMENT:
            workflow_type = WorkflowType.CLASS_BOOKING
        else:
            workflow_type = WorkflowType.COURSE_PURCHASE
        # Unscheduled purchases are eligible for the next sweep
        if scheduled_at is not None:
            next_action_at = scheduled_at + timedelta(minutes=event.duration_minutes)
        else:
            next_action_at = now
        self.workflow_service.create_workflow(
            transaction, workflow_type, next_action_at, policy=policy
        )
        return transaction

    def _provision(
        self, event: PaymentConfirmedEvent, transaction: PaymentTransaction
    ) -> Optional[str]:
        if self.provisioner is None:
            return None
        try:
            with self.db.begin_nested():
                self.provisioner.provision(event, transaction)
            return None
        except Exception as exc:
            logger.error(
                f"Provisioning failed for payment {transaction.id}: {exc}",
                exc_info=True,
                extra={"transaction_id": transaction.id, "gateway_reference": event.gateway_reference},
            )
            record = self.unsettled_service.record(
                event.gateway_reference,
                ConflictType.FAILED_ENROLLMENT,
                transaction.amount,
                f"Payment {transaction.id} captured but enrollment failed: {exc}",
                transaction_id=transaction.id,
                priority=UnsettledPriority.HIGH,
            )
            return record.id

    # Refund issued

    @BaseService.measure_operation("handle_refund_issued")
    def handle_refund_issued(
        self, event: RefundIssuedEvent, now: Optional[datetime] = None
    ) -> GatewayAck:
        """
        Record a gateway refund against the original payment.

        A refund with no captured payment behind it, or one for a payment
        whose teacher was already paid, needs an admin and is parked as a
        ``disputed_refund``.
        """
        now = now or _now_utc()
        original = self.ledger.get_transaction_by_gateway_ref(event.gateway_reference)
        if original is None:
            logger.warning(
                f"Refund for unknown payment {event.gateway_reference}",
                extra={"gateway_reference": event.gateway_reference},
            )
            return self._park(
                event.gateway_reference,
                ConflictType.DISPUTED_REFUND,
                event.amount,
                "Refund received for a payment that is not in the ledger",
            )

        if self._refund_recorded(original, event):
            logger.info(
                f"Duplicate refund event {event.refund_reference or event.amount} "
                f"for {original.id}",
                extra={"transaction_id": original.id, "refund_reference": event.refund_reference},
            )
            return GatewayAck(transaction_id=original.id, duplicate=True)

        try:
            with self.transaction():
                refund = self.ledger.create_transaction(
                    TransactionCreate(
                        transaction_type=TransactionType.REFUND,
                        amount=event.amount,
                        currency=event.currency or original.currency,
                        to_user_id=original.from_user_id,
                        status=TransactionStatus.COMPLETED,
                        workflow_stage=TransactionStage.REFUND_TO_STUDENT,
                        gateway_reference=event.gateway_reference,
                        booking_id=original.booking_id,
                        course_id=original.course_id,
                        enrollment_id=original.enrollment_id,
                        gateway_transfer_id=event.refund_reference,
                        parent_transaction_id=original.id,
                        completed_at=now,
                        notes=event.reason,
                    )
                )

                unsettled_id = None
                if original.workflow_stage == TransactionStage.COMPLETED:
                    record = self.unsettled_service.record(
                        event.gateway_reference,
                        ConflictType.DISPUTED_REFUND,
                        event.amount,
                        f"Refund {refund.id} issued after teacher payout for {original.id}",
                        transaction_id=original.id,
                        priority=UnsettledPriority.HIGH,
                    )
                    unsettled_id = record.id
                else:
                    if original.workflow_stage != TransactionStage.REFUND_TO_STUDENT:
                        self.ledger.mark_scheduled_refund(
                            original.id, now, min(to_money(event.amount), original.amount)
                        )
                    self.ledger.append_note(original.id, f"Refunded by gateway via {refund.id}")
                    self.workflow_service.cancel_workflow(original.id, now)
        except Exception as exc:
            logger.error(
                f"Refund intake failed for {event.gateway_reference}: {exc}",
                exc_info=True,
                extra={"gateway_reference": event.gateway_reference, "transaction_id": original.id},
            )
            return self._park(
                event.gateway_reference,
                ConflictType.DISPUTED_REFUND,
                event.amount,
                f"Refund for {original.id} could not be recorded: {exc}",
                transaction_id=original.id,
            )

        return GatewayAck(transaction_id=refund.id, unsettled_id=unsettled_id)

    def _refund_recorded(self, original: PaymentTransaction, event: RefundIssuedEvent) -> bool:
        """
        True when this refund is already on the ledger.

        Refunds carrying a gateway refund id match on it. Without one, a
        refund of the same amount against the same payment is a redelivery.
        """
        refunds = self.ledger.list_refunds(original.id)
        if event.refund_reference:
            return any(r.gateway_transfer_id == event.refund_reference for r in refunds)
        amount = to_money(event.amount)
        return any(r.amount == amount for r in refunds)

    # Failed / cancelled attempts

    def handle_payment_failed(self, event: PaymentFailedEvent) -> GatewayAck:
        return self._record_attempt(event, TransactionStatus.FAILED)

    def handle_payment_cancelled(self, event: PaymentFailedEvent) -> GatewayAck:
        return self._record_attempt(event, TransactionStatus.CANCELLED)

    @BaseService.measure_operation("record_payment_attempt")
    def _record_attempt(self, event: PaymentFailedEvent, status: TransactionStatus) -> GatewayAck:
        """Audit row for an attempt that never captured money; no workflow."""
        existing = self.ledger.get_transaction_by_gateway_ref(
            event.gateway_reference
        ) or self.ledger.find_gateway_attempt(event.gateway_reference, status)
        if existing is not None:
            return GatewayAck(transaction_id=existing.id, duplicate=True)

        try:
            with self.transaction():
                transaction = self.ledger.create_transaction(
                    TransactionCreate(
                        transaction_type=event.transaction_type,
                        amount=event.amount,
                        currency=event.currency,
                        from_user_id=event.student_id,
                        to_user_id=event.teacher_id,
                        status=status,
                        workflow_stage=TransactionStage.STUDENT_TO_ADMIN,
                        gateway_reference=event.gateway_reference,
                        booking_id=event.booking_id,
                        course_id=event.course_id,
                        failure_reason=event.failure_reason,
                    )
                )
        except DomainException as exc:
            logger.warning(
                f"Ignoring {status.value} payment event {event.gateway_reference}: {exc.message}",
                extra={"gateway_reference": event.gateway_reference},
            )
            return GatewayAck()
        except Exception as exc:
            logger.error(
                f"Could not record {status.value} payment {event.gateway_reference}: {exc}",
                exc_info=True,
                extra={"gateway_reference": event.gateway_reference},
            )
            return GatewayAck(received=False)

        logger.info(
            f"Payment attempt {event.gateway_reference} recorded as {status.value}",
            extra={"transaction_id": transaction.id, "failure_reason": event.failure_reason},
        )
        return GatewayAck(transaction_id=transaction.id)

    def _park(
        self,
        gateway_reference: str,
        conflict_type: ConflictType,
        amount: Any,
        description: str,
        *,
        transaction_id: Optional[str] = None,
        priority: UnsettledPriority = UnsettledPriority.MEDIUM,
    ) -> GatewayAck:
        """Open an unsettled record in its own unit of work."""
        try:
            with self.transaction():
                record = self.unsettled_service.record(
                    gateway_reference,
                    conflict_type,
                    abs(amount),
                    description,
                    transaction_id=transaction_id,
                    priority=priority,
                )
        except Exception as exc:
            logger.critical(
                f"Could not park {conflict_type.value} for {gateway_reference}: {exc}",
                exc_info=True,
                extra={"gateway_reference": gateway_reference},
            )
            return GatewayAck(received=False)
        return GatewayAck(unsettled_id=record.id)
