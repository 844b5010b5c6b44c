"""
Teacher payout batch.

Pays out completed payments whose payout time has passed. Each payment is
handled in its own savepoint, so one bad row never blocks the batch, and a
payment gets at most one ``teacher_payout`` child.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
import logging
from typing import Any, Optional

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import MissingPaymentMethodException
from app.models.payment_transaction import (
    PaymentTransaction,
    TransactionStage,
    TransactionStatus,
    TransactionType,
)
from app.models.unsettled_finance import ConflictType, UnsettledPriority
from app.monitoring.prometheus_metrics import prometheus_metrics
from app.repositories.factory import RepositoryFactory
from app.schemas.settlement import PayoutBatchResult, TransactionCreate
from app.services.base import BaseService
from app.services.transaction_ledger import TransactionLedgerService
from app.services.unsettled_finance_service import UnsettledFinanceService

logger = logging.getLogger(__name__)


class PayoutOutcome(str, Enum):
    PROCESSED = "processed"
    SKIPPED = "skipped"


class TeacherPayoutService(BaseService):
    def __init__(
        self,
        db: Session,
        ledger: Optional[Any] = None,
        unsettled_service: Optional[UnsettledFinanceService] = None,
        transaction_repository: Optional[Any] = None,
        payment_method_repository: Optional[Any] = None,
    ):
        super().__init__(db)
        self.ledger = ledger or TransactionLedgerService(db)
        self.unsettled_service = unsettled_service or UnsettledFinanceService(db)
        self.transactions = (
            transaction_repository or RepositoryFactory.create_payment_transaction_repository(db)
        )
        self.payment_methods = (
            payment_method_repository or RepositoryFactory.create_payment_method_repository(db)
        )

    @BaseService.measure_operation("process_eligible_payouts")
    def process_eligible_payouts(self, now: Optional[datetime] = None) -> PayoutBatchResult:
        """Create teacher payouts for every eligible payment."""
        now = now or datetime.now(timezone.utc)
        eligible = self.transactions.list_payout_eligible(now, limit=settings.sweep_batch_size)
        result = PayoutBatchResult()

        for original in eligible:
            original_id = original.id
            try:
                with self.db.begin_nested():
                    outcome = self._pay_out(original, now)
            except Exception as exc:
                result.failed += 1
                logger.error(
                    f"Teacher payout failed for transaction {original_id}: {exc}",
                    extra={"transaction_id": original_id},
                    exc_info=True,
                )
                self._record_failed_transfer(original_id, exc)
                continue

            if outcome == PayoutOutcome.PROCESSED:
                result.processed += 1
            else:
                result.skipped += 1

        self.db.commit()
        prometheus_metrics.record_payout_outcome("processed", result.processed)
        prometheus_metrics.record_payout_outcome("skipped", result.skipped)
        prometheus_metrics.record_payout_outcome("failed", result.failed)
        logger.info(
            f"Teacher payout batch: processed={result.processed} skipped={result.skipped} "
            f"failed={result.failed}",
            extra=result.model_dump(),
        )
        return result

    def _pay_out(self, original: PaymentTransaction, now: datetime) -> PayoutOutcome:
        existing = self.transactions.get_payout_for(original.id)
        if existing is not None:
            # Payout row exists from an earlier run; just close out the original
            self.ledger.record_payout_disbursement(original, existing)
            return PayoutOutcome.SKIPPED

        if original.net_amount <= Decimal("0"):
            self.ledger.set_stage(original.id, TransactionStage.COMPLETED)
            self.ledger.append_note(original.id, "No teacher payout due (net amount is zero)")
            return PayoutOutcome.SKIPPED

        method = (
            self.payment_methods.get_default_active(original.to_user_id)
            if original.to_user_id
            else None
        )
        if method is None:
            missing = MissingPaymentMethodException(original.to_user_id, original.id)
            logger.warning(
                f"{missing.message}, skipping payout for transaction {original.id}",
                extra=missing.details,
            )
            return PayoutOutcome.SKIPPED

        label = method.display_name or method.id
        payout = self.ledger.create_transaction(
            TransactionCreate(
                transaction_type=TransactionType.TEACHER_PAYOUT,
                amount=original.net_amount,
                transaction_fee=Decimal("0.00"),
                currency=original.currency,
                from_user_id=None,
                to_user_id=original.to_user_id,
                to_payment_method_id=method.id,
                status=TransactionStatus.COMPLETED,
                workflow_stage=TransactionStage.ADMIN_TO_TEACHER,
                gateway_reference=original.gateway_reference,
                booking_id=original.booking_id,
                course_id=original.course_id,
                enrollment_id=original.enrollment_id,
                parent_transaction_id=original.id,
                completed_at=now,
                notes=(
                    f"Teacher payout for transaction {original.id} via "
                    f"{method.method_type.value}: {label}"
                ),
            )
        )
        self.ledger.record_payout_disbursement(original, payout)

        logger.info(
            f"Teacher payout {payout.id} of {payout.amount} for transaction {original.id}",
            extra={
                "payout_id": payout.id,
                "transaction_id": original.id,
                "teacher_id": original.to_user_id,
                "amount": str(payout.amount),
                "payment_method_id": method.id,
            },
        )
        return PayoutOutcome.PROCESSED

    def _record_failed_transfer(self, transaction_id: str, exc: Exception) -> None:
        original = self.ledger.get_transaction(transaction_id)
        if original is None:
            return
        if self.unsettled_service.has_open(original.id, ConflictType.FAILED_TRANSFER):
            return
        self.unsettled_service.record(
            gateway_reference=original.gateway_reference or original.id,
            conflict_type=ConflictType.FAILED_TRANSFER,
            amount=original.net_amount,
            description=f"Teacher payout for transaction {original.id} failed: {exc}",
            transaction_id=original.id,
            priority=UnsettledPriority.HIGH,
        )
