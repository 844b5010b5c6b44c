"""
Transaction ledger service.

Owns every write to ``payment_transactions``. Status moves strictly forward;
the only way a completed payment becomes cancelled is the explicit refund
path (``mark_scheduled_refund``). Methods flush and leave the commit to the
caller's unit of work.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
import logging
from typing import Any, Dict, FrozenSet, List, Optional

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import (
    InvalidAmountException,
    InvalidTransitionException,
    NotFoundException,
)
from app.models.payment_transaction import (
    PaymentTransaction,
    TransactionStage,
    TransactionStatus,
    TransactionType,
)
from app.repositories.factory import RepositoryFactory
from app.schemas.settlement import TransactionCreate
from app.services.base import BaseService
from app.services.fee_calculator import to_money

logger = logging.getLogger(__name__)

TERMINAL_STATUSES: FrozenSet[TransactionStatus] = frozenset(
    {TransactionStatus.COMPLETED, TransactionStatus.FAILED, TransactionStatus.CANCELLED}
)

ALLOWED_STATUS_TRANSITIONS: Dict[TransactionStatus, FrozenSet[TransactionStatus]] = {
    TransactionStatus.PENDING: frozenset(
        {
            TransactionStatus.PROCESSING,
            TransactionStatus.COMPLETED,
            TransactionStatus.FAILED,
            TransactionStatus.CANCELLED,
        }
    ),
    TransactionStatus.PROCESSING: frozenset(
        {TransactionStatus.COMPLETED, TransactionStatus.FAILED, TransactionStatus.CANCELLED}
    ),
    TransactionStatus.COMPLETED: frozenset(),
    TransactionStatus.FAILED: frozenset(),
    TransactionStatus.CANCELLED: frozenset(),
}


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def can_transition(current: TransactionStatus, requested: TransactionStatus) -> bool:
    """True when ``requested`` is the same status or a legal forward move."""
    return current == requested or requested in ALLOWED_STATUS_TRANSITIONS[current]


def _append_note(existing: Optional[str], note: str) -> str:
    return f"{existing}\n{note}" if existing else note


class TransactionLedgerService(BaseService):
    """Create, read and transition ledger rows."""

    def __init__(self, db: Session, repository: Optional[Any] = None):
        super().__init__(db)
        self.repository = repository or RepositoryFactory.create_payment_transaction_repository(db)

    # Writes

    @BaseService.measure_operation("create_transaction")
    def create_transaction(self, data: TransactionCreate) -> PaymentTransaction:
        """
        Validate money invariants and persist a new ledger row.

        ``net_amount`` defaults to ``amount - transaction_fee``.

        Raises:
            InvalidAmountException: non-positive amount, negative fee, or a
                net that does not equal gross minus fee
        """
        amount = to_money(data.amount)
        if amount <= 0:
            raise InvalidAmountException(data.amount)

        fee = to_money(data.transaction_fee)
        if fee < 0:
            raise InvalidAmountException(fee, "Transaction fee cannot be negative")

        net = amount - fee if data.net_amount is None else to_money(data.net_amount)
        if net < 0:
            raise InvalidAmountException(net, "Net amount cannot be negative")
        if net != amount - fee:
            raise InvalidAmountException(
                net, f"Net amount {net} must equal amount {amount} minus fee {fee}"
            )

        values = data.model_dump(exclude={"amount", "transaction_fee", "net_amount", "currency"})
        completed_at = values.pop("completed_at", None)
        if data.status == TransactionStatus.COMPLETED and completed_at is None:
            completed_at = _now_utc()

        transaction = self.repository.create(
            **values,
            amount=amount,
            transaction_fee=fee,
            net_amount=net,
            currency=(data.currency or settings.default_currency).upper(),
            completed_at=completed_at,
        )
        logger.info(
            f"Ledger: created {transaction.transaction_type.value} {transaction.id} "
            f"amount={amount} fee={fee}",
            extra={
                "transaction_id": transaction.id,
                "transaction_type": transaction.transaction_type.value,
                "amount": str(amount),
                "gateway_reference": transaction.gateway_reference,
            },
        )
        return transaction

    @BaseService.measure_operation("update_transaction_status")
    def update_status(
        self,
        transaction_id: str,
        status: TransactionStatus,
        stage: Optional[TransactionStage] = None,
        *,
        now: Optional[datetime] = None,
    ) -> PaymentTransaction:
        """
        Move a transaction forward.

        Same status again is a no-op apart from the optional stage.

        Raises:
            NotFoundException: unknown transaction
            InvalidTransitionException: regression, nothing is written
        """
        transaction = self._require(transaction_id)
        current = transaction.status
        if not can_transition(current, status):
            raise InvalidTransitionException("transaction", current.value, status.value)

        if current != status:
            transaction.status = status
            if status == TransactionStatus.COMPLETED and transaction.completed_at is None:
                transaction.completed_at = now or _now_utc()
        if stage is not None:
            transaction.workflow_stage = stage
        self.repository.flush()

        logger.info(
            f"Ledger: transaction {transaction_id} {current.value} -> {status.value}",
            extra={"transaction_id": transaction_id, "stage": transaction.workflow_stage.value},
        )
        return transaction

    def set_stage(self, transaction_id: str, stage: TransactionStage) -> PaymentTransaction:
        transaction = self._require(transaction_id)
        transaction.workflow_stage = stage
        self.repository.flush()
        return transaction

    def set_payout_eligible_at(
        self, transaction_id: str, eligible_at: datetime
    ) -> PaymentTransaction:
        transaction = self._require(transaction_id)
        transaction.teacher_payout_eligible_at = eligible_at
        self.repository.flush()
        return transaction

    @BaseService.measure_operation("mark_scheduled_refund")
    def mark_scheduled_refund(
        self,
        transaction_id: str,
        refund_at: datetime,
        amount: Optional[Any] = None,
    ) -> PaymentTransaction:
        """
        Cancel a payment and schedule its refund.

        This is the one path that may move a completed payment to cancelled.
        A payment whose teacher payout already went out cannot be refunded here.
        ``amount`` defaults to the full payment; prorated refunds pass less.

        Raises:
            InvalidAmountException: amount is negative or exceeds the payment
        """
        transaction = self._require(transaction_id)
        if transaction.status == TransactionStatus.FAILED or (
            transaction.workflow_stage == TransactionStage.COMPLETED
        ):
            raise InvalidTransitionException(
                "transaction",
                f"{transaction.status.value}/{transaction.workflow_stage.value}",
                f"{TransactionStatus.CANCELLED.value}/{TransactionStage.REFUND_TO_STUDENT.value}",
            )

        refund_amount = transaction.amount if amount is None else to_money(amount)
        if refund_amount < 0 or refund_amount > transaction.amount:
            raise InvalidAmountException(
                refund_amount, f"Refund must be between 0 and {transaction.amount}"
            )

        transaction.status = TransactionStatus.CANCELLED
        transaction.workflow_stage = TransactionStage.REFUND_TO_STUDENT
        transaction.scheduled_refund_at = refund_at
        transaction.scheduled_refund_amount = refund_amount
        self.repository.flush()

        logger.info(
            f"Ledger: refund {refund_amount} for {transaction_id} "
            f"scheduled at {refund_at.isoformat()}",
            extra={
                "transaction_id": transaction_id,
                "scheduled_refund_at": refund_at.isoformat(),
                "scheduled_refund_amount": str(refund_amount),
            },
        )
        return transaction

    def record_payout_disbursement(
        self, original: PaymentTransaction, payout: PaymentTransaction
    ) -> PaymentTransaction:
        """Close out the original payment once its teacher payout row exists."""
        original.workflow_stage = TransactionStage.COMPLETED
        original.notes = _append_note(
            original.notes, f"Teacher payout completed via transaction {payout.id}"
        )
        self.repository.flush()
        return original

    def append_note(self, transaction_id: str, note: str) -> PaymentTransaction:
        transaction = self._require(transaction_id)
        transaction.notes = _append_note(transaction.notes, note)
        self.repository.flush()
        return transaction

    # Reads

    def get_transaction(self, transaction_id: str) -> Optional[PaymentTransaction]:
        return self.repository.get_by_id(transaction_id)

    def get_transaction_by_gateway_ref(
        self, gateway_reference: str
    ) -> Optional[PaymentTransaction]:
        """Captured payment recorded for a gateway reference."""
        return self.repository.get_by_gateway_reference(gateway_reference, captured_only=True)

    def find_gateway_attempt(
        self, gateway_reference: str, status: TransactionStatus
    ) -> Optional[PaymentTransaction]:
        """Uncaptured payment attempt (failed or cancelled) for a gateway reference."""
        return self.repository.get_by_gateway_reference(gateway_reference, statuses=[status])

    def list_by_user(self, user_id: str) -> List[PaymentTransaction]:
        return self.repository.list_by_user(user_id)

    def list_by_booking(self, booking_id: str) -> List[PaymentTransaction]:
        return self.repository.list_by_booking(booking_id)

    def list_due_refunds(self, now: datetime) -> List[PaymentTransaction]:
        return self.repository.list_due_refunds(now)

    def get_settled_payment(
        self, *, booking_id: Optional[str] = None, enrollment_id: Optional[str] = None
    ) -> Optional[PaymentTransaction]:
        return self.repository.get_settled_payment(
            booking_id=booking_id, enrollment_id=enrollment_id
        )

    def list_refunds(self, transaction_id: str) -> List[PaymentTransaction]:
        return self.repository.list_children(transaction_id, TransactionType.REFUND)

    def total_refunded(self, transaction_id: str) -> Decimal:
        return sum((r.amount for r in self.list_refunds(transaction_id)), Decimal("0.00"))

    def _require(self, transaction_id: str) -> PaymentTransaction:
        transaction = self.repository.get_by_id(transaction_id)
        if transaction is None:
            raise NotFoundException(
                f"Transaction {transaction_id} not found",
                code="TRANSACTION_NOT_FOUND",
                details={"transaction_id": transaction_id},
            )
        return transaction
