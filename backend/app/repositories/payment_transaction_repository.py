"""Repository for the payment transaction ledger."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
import logging
from typing import Iterable, Optional

from sqlalchemy import exists, func, or_
from sqlalchemy.orm import Session, aliased

from app.models.payment_transaction import (
    PAYMENT_TYPES,
    PaymentTransaction,
    TransactionStage,
    TransactionStatus,
    TransactionType,
)
from app.repositories.base_repository import BaseRepository

logger = logging.getLogger(__name__)

# Stages of a captured payment whose money the platform still holds
HELD_STAGES = (TransactionStage.STUDENT_TO_ADMIN, TransactionStage.ADMIN_TO_TEACHER)


class PaymentTransactionRepository(BaseRepository[PaymentTransaction]):
    """Data access for ``payment_transactions``; rows are never deleted."""

    def __init__(self, db: Session) -> None:
        super().__init__(db, PaymentTransaction)

    def get_by_gateway_reference(
        self,
        gateway_reference: str,
        *,
        types: Iterable[TransactionType] = PAYMENT_TYPES,
        statuses: Optional[Iterable[TransactionStatus]] = None,
        captured_only: bool = False,
    ) -> Optional[PaymentTransaction]:
        """
        Earliest transaction of the given types with this gateway reference.

        ``captured_only`` limits the match to payments the gateway actually
        collected (``completed_at`` set), ignoring failed or abandoned attempts.
        """
        query = self._build_query().filter(
            PaymentTransaction.gateway_reference == gateway_reference,
            PaymentTransaction.transaction_type.in_(list(types)),
        )
        if statuses is not None:
            query = query.filter(PaymentTransaction.status.in_(list(statuses)))
        if captured_only:
            query = query.filter(PaymentTransaction.completed_at.isnot(None))
        query = (
            query.order_by(PaymentTransaction.created_at.asc(), PaymentTransaction.id.asc())
            .limit(1)
        )
        rows = self._execute_query(query)
        return rows[0] if rows else None

    def list_by_user(self, user_id: str) -> list[PaymentTransaction]:
        """Transactions where the user is either party, newest first."""
        query = (
            self._build_query()
            .filter(
                or_(
                    PaymentTransaction.from_user_id == user_id,
                    PaymentTransaction.to_user_id == user_id,
                )
            )
            .order_by(PaymentTransaction.created_at.desc(), PaymentTransaction.id.desc())
        )
        return self._execute_query(query)

    def list_by_booking(self, booking_id: str) -> list[PaymentTransaction]:
        query = (
            self._build_query()
            .filter(PaymentTransaction.booking_id == booking_id)
            .order_by(PaymentTransaction.created_at.asc(), PaymentTransaction.id.asc())
        )
        return self._execute_query(query)

    def list_children(
        self, parent_transaction_id: str, transaction_type: Optional[TransactionType] = None
    ) -> list[PaymentTransaction]:
        query = self._build_query().filter(
            PaymentTransaction.parent_transaction_id == parent_transaction_id
        )
        if transaction_type is not None:
            query = query.filter(PaymentTransaction.transaction_type == transaction_type)
        return self._execute_query(query.order_by(PaymentTransaction.id.asc()))

    def get_settled_payment(
        self,
        *,
        booking_id: Optional[str] = None,
        enrollment_id: Optional[str] = None,
    ) -> Optional[PaymentTransaction]:
        """Completed payment for a booking or enrollment, if one was captured."""
        query = self._build_query().filter(
            PaymentTransaction.transaction_type.in_(list(PAYMENT_TYPES)),
            PaymentTransaction.status == TransactionStatus.COMPLETED,
        )
        if booking_id is not None:
            query = query.filter(PaymentTransaction.booking_id == booking_id)
        elif enrollment_id is not None:
            query = query.filter(PaymentTransaction.enrollment_id == enrollment_id)
        else:
            return None
        rows = self._execute_query(query.order_by(PaymentTransaction.created_at.asc()).limit(1))
        return rows[0] if rows else None

    def get_payout_for(self, parent_transaction_id: str) -> Optional[PaymentTransaction]:
        return self.find_one_by(
            parent_transaction_id=parent_transaction_id,
            transaction_type=TransactionType.TEACHER_PAYOUT,
        )

    def list_payout_eligible(self, now: datetime, *, limit: int = 500) -> list[PaymentTransaction]:
        """Completed payments still held by the platform whose payout time has passed."""
        query = (
            self._build_query()
            .filter(
                PaymentTransaction.transaction_type.in_(list(PAYMENT_TYPES)),
                PaymentTransaction.status == TransactionStatus.COMPLETED,
                PaymentTransaction.workflow_stage.in_(list(HELD_STAGES)),
                PaymentTransaction.teacher_payout_eligible_at.isnot(None),
                PaymentTransaction.teacher_payout_eligible_at <= now,
            )
            .order_by(PaymentTransaction.teacher_payout_eligible_at.asc())
            .limit(limit)
        )
        return self._execute_query(self._lock_for_sweep(query))

    def list_due_refunds(self, now: datetime) -> list[PaymentTransaction]:
        """
        Cancelled payments whose deferred refund time has arrived.

        Payments that already have a ``refund`` child row were paid back and
        are left out.
        """
        refund = aliased(PaymentTransaction)
        already_refunded = exists().where(
            refund.parent_transaction_id == PaymentTransaction.id,
            refund.transaction_type == TransactionType.REFUND,
        )
        query = (
            self._build_query()
            .filter(
                PaymentTransaction.transaction_type.in_(list(PAYMENT_TYPES)),
                PaymentTransaction.status == TransactionStatus.CANCELLED,
                PaymentTransaction.workflow_stage == TransactionStage.REFUND_TO_STUDENT,
                PaymentTransaction.scheduled_refund_at.isnot(None),
                PaymentTransaction.scheduled_refund_at <= now,
                ~already_refunded,
            )
            .order_by(PaymentTransaction.scheduled_refund_at.asc())
        )
        return self._execute_query(query)

    def sum_amount(
        self,
        *,
        types: Iterable[TransactionType],
        statuses: Iterable[TransactionStatus],
        column: str = "amount",
    ) -> Decimal:
        """Sum a money column over transactions of the given types and statuses."""
        target = getattr(PaymentTransaction, column)
        query = self.db.query(func.coalesce(func.sum(target), 0)).filter(
            PaymentTransaction.transaction_type.in_(list(types)),
            PaymentTransaction.status.in_(list(statuses)),
        )
        return Decimal(str(self._execute_scalar(query) or 0))

    def count_distinct_users(
        self,
        *,
        column: str,
        types: Iterable[TransactionType],
        statuses: Iterable[TransactionStatus],
    ) -> int:
        target = getattr(PaymentTransaction, column)
        query = self.db.query(func.count(func.distinct(target))).filter(
            target.isnot(None),
            PaymentTransaction.transaction_type.in_(list(types)),
            PaymentTransaction.status.in_(list(statuses)),
        )
        return int(self._execute_scalar(query) or 0)
