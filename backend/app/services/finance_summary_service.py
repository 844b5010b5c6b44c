"""Platform-wide money totals for the admin finance dashboard."""

from __future__ import annotations

import logging
from typing import Any, Optional

from sqlalchemy.orm import Session

from app.models.payment_transaction import PAYMENT_TYPES, TransactionStatus, TransactionType
from app.repositories.factory import RepositoryFactory
from app.schemas.settlement import FinanceSummary
from app.services.base import BaseService
from app.services.unsettled_finance_service import UnsettledFinanceService

logger = logging.getLogger(__name__)

# Captured payments keep counting as revenue after they are cancelled for refund;
# the refund itself is reported separately.
CAPTURED_STATUSES = (TransactionStatus.COMPLETED, TransactionStatus.CANCELLED)


class FinanceSummaryService(BaseService):
    def __init__(
        self,
        db: Session,
        transaction_repository: Optional[Any] = None,
        unsettled_service: Optional[UnsettledFinanceService] = None,
    ):
        super().__init__(db)
        self.transaction_repository = (
            transaction_repository or RepositoryFactory.create_payment_transaction_repository(db)
        )
        self.unsettled_service = unsettled_service or UnsettledFinanceService(db)

    @BaseService.measure_operation("finance_summary")
    def get_summary(self) -> FinanceSummary:
        repo = self.transaction_repository
        completed = (TransactionStatus.COMPLETED,)

        summary = FinanceSummary(
            total_platform_revenue=repo.sum_amount(types=PAYMENT_TYPES, statuses=CAPTURED_STATUSES),
            total_teacher_payouts=repo.sum_amount(
                types=(TransactionType.TEACHER_PAYOUT,), statuses=completed
            ),
            total_refunds=repo.sum_amount(types=(TransactionType.REFUND,), statuses=completed),
            total_fees_collected=repo.sum_amount(
                types=PAYMENT_TYPES, statuses=CAPTURED_STATUSES, column="transaction_fee"
            ),
            open_conflict_amount=self.unsettled_service.open_amount(),
            distinct_students=repo.count_distinct_users(
                column="from_user_id", types=PAYMENT_TYPES, statuses=CAPTURED_STATUSES
            ),
            distinct_teachers=repo.count_distinct_users(
                column="to_user_id", types=(TransactionType.TEACHER_PAYOUT,), statuses=completed
            ),
        )
        logger.debug("Finance summary computed", extra=summary.model_dump(mode="json"))
        return summary
