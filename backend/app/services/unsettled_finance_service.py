"""
Unsettled finance tracker.

Money that fell outside the normal flow (a payment whose enrollment failed,
a payout that could not be sent, a refund with no matching payment) is
recorded here for manual reconciliation. Records move ``open -> resolved``
exactly once.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
import logging
from typing import Any, List, Optional

from sqlalchemy.orm import Session

from app.core.exceptions import AlreadyResolvedException, NotFoundException
from app.models.unsettled_finance import (
    ConflictType,
    UnsettledFinance,
    UnsettledPriority,
    UnsettledStatus,
)
from app.monitoring.prometheus_metrics import prometheus_metrics
from app.repositories.factory import RepositoryFactory
from app.services.base import BaseService
from app.services.fee_calculator import to_money

logger = logging.getLogger(__name__)


class UnsettledFinanceService(BaseService):
    def __init__(self, db: Session, repository: Optional[Any] = None):
        super().__init__(db)
        self.repository = repository or RepositoryFactory.create_unsettled_finance_repository(db)

    @BaseService.measure_operation("record_unsettled_finance")
    def record(
        self,
        gateway_reference: str,
        conflict_type: ConflictType,
        amount: Any,
        description: str,
        *,
        transaction_id: Optional[str] = None,
        priority: UnsettledPriority = UnsettledPriority.MEDIUM,
    ) -> UnsettledFinance:
        """
        Open a reconciliation record.

        Callers invoke this after rolling back the failed business work, so the
        record is committed on its own.
        """
        record = self.repository.create(
            gateway_reference=gateway_reference,
            conflict_type=conflict_type,
            conflict_amount=to_money(amount),
            description=description,
            transaction_id=transaction_id,
            priority=priority,
            status=UnsettledStatus.OPEN,
        )
        prometheus_metrics.record_unsettled(conflict_type.value)
        logger.warning(
            f"Unsettled finance {record.id} opened: {conflict_type.value} "
            f"{record.conflict_amount} for {gateway_reference}",
            extra={
                "unsettled_id": record.id,
                "conflict_type": conflict_type.value,
                "gateway_reference": gateway_reference,
                "amount": str(record.conflict_amount),
                "priority": priority.value,
            },
        )
        return record

    def list_by_status(self, status: Optional[UnsettledStatus] = None) -> List[UnsettledFinance]:
        return self.repository.list_by_status(status)

    def get(self, record_id: str) -> Optional[UnsettledFinance]:
        return self.repository.get_by_id(record_id)

    @BaseService.measure_operation("resolve_unsettled_finance")
    def resolve(
        self,
        record_id: str,
        action: str,
        amount: Any,
        notes: Optional[str] = None,
        resolved_by: Optional[str] = None,
        *,
        now: Optional[datetime] = None,
    ) -> UnsettledFinance:
        """
        Close a record with its resolution.

        Raises:
            NotFoundException: unknown record
            AlreadyResolvedException: record was resolved before
        """
        record = self.repository.get_by_id(record_id)
        if record is None:
            raise NotFoundException(
                f"Unsettled finance record {record_id} not found",
                code="UNSETTLED_NOT_FOUND",
                details={"record_id": record_id},
            )
        if record.status == UnsettledStatus.RESOLVED:
            raise AlreadyResolvedException(record_id, record.resolution_amount)

        record.status = UnsettledStatus.RESOLVED
        record.resolution_action = action
        record.resolution_amount = to_money(amount)
        record.resolution_notes = notes
        record.resolved_by = resolved_by
        record.resolution_date = now or datetime.now(timezone.utc)
        self.repository.flush()

        logger.info(
            f"Unsettled finance {record_id} resolved via {action}",
            extra={
                "unsettled_id": record_id,
                "resolution_action": action,
                "resolution_amount": str(record.resolution_amount),
                "resolved_by": resolved_by,
            },
        )
        return record

    def has_open(self, transaction_id: str, conflict_type: ConflictType) -> bool:
        return (
            self.repository.find_one_by(
                transaction_id=transaction_id,
                conflict_type=conflict_type,
                status=UnsettledStatus.OPEN,
            )
            is not None
        )

    def open_amount(self) -> Decimal:
        return self.repository.sum_open_amount()
