"""Repository for unsettled finance records."""

from __future__ import annotations

from decimal import Decimal
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.models.unsettled_finance import UnsettledFinance, UnsettledStatus
from app.repositories.base_repository import BaseRepository


class UnsettledFinanceRepository(BaseRepository[UnsettledFinance]):
    def __init__(self, db: Session) -> None:
        super().__init__(db, UnsettledFinance)

    def list_by_status(
        self, status: Optional[UnsettledStatus] = None, *, limit: int = 200
    ) -> list[UnsettledFinance]:
        query = self._build_query()
        if status is not None:
            query = query.filter(UnsettledFinance.status == status)
        query = query.order_by(UnsettledFinance.created_at.desc(), UnsettledFinance.id.desc())
        return self._execute_query(query.limit(limit))

    def list_by_gateway_reference(self, gateway_reference: str) -> list[UnsettledFinance]:
        return self.find_by(gateway_reference=gateway_reference)

    def sum_open_amount(self) -> Decimal:
        query = self.db.query(func.coalesce(func.sum(UnsettledFinance.conflict_amount), 0)).filter(
            UnsettledFinance.status == UnsettledStatus.OPEN
        )
        return Decimal(str(self._execute_scalar(query) or 0))
