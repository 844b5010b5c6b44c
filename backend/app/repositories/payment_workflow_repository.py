"""Repository for settlement workflows, including the compare-and-set stage write."""

from __future__ import annotations

from datetime import datetime
import logging
from typing import Any, Optional

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.exceptions import RepositoryException
from app.models.payment_workflow import PaymentWorkflow, WorkflowStage, WorkflowStatus
from app.repositories.base_repository import BaseRepository

logger = logging.getLogger(__name__)


class PaymentWorkflowRepository(BaseRepository[PaymentWorkflow]):
    def __init__(self, db: Session) -> None:
        super().__init__(db, PaymentWorkflow)

    def get_active_for_transaction(self, transaction_id: str) -> Optional[PaymentWorkflow]:
        return self.find_one_by(transaction_id=transaction_id, status=WorkflowStatus.ACTIVE)

    def list_for_transaction(self, transaction_id: str) -> list[PaymentWorkflow]:
        query = (
            self._build_query()
            .filter(PaymentWorkflow.transaction_id == transaction_id)
            .order_by(PaymentWorkflow.created_at.asc(), PaymentWorkflow.id.asc())
        )
        return self._execute_query(query)

    def list_active(self, *, limit: int = 500) -> list[PaymentWorkflow]:
        query = (
            self._build_query()
            .filter(PaymentWorkflow.status == WorkflowStatus.ACTIVE)
            .order_by(PaymentWorkflow.next_action_at.asc(), PaymentWorkflow.id.asc())
            .limit(limit)
        )
        return self._execute_query(query)

    def list_due(self, now: datetime, *, limit: int = 500) -> list[PaymentWorkflow]:
        """Active workflows with a pending automatic action at or before ``now``."""
        query = (
            self._build_query()
            .filter(
                PaymentWorkflow.status == WorkflowStatus.ACTIVE,
                PaymentWorkflow.next_action_at.isnot(None),
                PaymentWorkflow.next_action_at <= now,
            )
            .order_by(PaymentWorkflow.next_action_at.asc(), PaymentWorkflow.id.asc())
            .limit(limit)
        )
        return self._execute_query(self._lock_for_sweep(query))

    def compare_and_set_stage(
        self,
        workflow_id: str,
        *,
        expected_stage: WorkflowStage,
        values: dict[str, Any],
    ) -> bool:
        """
        Write ``values`` only if the row is still at ``expected_stage``.

        Returns False when another worker moved the workflow first.
        """
        stmt = (
            update(PaymentWorkflow)
            .where(
                PaymentWorkflow.id == workflow_id,
                PaymentWorkflow.current_stage == expected_stage,
            )
            .values(**values)
            .execution_options(synchronize_session="evaluate")
        )
        try:
            result = self.db.execute(stmt)
        except SQLAlchemyError as e:
            self.logger.error(f"Error updating workflow {workflow_id}: {str(e)}")
            raise RepositoryException(f"Failed to update workflow: {str(e)}") from e
        return bool(result.rowcount)

    def append_error(self, workflow: PaymentWorkflow, message: str) -> PaymentWorkflow:
        # Reassign so the JSON column is flagged dirty
        workflow.processing_errors = [*(workflow.processing_errors or []), message]
        self.flush()
        return workflow
