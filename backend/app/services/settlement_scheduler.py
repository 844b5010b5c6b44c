"""
Settlement sweep.

Driven by Celery beat: every pass loads the workflows whose
``next_action_at`` has arrived and advances each inside its own savepoint.
A failing workflow is rolled back alone, its error appended to
``processing_errors``; after repeated failures it is marked failed and
escalated as a ``workflow_failure`` unsettled record.
"""

from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import Any, Optional

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import DomainException
from app.models.unsettled_finance import ConflictType, UnsettledPriority
from app.monitoring.prometheus_metrics import prometheus_metrics
from app.schemas.settlement import SweepResult
from app.services.base import BaseService
from app.services.fee_policy_service import FeePolicyService
from app.services.payment_workflow_service import PaymentWorkflowService
from app.services.transaction_ledger import TransactionLedgerService
from app.services.unsettled_finance_service import UnsettledFinanceService

logger = logging.getLogger(__name__)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _describe(exc: Exception) -> str:
    if isinstance(exc, DomainException):
        return exc.message
    return f"{type(exc).__name__}: {exc}"


class SettlementScheduler(BaseService):
    def __init__(
        self,
        db: Session,
        ledger: Optional[Any] = None,
        workflow_service: Optional[PaymentWorkflowService] = None,
        fee_policy_service: Optional[FeePolicyService] = None,
        unsettled_service: Optional[UnsettledFinanceService] = None,
    ):
        super().__init__(db)
        self.ledger = ledger or TransactionLedgerService(db)
        self.workflow_service = workflow_service or PaymentWorkflowService(db, ledger=self.ledger)
        self.fee_policy_service = fee_policy_service or FeePolicyService(db)
        self.unsettled_service = unsettled_service or UnsettledFinanceService(db)

    @BaseService.measure_operation("run_workflow_sweep")
    def run_workflow_sweep(self, now: Optional[datetime] = None) -> SweepResult:
        """Advance every due workflow once; never raises for a single workflow."""
        now = now or _now_utc()
        policy = self.fee_policy_service.resolve_policy()
        due_ids = [
            workflow.id
            for workflow in self.workflow_service.list_due_workflows(
                now, limit=settings.sweep_batch_size
            )
        ]
        result = SweepResult(examined=len(due_ids))

        for workflow_id in due_ids:
            try:
                with self.db.begin_nested():
                    advanced = self.workflow_service.advance_stage(workflow_id, now, policy)
            except Exception as exc:
                result.errored += 1
                prometheus_metrics.record_sweep_outcome("errored")
                logger.error(
                    f"Workflow {workflow_id} failed to advance: {_describe(exc)}",
                    extra={"workflow_id": workflow_id},
                    exc_info=not isinstance(exc, DomainException),
                )
                self._record_failure(workflow_id, exc, now)
                continue

            if advanced:
                result.advanced += 1
                prometheus_metrics.record_sweep_outcome("advanced")
            else:
                result.skipped += 1
                prometheus_metrics.record_sweep_outcome("skipped")

        self.db.commit()
        logger.info(
            f"Workflow sweep: examined={result.examined} advanced={result.advanced} "
            f"skipped={result.skipped} errored={result.errored}",
            extra=result.model_dump(),
        )
        return result

    def _record_failure(self, workflow_id: str, exc: Exception, now: datetime) -> None:
        workflow = self.workflow_service.record_processing_error(
            workflow_id, f"{now.isoformat()} {_describe(exc)}"
        )
        if workflow is None:
            return
        if len(workflow.processing_errors or []) < settings.workflow_max_processing_errors:
            return

        self.workflow_service.mark_failed(workflow_id, now)
        transaction = self.ledger.get_transaction(workflow.transaction_id)
        self.unsettled_service.record(
            gateway_reference=(transaction.gateway_reference if transaction else None)
            or workflow.transaction_id,
            conflict_type=ConflictType.WORKFLOW_FAILURE,
            amount=transaction.amount if transaction else 0,
            description=(
                f"Workflow {workflow_id} stopped at {workflow.current_stage.value} after "
                f"{len(workflow.processing_errors)} errors; last: {_describe(exc)}"
            ),
            transaction_id=workflow.transaction_id,
            priority=UnsettledPriority.HIGH,
        )
