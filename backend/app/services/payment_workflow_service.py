"""
Persistence around the settlement state machine.

``advance_stage`` reads a workflow, runs the pure engine, and writes the
result with a compare-and-set on ``current_stage`` so two sweeps can never
apply the same transition. Transaction changes go through the ledger.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
import logging
from typing import Any, List, Optional

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import ConflictException, NotFoundException
from app.models.payment_transaction import PaymentTransaction
from app.models.payment_workflow import (
    PaymentWorkflow,
    WorkflowStage,
    WorkflowStatus,
    WorkflowType,
)
from app.monitoring.prometheus_metrics import prometheus_metrics
from app.repositories.factory import RepositoryFactory
from app.services.base import BaseService
from app.services.fee_calculator import FeePolicySnapshot
from app.services.payment_workflow_engine import (
    TransactionSnapshot,
    WorkflowSnapshot,
    WorkflowStep,
    advance_workflow,
    cancel_workflow_step,
    diff,
)
from app.services.transaction_ledger import TransactionLedgerService

logger = logging.getLogger(__name__)

MAX_PROCESSING_ERRORS = 50


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class PaymentWorkflowService(BaseService):
    """Create, advance, cancel and override settlement workflows."""

    def __init__(
        self,
        db: Session,
        ledger: Optional[Any] = None,
        repository: Optional[Any] = None,
    ):
        super().__init__(db)
        self.ledger = ledger or TransactionLedgerService(db)
        self.repository = repository or RepositoryFactory.create_payment_workflow_repository(db)

    @BaseService.measure_operation("create_workflow")
    def create_workflow(
        self,
        transaction: PaymentTransaction,
        workflow_type: WorkflowType,
        next_action_at: Optional[datetime],
        *,
        policy: Optional[FeePolicySnapshot] = None,
    ) -> PaymentWorkflow:
        """
        Start the state machine for a payment.

        Raises:
            ConflictException: the transaction already has an active workflow
        """
        existing = self.repository.get_active_for_transaction(transaction.id)
        if existing is not None:
            raise ConflictException(
                f"Transaction {transaction.id} already has an active workflow",
                code="WORKFLOW_ALREADY_ACTIVE",
                details={"transaction_id": transaction.id, "workflow_id": existing.id},
            )

        wait_hours = (
            policy.teacher_payout_wait_hours
            if policy is not None
            else settings.default_teacher_payout_wait_hours
        )
        workflow = self.repository.create(
            transaction_id=transaction.id,
            workflow_type=workflow_type,
            current_stage=WorkflowStage.PAYMENT_RECEIVED,
            next_stage=WorkflowStage.WAITING_PAYOUT_DELAY,
            next_action_at=next_action_at,
            status=WorkflowStatus.ACTIVE,
            cancellation_window_hours=settings.cancellation_window_hours,
            teacher_payout_delay_hours=wait_hours,
            processing_errors=[],
        )
        logger.info(
            f"Workflow {workflow.id} started for transaction {transaction.id}",
            extra={
                "workflow_id": workflow.id,
                "transaction_id": transaction.id,
                "next_action_at": next_action_at.isoformat() if next_action_at else None,
            },
        )
        return workflow

    def get_workflow(self, workflow_id: str) -> Optional[PaymentWorkflow]:
        return self.repository.get_by_id(workflow_id)

    def get_active_for_transaction(self, transaction_id: str) -> Optional[PaymentWorkflow]:
        return self.repository.get_active_for_transaction(transaction_id)

    def list_active_workflows(self, *, limit: int = 500) -> List[PaymentWorkflow]:
        return self.repository.list_active(limit=limit)

    def list_due_workflows(self, now: datetime, *, limit: int = 500) -> List[PaymentWorkflow]:
        return self.repository.list_due(now, limit=limit)

    @BaseService.measure_operation("advance_workflow_stage")
    def advance_stage(self, workflow_id: str, now: datetime, policy: FeePolicySnapshot) -> bool:
        """
        Run one state-machine tick for a workflow.

        Returns True when a change was written, False when nothing was due or
        another worker already moved the workflow.

        Raises:
            NotFoundException: unknown workflow or transaction
            MissingPayoutEligibilityException: propagated from the engine
        """
        workflow = self._require(workflow_id)
        if not workflow.is_active:
            return False
        transaction = self._require_transaction(workflow.transaction_id)

        step = advance_workflow(
            WorkflowSnapshot.from_model(workflow),
            TransactionSnapshot.from_model(transaction),
            now,
            policy,
            payout_completion_delay=timedelta(minutes=settings.payout_completion_delay_minutes),
        )
        if not step.changed:
            return False
        return self._apply(workflow, transaction, step, now)

    @BaseService.measure_operation("cancel_workflow")
    def cancel_workflow(self, transaction_id: str, now: datetime) -> Optional[PaymentWorkflow]:
        """
        Move the transaction's active workflow into the refund branch.

        No-op returning None when there is no active workflow. The refund is
        scheduled on the transaction unless the caller already did so.
        """
        workflow = self.repository.get_active_for_transaction(transaction_id)
        if workflow is None:
            return None
        transaction = self._require_transaction(transaction_id)

        step = cancel_workflow_step(
            WorkflowSnapshot.from_model(workflow),
            TransactionSnapshot.from_model(transaction),
            now,
            refund_delay=timedelta(hours=settings.refund_settlement_delay_hours),
        )
        if not self._apply(workflow, transaction, step, now):
            raise ConflictException(
                f"Workflow {workflow.id} changed while cancelling",
                code="WORKFLOW_CONCURRENT_UPDATE",
                details={"workflow_id": workflow.id},
            )
        logger.info(
            f"Workflow {workflow.id} cancelled into refund branch",
            extra={"workflow_id": workflow.id, "transaction_id": transaction_id},
        )
        return workflow

    @BaseService.measure_operation("override_workflow_stage")
    def override_stage(
        self,
        workflow_id: str,
        stage: WorkflowStage,
        next_action_at: Optional[datetime] = None,
        *,
        actor_id: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> PaymentWorkflow:
        """
        Administrative override; the one path allowed to move a stage backwards.

        Terminal stages close the workflow and clear ``next_action_at``.
        """
        workflow = self._require(workflow_id)
        previous = workflow.current_stage

        workflow.current_stage = stage
        if stage in (WorkflowStage.COMPLETED, WorkflowStage.REFUND_TO_STUDENT):
            workflow.status = WorkflowStatus.COMPLETED
            workflow.next_stage = None
            workflow.next_action_at = None
        else:
            workflow.status = WorkflowStatus.ACTIVE
            workflow.next_action_at = next_action_at
        workflow.last_processed_at = _now_utc()
        self.repository.flush()

        logger.warning(
            f"Workflow {workflow_id} stage overridden {previous.value} -> {stage.value}",
            extra={
                "workflow_id": workflow_id,
                "from_stage": previous.value,
                "to_stage": stage.value,
                "actor_id": actor_id,
                "reason": reason,
            },
        )
        return workflow

    def record_processing_error(self, workflow_id: str, message: str) -> Optional[PaymentWorkflow]:
        """Append to the workflow's error log; the workflow stays active."""
        workflow = self.repository.get_by_id(workflow_id)
        if workflow is None:
            logger.error(f"Cannot record error for missing workflow {workflow_id}: {message}")
            return None
        if len(workflow.processing_errors or []) >= MAX_PROCESSING_ERRORS:
            return workflow
        return self.repository.append_error(workflow, message)

    def mark_failed(self, workflow_id: str, now: datetime) -> PaymentWorkflow:
        """Stop automatic processing for a workflow that keeps erroring."""
        workflow = self._require(workflow_id)
        workflow.status = WorkflowStatus.FAILED
        workflow.next_action_at = None
        workflow.last_processed_at = now
        self.repository.flush()
        logger.error(
            f"Workflow {workflow_id} failed after {len(workflow.processing_errors or [])} errors",
            extra={"workflow_id": workflow_id, "transaction_id": workflow.transaction_id},
        )
        return workflow

    def _apply(
        self,
        workflow: PaymentWorkflow,
        transaction: PaymentTransaction,
        step: WorkflowStep,
        now: datetime,
    ) -> bool:
        before = WorkflowSnapshot.from_model(workflow)
        changes = diff(before, step.workflow)
        changes["updated_at"] = now
        applied = self.repository.compare_and_set_stage(
            workflow.id, expected_stage=before.current_stage, values=changes
        )
        if not applied:
            logger.info(
                f"Workflow {workflow.id} moved past {before.current_stage.value} elsewhere; skipping",
                extra={"workflow_id": workflow.id},
            )
            return False

        tx_before = TransactionSnapshot.from_model(transaction)
        tx_changes = diff(tx_before, step.transaction)
        if "scheduled_refund_at" in tx_changes:
            self.ledger.mark_scheduled_refund(transaction.id, tx_changes["scheduled_refund_at"])
        else:
            if "teacher_payout_eligible_at" in tx_changes:
                self.ledger.set_payout_eligible_at(
                    transaction.id, tx_changes["teacher_payout_eligible_at"]
                )
            if "status" in tx_changes:
                self.ledger.update_status(
                    transaction.id,
                    tx_changes["status"],
                    tx_changes.get("workflow_stage"),
                    now=now,
                )
            elif "workflow_stage" in tx_changes:
                self.ledger.set_stage(transaction.id, tx_changes["workflow_stage"])

        if before.current_stage != step.workflow.current_stage:
            prometheus_metrics.record_workflow_transition(
                before.current_stage.value, step.workflow.current_stage.value
            )
        logger.info(
            f"Workflow {workflow.id}: {before.current_stage.value} -> "
            f"{step.workflow.current_stage.value} ({', '.join(step.side_effects)})",
            extra={
                "workflow_id": workflow.id,
                "transaction_id": transaction.id,
                "side_effects": list(step.side_effects),
            },
        )
        return True

    def _require(self, workflow_id: str) -> PaymentWorkflow:
        workflow = self.repository.get_by_id(workflow_id)
        if workflow is None:
            raise NotFoundException(
                f"Workflow {workflow_id} not found",
                code="WORKFLOW_NOT_FOUND",
                details={"workflow_id": workflow_id},
            )
        return workflow

    def _require_transaction(self, transaction_id: str) -> PaymentTransaction:
        transaction = self.ledger.get_transaction(transaction_id)
        if transaction is None:
            raise NotFoundException(
                f"Transaction {transaction_id} not found",
                code="TRANSACTION_NOT_FOUND",
                details={"transaction_id": transaction_id},
            )
        return transaction
