"""
Settlement state machine.

Pure functions over frozen snapshots: callers pass ``now`` and the resolved
fee policy, and get back the next workflow/transaction state plus the names
of the side effects it implies. Nothing here touches the database or the
clock; ``PaymentWorkflowService`` persists the result.

Stage order::

    payment_received -> waiting_payout_delay -> teacher_payout -> completed
           \\__________________\\__________________\\-> refund_to_student
"""

from __future__ import annotations

from dataclasses import dataclass, fields, replace
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Dict, Optional, Tuple

from app.core.constants import PAYOUT_COMPLETION_DELAY_MINUTES, REFUND_SETTLEMENT_DELAY_HOURS
from app.core.exceptions import InvalidTransitionException, MissingPayoutEligibilityException
from app.models.payment_transaction import TransactionStage, TransactionStatus
from app.models.payment_workflow import WorkflowStage, WorkflowStatus
from app.services.fee_calculator import FeePolicySnapshot
from app.services.transaction_ledger import can_transition

if TYPE_CHECKING:
    from app.models.payment_transaction import PaymentTransaction
    from app.models.payment_workflow import PaymentWorkflow

TERMINAL_STAGES = frozenset({WorkflowStage.REFUND_TO_STUDENT, WorkflowStage.COMPLETED})

# Side effect names reported on WorkflowStep
PAYOUT_ELIGIBILITY_SET = "payout_eligibility_set"
PAYOUT_RELEASED = "payout_released"
PAYOUT_RESCHEDULED = "payout_rescheduled"
WORKFLOW_COMPLETED = "workflow_completed"
REFUND_SCHEDULED = "refund_scheduled"


@dataclass(frozen=True)
class WorkflowSnapshot:
    id: str
    transaction_id: str
    current_stage: WorkflowStage
    status: WorkflowStatus
    next_stage: Optional[WorkflowStage] = None
    next_action_at: Optional[datetime] = None
    last_processed_at: Optional[datetime] = None
    teacher_payout_delay_hours: int = 24

    @classmethod
    def from_model(cls, workflow: "PaymentWorkflow") -> "WorkflowSnapshot":
        return cls(
            id=workflow.id,
            transaction_id=workflow.transaction_id,
            current_stage=workflow.current_stage,
            status=workflow.status,
            next_stage=workflow.next_stage,
            next_action_at=workflow.next_action_at,
            last_processed_at=workflow.last_processed_at,
            teacher_payout_delay_hours=workflow.teacher_payout_delay_hours,
        )

    @property
    def is_active(self) -> bool:
        return self.status == WorkflowStatus.ACTIVE


@dataclass(frozen=True)
class TransactionSnapshot:
    id: str
    status: TransactionStatus
    workflow_stage: TransactionStage
    teacher_payout_eligible_at: Optional[datetime] = None
    scheduled_refund_at: Optional[datetime] = None

    @classmethod
    def from_model(cls, transaction: "PaymentTransaction") -> "TransactionSnapshot":
        return cls(
            id=transaction.id,
            status=transaction.status,
            workflow_stage=transaction.workflow_stage,
            teacher_payout_eligible_at=transaction.teacher_payout_eligible_at,
            scheduled_refund_at=transaction.scheduled_refund_at,
        )


@dataclass(frozen=True)
class WorkflowStep:
    workflow: WorkflowSnapshot
    transaction: TransactionSnapshot
    side_effects: Tuple[str, ...] = ()

    @property
    def changed(self) -> bool:
        return bool(self.side_effects)


def diff(before: Any, after: Any) -> Dict[str, Any]:
    """Fields of a snapshot that differ between two versions."""
    return {
        f.name: getattr(after, f.name)
        for f in fields(after)
        if getattr(before, f.name) != getattr(after, f.name)
    }


def _forward(current: TransactionStatus, requested: TransactionStatus) -> TransactionStatus:
    # Captured payments are already completed; never move them backwards
    return requested if can_transition(current, requested) else current


def _release_stage(current: TransactionStage) -> TransactionStage:
    # A payout batch that already ran may have closed the payment out
    if current == TransactionStage.STUDENT_TO_ADMIN:
        return TransactionStage.ADMIN_TO_TEACHER
    return current


def advance_workflow(
    workflow: WorkflowSnapshot,
    transaction: TransactionSnapshot,
    now: datetime,
    policy: FeePolicySnapshot,
    *,
    payout_completion_delay: timedelta = timedelta(minutes=PAYOUT_COMPLETION_DELAY_MINUTES),
) -> WorkflowStep:
    """
    Compute the next state for one workflow tick.

    Returns an unchanged step (no side effects) when nothing is due.

    Raises:
        MissingPayoutEligibilityException: waiting for payout but the
            transaction has no eligibility time
    """
    idle = WorkflowStep(workflow=workflow, transaction=transaction)
    if not workflow.is_active or workflow.current_stage in TERMINAL_STAGES:
        return idle

    stage = workflow.current_stage

    if stage == WorkflowStage.PAYMENT_RECEIVED:
        class_end = workflow.next_action_at
        if class_end is None or now < class_end:
            return idle
        # Policy wait hours win over the per-workflow default
        eligible_at = class_end + timedelta(hours=policy.teacher_payout_wait_hours)
        return WorkflowStep(
            workflow=replace(
                workflow,
                current_stage=WorkflowStage.WAITING_PAYOUT_DELAY,
                next_stage=WorkflowStage.TEACHER_PAYOUT,
                next_action_at=eligible_at,
                last_processed_at=now,
                teacher_payout_delay_hours=policy.teacher_payout_wait_hours,
            ),
            transaction=replace(transaction, teacher_payout_eligible_at=eligible_at),
            side_effects=(PAYOUT_ELIGIBILITY_SET,),
        )

    if stage == WorkflowStage.WAITING_PAYOUT_DELAY:
        eligible_at = transaction.teacher_payout_eligible_at
        if eligible_at is None:
            raise MissingPayoutEligibilityException(transaction.id)
        if now < eligible_at:
            if workflow.next_action_at == eligible_at:
                return idle
            return WorkflowStep(
                workflow=replace(workflow, next_action_at=eligible_at, last_processed_at=now),
                transaction=transaction,
                side_effects=(PAYOUT_RESCHEDULED,),
            )
        return WorkflowStep(
            workflow=replace(
                workflow,
                current_stage=WorkflowStage.TEACHER_PAYOUT,
                next_stage=WorkflowStage.COMPLETED,
                next_action_at=now + payout_completion_delay,
                last_processed_at=now,
            ),
            transaction=replace(
                transaction,
                status=_forward(transaction.status, TransactionStatus.PROCESSING),
                workflow_stage=_release_stage(transaction.workflow_stage),
            ),
            side_effects=(PAYOUT_RELEASED,),
        )

    if stage == WorkflowStage.TEACHER_PAYOUT:
        if workflow.next_action_at is not None and now < workflow.next_action_at:
            return idle
        return WorkflowStep(
            workflow=replace(
                workflow,
                current_stage=WorkflowStage.COMPLETED,
                status=WorkflowStatus.COMPLETED,
                next_stage=None,
                next_action_at=None,
                last_processed_at=now,
            ),
            transaction=replace(
                transaction, status=_forward(transaction.status, TransactionStatus.COMPLETED)
            ),
            side_effects=(WORKFLOW_COMPLETED,),
        )

    return idle


def cancel_workflow_step(
    workflow: WorkflowSnapshot,
    transaction: TransactionSnapshot,
    now: datetime,
    *,
    refund_delay: timedelta = timedelta(hours=REFUND_SETTLEMENT_DELAY_HOURS),
) -> WorkflowStep:
    """
    Jump an active workflow into the refund branch.

    The transaction's refund is scheduled ``refund_delay`` out unless it is
    already in the refund stage.
    """
    if not workflow.is_active or workflow.current_stage in TERMINAL_STAGES:
        raise InvalidTransitionException(
            "workflow", workflow.current_stage.value, WorkflowStage.REFUND_TO_STUDENT.value
        )

    refunded = transaction
    if transaction.workflow_stage != TransactionStage.REFUND_TO_STUDENT:
        refunded = replace(
            transaction,
            status=TransactionStatus.CANCELLED,
            workflow_stage=TransactionStage.REFUND_TO_STUDENT,
            scheduled_refund_at=now + refund_delay,
        )

    return WorkflowStep(
        workflow=replace(
            workflow,
            current_stage=WorkflowStage.REFUND_TO_STUDENT,
            status=WorkflowStatus.COMPLETED,
            next_stage=None,
            next_action_at=None,
            last_processed_at=now,
        ),
        transaction=refunded,
        side_effects=(REFUND_SCHEDULED,),
    )
