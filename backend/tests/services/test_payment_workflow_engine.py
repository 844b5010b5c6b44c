"""State machine transitions over plain snapshots; no database involved."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from app.core.exceptions import InvalidTransitionException, MissingPayoutEligibilityException
from app.models.payment_transaction import TransactionStage, TransactionStatus
from app.models.payment_workflow import WorkflowStage, WorkflowStatus
from app.services.fee_calculator import FeePolicySnapshot
from app.services.payment_workflow_engine import (
    PAYOUT_ELIGIBILITY_SET,
    PAYOUT_RELEASED,
    PAYOUT_RESCHEDULED,
    REFUND_SCHEDULED,
    WORKFLOW_COMPLETED,
    TransactionSnapshot,
    WorkflowSnapshot,
    advance_workflow,
    cancel_workflow_step,
    diff,
)

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)
POLICY = FeePolicySnapshot(
    fee_percentage=Decimal("2.00"),
    minimum_fee=Decimal("0.50"),
    maximum_fee=None,
    teacher_payout_wait_hours=24,
)


def _workflow(stage=WorkflowStage.PAYMENT_RECEIVED, **overrides):
    values = {
        "id": "wf-1",
        "transaction_id": "tx-1",
        "current_stage": stage,
        "status": WorkflowStatus.ACTIVE,
        "next_action_at": NOW - timedelta(hours=1),
    }
    values.update(overrides)
    return WorkflowSnapshot(**values)


def _transaction(**overrides):
    values = {
        "id": "tx-1",
        "status": TransactionStatus.COMPLETED,
        "workflow_stage": TransactionStage.STUDENT_TO_ADMIN,
    }
    values.update(overrides)
    return TransactionSnapshot(**values)


class TestPaymentReceived:
    def test_waits_until_class_ends(self):
        step = advance_workflow(
            _workflow(next_action_at=NOW + timedelta(minutes=5)), _transaction(), NOW, POLICY
        )

        assert not step.changed
        assert step.workflow.current_stage == WorkflowStage.PAYMENT_RECEIVED

    def test_class_end_sets_payout_eligibility_from_policy(self):
        class_end = NOW - timedelta(hours=1)
        policy = FeePolicySnapshot(
            fee_percentage=Decimal("2.00"),
            minimum_fee=Decimal("0.50"),
            maximum_fee=None,
            teacher_payout_wait_hours=48,
        )

        step = advance_workflow(_workflow(next_action_at=class_end), _transaction(), NOW, policy)

        assert step.side_effects == (PAYOUT_ELIGIBILITY_SET,)
        assert step.workflow.current_stage == WorkflowStage.WAITING_PAYOUT_DELAY
        assert step.workflow.next_stage == WorkflowStage.TEACHER_PAYOUT
        assert step.workflow.next_action_at == class_end + timedelta(hours=48)
        assert step.workflow.teacher_payout_delay_hours == 48
        assert step.transaction.teacher_payout_eligible_at == class_end + timedelta(hours=48)


class TestWaitingPayoutDelay:
    def test_missing_eligibility_raises(self):
        with pytest.raises(MissingPayoutEligibilityException):
            advance_workflow(_workflow(WorkflowStage.WAITING_PAYOUT_DELAY), _transaction(), NOW, POLICY)

    def test_not_yet_eligible_reschedules_to_eligibility(self):
        eligible_at = NOW + timedelta(hours=3)

        step = advance_workflow(
            _workflow(WorkflowStage.WAITING_PAYOUT_DELAY, next_action_at=NOW),
            _transaction(teacher_payout_eligible_at=eligible_at),
            NOW,
            POLICY,
        )

        assert step.side_effects == (PAYOUT_RESCHEDULED,)
        assert step.workflow.current_stage == WorkflowStage.WAITING_PAYOUT_DELAY
        assert step.workflow.next_action_at == eligible_at

    def test_already_scheduled_is_idle(self):
        eligible_at = NOW + timedelta(hours=3)

        step = advance_workflow(
            _workflow(WorkflowStage.WAITING_PAYOUT_DELAY, next_action_at=eligible_at),
            _transaction(teacher_payout_eligible_at=eligible_at),
            NOW,
            POLICY,
        )

        assert not step.changed

    def test_eligible_releases_payout_without_regressing_status(self):
        step = advance_workflow(
            _workflow(WorkflowStage.WAITING_PAYOUT_DELAY, next_action_at=NOW),
            _transaction(teacher_payout_eligible_at=NOW - timedelta(seconds=1)),
            NOW,
            POLICY,
        )

        assert step.side_effects == (PAYOUT_RELEASED,)
        assert step.workflow.current_stage == WorkflowStage.TEACHER_PAYOUT
        assert step.workflow.next_action_at == NOW + timedelta(minutes=1)
        assert step.transaction.status == TransactionStatus.COMPLETED
        assert step.transaction.workflow_stage == TransactionStage.ADMIN_TO_TEACHER

    def test_release_keeps_a_payment_already_paid_out_completed(self):
        step = advance_workflow(
            _workflow(WorkflowStage.WAITING_PAYOUT_DELAY, next_action_at=NOW),
            _transaction(
                workflow_stage=TransactionStage.COMPLETED,
                teacher_payout_eligible_at=NOW - timedelta(hours=1),
            ),
            NOW,
            POLICY,
        )

        assert step.workflow.current_stage == WorkflowStage.TEACHER_PAYOUT
        assert step.transaction.workflow_stage == TransactionStage.COMPLETED

    def test_pending_transaction_moves_to_processing(self):
        step = advance_workflow(
            _workflow(WorkflowStage.WAITING_PAYOUT_DELAY, next_action_at=NOW),
            _transaction(status=TransactionStatus.PENDING, teacher_payout_eligible_at=NOW),
            NOW,
            POLICY,
        )

        assert step.transaction.status == TransactionStatus.PROCESSING


class TestTeacherPayout:
    def test_completes_workflow_when_due(self):
        step = advance_workflow(
            _workflow(WorkflowStage.TEACHER_PAYOUT, next_action_at=NOW),
            _transaction(status=TransactionStatus.PROCESSING),
            NOW,
            POLICY,
        )

        assert step.side_effects == (WORKFLOW_COMPLETED,)
        assert step.workflow.current_stage == WorkflowStage.COMPLETED
        assert step.workflow.status == WorkflowStatus.COMPLETED
        assert step.workflow.next_action_at is None
        assert step.transaction.status == TransactionStatus.COMPLETED

    def test_waits_for_completion_delay(self):
        step = advance_workflow(
            _workflow(WorkflowStage.TEACHER_PAYOUT, next_action_at=NOW + timedelta(seconds=30)),
            _transaction(),
            NOW,
            POLICY,
        )

        assert not step.changed


@pytest.mark.parametrize(
    "stage,status",
    [
        (WorkflowStage.COMPLETED, WorkflowStatus.COMPLETED),
        (WorkflowStage.REFUND_TO_STUDENT, WorkflowStatus.COMPLETED),
        (WorkflowStage.PAYMENT_RECEIVED, WorkflowStatus.FAILED),
    ],
)
def test_inactive_or_terminal_workflows_never_move(stage, status):
    step = advance_workflow(_workflow(stage, status=status), _transaction(), NOW, POLICY)

    assert not step.changed


class TestCancel:
    def test_cancel_schedules_deferred_refund(self):
        step = cancel_workflow_step(_workflow(), _transaction(), NOW)

        assert step.side_effects == (REFUND_SCHEDULED,)
        assert step.workflow.current_stage == WorkflowStage.REFUND_TO_STUDENT
        assert step.workflow.status == WorkflowStatus.COMPLETED
        assert step.workflow.next_action_at is None
        assert step.transaction.status == TransactionStatus.CANCELLED
        assert step.transaction.workflow_stage == TransactionStage.REFUND_TO_STUDENT
        assert step.transaction.scheduled_refund_at == NOW + timedelta(hours=48)

    def test_cancel_keeps_an_existing_refund_schedule(self):
        refund_at = NOW + timedelta(hours=10)
        transaction = _transaction(
            status=TransactionStatus.CANCELLED,
            workflow_stage=TransactionStage.REFUND_TO_STUDENT,
            scheduled_refund_at=refund_at,
        )

        step = cancel_workflow_step(_workflow(), transaction, NOW)

        assert step.transaction == transaction

    def test_cancel_terminal_workflow_is_rejected(self):
        with pytest.raises(InvalidTransitionException):
            cancel_workflow_step(
                _workflow(WorkflowStage.COMPLETED, status=WorkflowStatus.COMPLETED),
                _transaction(),
                NOW,
            )


def test_diff_reports_only_changed_fields():
    before = _workflow()
    after = advance_workflow(before, _transaction(), NOW, POLICY).workflow

    changes = diff(before, after)

    assert set(changes) == {
        "current_stage",
        "next_stage",
        "next_action_at",
        "last_processed_at",
    }
