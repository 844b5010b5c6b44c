# backend/app/routes/v1/admin_settlement.py
"""
V1 Admin settlement routes - mounted at /api/v1/admin/settlement.

Fee policy administration, ledger lookups, workflow inspection and
override, manual sweep triggers, unsettled finance resolution and the
finance summary.
"""

from datetime import datetime, timezone
from typing import Any, List, Optional

from fastapi import APIRouter, Depends, Header, Query, status

from app.api.dependencies.services import (
    get_fee_policy_service,
    get_finance_summary_service,
    get_ledger,
    get_settlement_scheduler,
    get_teacher_payout_service,
    get_unsettled_finance_service,
    get_workflow_service,
)
from app.core.exceptions import NotFoundException
from app.models.unsettled_finance import UnsettledStatus
from app.schemas.settlement import (
    FeePolicyCreate,
    FeePolicyRead,
    FeePreview,
    FeePreviewRequest,
    FinanceSummary,
    PayoutBatchResult,
    SweepResult,
    TransactionRead,
    UnsettledFinanceRead,
    UnsettledResolutionRequest,
    WorkflowRead,
    WorkflowStageOverride,
)
from app.services.fee_calculator import FeePolicySnapshot
from app.services.fee_policy_service import FeePolicyService
from app.services.finance_summary_service import FinanceSummaryService
from app.services.payment_workflow_service import PaymentWorkflowService
from app.services.settlement_scheduler import SettlementScheduler
from app.services.teacher_payout_service import TeacherPayoutService
from app.services.unsettled_finance_service import UnsettledFinanceService

# V1 router - mounted at /api/v1/admin/settlement
router = APIRouter(tags=["admin-settlement"])


def _policy_read(snapshot: FeePolicySnapshot) -> FeePolicyRead:
    return FeePolicyRead(
        id=snapshot.policy_id,
        fee_percentage=snapshot.fee_percentage,
        minimum_fee=snapshot.minimum_fee,
        maximum_fee=snapshot.maximum_fee,
        teacher_payout_wait_hours=snapshot.teacher_payout_wait_hours,
        is_default=snapshot.is_default,
    )


# Fee policy


@router.get("/fee-policy", response_model=FeePolicyRead)
async def get_fee_policy(
    service: FeePolicyService = Depends(get_fee_policy_service),
) -> FeePolicyRead:
    """Fee policy in force; the configured default when none is active."""
    return _policy_read(service.resolve_policy())


@router.post("/fee-policy", response_model=FeePolicyRead, status_code=status.HTTP_201_CREATED)
async def create_fee_policy(
    payload: FeePolicyCreate,
    admin_id: Optional[str] = Header(default=None, alias="X-Admin-Id"),
    service: FeePolicyService = Depends(get_fee_policy_service),
) -> FeePolicyRead:
    """Activate a new fee policy; every other policy is deactivated."""
    if payload.updated_by is None and admin_id:
        payload = payload.model_copy(update={"updated_by": admin_id})
    policy = service.create_policy(payload)
    return _policy_read(FeePolicySnapshot.from_model(policy))


@router.post("/fee-policy/preview", response_model=FeePreview)
async def preview_fee(
    payload: FeePreviewRequest,
    service: FeePolicyService = Depends(get_fee_policy_service),
) -> FeePreview:
    return service.preview_fee(payload.gross_amount)


# Ledger


@router.get("/transactions/{transaction_id}", response_model=TransactionRead)
async def get_transaction(transaction_id: str, ledger: Any = Depends(get_ledger)) -> Any:
    transaction = ledger.get_transaction(transaction_id)
    if transaction is None:
        raise NotFoundException(
            f"Transaction {transaction_id} not found",
            code="TRANSACTION_NOT_FOUND",
            details={"transaction_id": transaction_id},
        )
    return transaction


@router.get("/users/{user_id}/transactions", response_model=List[TransactionRead])
async def list_user_transactions(user_id: str, ledger: Any = Depends(get_ledger)) -> Any:
    """Every transaction the user paid or received."""
    return ledger.list_by_user(user_id)


@router.get("/bookings/{booking_id}/transactions", response_model=List[TransactionRead])
async def list_booking_transactions(booking_id: str, ledger: Any = Depends(get_ledger)) -> Any:
    return ledger.list_by_booking(booking_id)


@router.get("/refunds/due", response_model=List[TransactionRead])
async def list_due_refunds(ledger: Any = Depends(get_ledger)) -> Any:
    """Cancelled payments whose scheduled refund time has passed."""
    return ledger.list_due_refunds(datetime.now(timezone.utc))


# Workflows


@router.get("/workflows", response_model=List[WorkflowRead])
async def list_active_workflows(
    limit: int = Query(default=100, ge=1, le=500),
    service: PaymentWorkflowService = Depends(get_workflow_service),
) -> Any:
    return service.list_active_workflows(limit=limit)


@router.patch("/workflows/{workflow_id}/stage", response_model=WorkflowRead)
async def override_workflow_stage(
    workflow_id: str,
    payload: WorkflowStageOverride,
    admin_id: Optional[str] = Header(default=None, alias="X-Admin-Id"),
    service: PaymentWorkflowService = Depends(get_workflow_service),
) -> Any:
    """Manually move a workflow; the only path that may move it backwards."""
    return service.override_stage(
        workflow_id,
        payload.stage,
        payload.next_action_at,
        actor_id=admin_id,
        reason=payload.reason,
    )


@router.post("/workflows/sweep", response_model=SweepResult)
async def run_workflow_sweep(
    scheduler: SettlementScheduler = Depends(get_settlement_scheduler),
) -> SweepResult:
    """Run one settlement sweep now instead of waiting for beat."""
    return scheduler.run_workflow_sweep()


@router.post("/payouts/run", response_model=PayoutBatchResult)
async def run_payout_batch(
    service: TeacherPayoutService = Depends(get_teacher_payout_service),
) -> PayoutBatchResult:
    return service.process_eligible_payouts()


# Unsettled finance


@router.get("/unsettled", response_model=List[UnsettledFinanceRead])
async def list_unsettled(
    status_filter: Optional[UnsettledStatus] = Query(default=None, alias="status"),
    service: UnsettledFinanceService = Depends(get_unsettled_finance_service),
) -> Any:
    return service.list_by_status(status_filter)


@router.post("/unsettled/{record_id}/resolve", response_model=UnsettledFinanceRead)
async def resolve_unsettled(
    record_id: str,
    payload: UnsettledResolutionRequest,
    admin_id: Optional[str] = Header(default=None, alias="X-Admin-Id"),
    service: UnsettledFinanceService = Depends(get_unsettled_finance_service),
) -> Any:
    return service.resolve(
        record_id,
        payload.resolution_action,
        payload.resolution_amount,
        payload.resolution_notes,
        payload.resolved_by or admin_id,
    )


# Summary


@router.get("/summary", response_model=FinanceSummary)
async def get_finance_summary(
    service: FinanceSummaryService = Depends(get_finance_summary_service),
) -> FinanceSummary:
    return service.get_summary()
