"""Request and response schemas for the settlement engine."""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field, model_validator

from app.models.payment_transaction import TransactionStage, TransactionStatus, TransactionType
from app.models.payment_workflow import WorkflowStage
from app.models.unsettled_finance import ConflictType, UnsettledPriority

from .base import ORMResponseModel, StrictRequestModel


# Ledger


class TransactionCreate(BaseModel):
    """Input for ``TransactionLedgerService.create_transaction``."""

    transaction_type: TransactionType
    amount: Decimal = Field(..., max_digits=10, decimal_places=2)
    transaction_fee: Decimal = Field(default=Decimal("0.00"), max_digits=10, decimal_places=2)
    net_amount: Optional[Decimal] = Field(default=None, max_digits=10, decimal_places=2)
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    from_user_id: Optional[str] = None
    to_user_id: Optional[str] = None
    status: TransactionStatus = TransactionStatus.PENDING
    workflow_stage: TransactionStage = TransactionStage.STUDENT_TO_ADMIN
    gateway_reference: Optional[str] = None
    gateway_transfer_id: Optional[str] = None
    booking_id: Optional[str] = None
    course_id: Optional[str] = None
    enrollment_id: Optional[str] = None
    parent_transaction_id: Optional[str] = None
    to_payment_method_id: Optional[str] = None
    scheduled_at: Optional[datetime] = None
    cancellation_deadline: Optional[datetime] = None
    teacher_payout_eligible_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    failure_reason: Optional[str] = None
    notes: Optional[str] = None


class TransactionRead(ORMResponseModel):
    id: str
    transaction_type: TransactionType
    amount: Decimal
    transaction_fee: Decimal
    net_amount: Decimal
    currency: str
    from_user_id: Optional[str] = None
    to_user_id: Optional[str] = None
    status: TransactionStatus
    workflow_stage: TransactionStage
    gateway_reference: Optional[str] = None
    booking_id: Optional[str] = None
    course_id: Optional[str] = None
    enrollment_id: Optional[str] = None
    parent_transaction_id: Optional[str] = None
    scheduled_at: Optional[datetime] = None
    cancellation_deadline: Optional[datetime] = None
    teacher_payout_eligible_at: Optional[datetime] = None
    scheduled_refund_at: Optional[datetime] = None
    scheduled_refund_amount: Optional[Decimal] = None
    completed_at: Optional[datetime] = None
    notes: Optional[str] = None


# Workflows


class WorkflowRead(ORMResponseModel):
    id: str
    transaction_id: str
    workflow_type: str
    current_stage: WorkflowStage
    next_stage: Optional[WorkflowStage] = None
    next_action_at: Optional[datetime] = None
    last_processed_at: Optional[datetime] = None
    status: str
    cancellation_window_hours: int
    teacher_payout_delay_hours: int
    processing_errors: List[str] = Field(default_factory=list)


class WorkflowStageOverride(StrictRequestModel):
    stage: WorkflowStage
    next_action_at: Optional[datetime] = None
    reason: Optional[str] = Field(default=None, max_length=500)


# Unsettled finances


class UnsettledFinanceRead(ORMResponseModel):
    id: str
    gateway_reference: str
    transaction_id: Optional[str] = None
    conflict_type: ConflictType
    conflict_amount: Decimal
    description: str
    status: str
    priority: UnsettledPriority
    assigned_to: Optional[str] = None
    resolution_action: Optional[str] = None
    resolution_amount: Optional[Decimal] = None
    resolution_notes: Optional[str] = None
    resolution_date: Optional[datetime] = None
    resolved_by: Optional[str] = None
    created_at: Optional[datetime] = None


class UnsettledResolutionRequest(StrictRequestModel):
    resolution_action: str = Field(..., min_length=1, max_length=100)
    resolution_amount: Decimal = Field(..., ge=0, max_digits=10, decimal_places=2)
    resolution_notes: Optional[str] = None
    resolved_by: Optional[str] = None


# Fee policy


class FeePolicyCreate(StrictRequestModel):
    fee_percentage: Decimal = Field(..., ge=0, le=100, max_digits=5, decimal_places=2)
    minimum_fee: Decimal = Field(default=Decimal("0.00"), ge=0, max_digits=10, decimal_places=2)
    maximum_fee: Optional[Decimal] = Field(default=None, ge=0, max_digits=10, decimal_places=2)
    teacher_payout_wait_hours: int = Field(default=24, ge=0)
    description: Optional[str] = None
    updated_by: Optional[str] = None

    @model_validator(mode="after")
    def _max_not_below_min(self) -> "FeePolicyCreate":
        if self.maximum_fee is not None and self.maximum_fee < self.minimum_fee:
            raise ValueError("maximum_fee must be greater than or equal to minimum_fee")
        return self


class FeePolicyRead(BaseModel):
    id: Optional[str] = None
    fee_percentage: Decimal
    minimum_fee: Decimal
    maximum_fee: Optional[Decimal] = None
    teacher_payout_wait_hours: int
    is_default: bool = False


class FeePreviewRequest(StrictRequestModel):
    gross_amount: Decimal = Field(..., max_digits=10, decimal_places=2)


class FeePreview(BaseModel):
    gross_amount: Decimal
    transaction_fee: Decimal
    net_amount: Decimal


# Batch results


class SweepResult(BaseModel):
    examined: int = 0
    advanced: int = 0
    skipped: int = 0
    errored: int = 0


class PayoutBatchResult(BaseModel):
    processed: int = 0
    skipped: int = 0
    failed: int = 0


class GatewayAck(BaseModel):
    """Response returned to the gateway; intake never fails the delivery."""

    received: bool = True
    transaction_id: Optional[str] = None
    duplicate: bool = False
    unsettled_id: Optional[str] = None


# Cancellations


class CancellationResult(BaseModel):
    booking_id: Optional[str] = None
    enrollment_id: Optional[str] = None
    transaction_id: Optional[str] = None
    refund_amount: Decimal
    scheduled_refund_at: datetime


class CancellationFailure(BaseModel):
    id: str
    reason: str


class BulkCancellationResult(BaseModel):
    successful: List[CancellationResult] = Field(default_factory=list)
    failed: List[CancellationFailure] = Field(default_factory=list)


# Read model


class FinanceSummary(BaseModel):
    total_platform_revenue: Decimal
    total_teacher_payouts: Decimal
    total_refunds: Decimal
    total_fees_collected: Decimal
    open_conflict_amount: Decimal
    distinct_students: int
    distinct_teachers: int
