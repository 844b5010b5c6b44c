"""Settlement workflow model: one state-machine instance per payment transaction."""

from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import ForeignKey, Index, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship
import ulid

from app.database import Base
from app.models.base_enum import create_safe_enum
from app.models.types import JSONList, UTCDateTime

if TYPE_CHECKING:
    from app.models.payment_transaction import PaymentTransaction


class WorkflowType(str, Enum):
    CLASS_BOOKING = "class_booking"
    COURSE_PURCHASE = "course_purchase"


class WorkflowStage(str, Enum):
    """Settlement stages in their only allowed forward order."""

    PAYMENT_RECEIVED = "payment_received"
    WAITING_PAYOUT_DELAY = "waiting_payout_delay"
    TEACHER_PAYOUT = "teacher_payout"
    REFUND_TO_STUDENT = "refund_to_student"
    COMPLETED = "completed"


class WorkflowStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


# Forward order of the payout branch; refund is a side branch reachable from any active stage
STAGE_ORDER = {
    WorkflowStage.PAYMENT_RECEIVED: 0,
    WorkflowStage.WAITING_PAYOUT_DELAY: 1,
    WorkflowStage.TEACHER_PAYOUT: 2,
    WorkflowStage.REFUND_TO_STUDENT: 3,
    WorkflowStage.COMPLETED: 4,
}


class PaymentWorkflow(Base):
    """Per-transaction instance of the settlement state machine."""

    __tablename__ = "payment_workflows"

    __table_args__ = (
        Index("ix_payment_workflows_due", "status", "next_action_at"),
        Index("ix_payment_workflows_transaction_id", "transaction_id"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    transaction_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("payment_transactions.id"), nullable=False
    )
    workflow_type: Mapped[WorkflowType] = mapped_column(
        create_safe_enum(WorkflowType, "workflow_type_enum"), nullable=False
    )
    current_stage: Mapped[WorkflowStage] = mapped_column(
        create_safe_enum(WorkflowStage, "workflow_stage_enum"), nullable=False
    )
    next_stage: Mapped[Optional[WorkflowStage]] = mapped_column(
        create_safe_enum(WorkflowStage, "workflow_next_stage_enum"), nullable=True
    )

    # Automated timing
    next_action_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    last_processed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    # Rules captured at creation
    cancellation_window_hours: Mapped[int] = mapped_column(Integer, nullable=False, default=6)
    teacher_payout_delay_hours: Mapped[int] = mapped_column(Integer, nullable=False, default=24)

    status: Mapped[WorkflowStatus] = mapped_column(
        create_safe_enum(WorkflowStatus, "workflow_status_enum"),
        nullable=False,
        default=WorkflowStatus.ACTIVE,
    )
    processing_errors: Mapped[List[str]] = mapped_column(JSONList, nullable=False, default=list)

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime, server_default=func.now(), onupdate=func.now(), nullable=True
    )

    transaction: Mapped["PaymentTransaction"] = relationship(
        "PaymentTransaction", back_populates="workflows"
    )

    @property
    def is_active(self) -> bool:
        return self.status == WorkflowStatus.ACTIVE

    def __repr__(self) -> str:
        return (
            f"<PaymentWorkflow(id={self.id}, transaction={self.transaction_id}, "
            f"stage={self.current_stage}, status={self.status})>"
        )
