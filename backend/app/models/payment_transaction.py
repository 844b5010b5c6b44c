"""
Payment transaction ledger model.

Every money movement in the marketplace is one row here:
student → platform (booking/course payment), platform → teacher
(teacher payout) and platform → student (refund). Rows are never deleted;
``status`` and ``workflow_stage`` carry the lifecycle.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import CheckConstraint, Index, Numeric, String, Text, func, text
from sqlalchemy.orm import Mapped, mapped_column, relationship
import ulid

from app.database import Base
from app.models.base_enum import create_safe_enum
from app.models.types import UTCDateTime

if TYPE_CHECKING:
    from app.models.payment_workflow import PaymentWorkflow


class TransactionType(str, Enum):
    """Kind of money movement."""

    COURSE_PAYMENT = "course_payment"
    BOOKING_PAYMENT = "booking_payment"
    REFUND = "refund"
    TEACHER_PAYOUT = "teacher_payout"


class TransactionStatus(str, Enum):
    """Transaction lifecycle status."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class TransactionStage(str, Enum):
    """Where the money sits in the student → platform → teacher flow."""

    STUDENT_TO_ADMIN = "student_to_admin"
    ADMIN_TO_TEACHER = "admin_to_teacher"
    REFUND_TO_STUDENT = "refund_to_student"
    COMPLETED = "completed"


PAYMENT_TYPES = (TransactionType.BOOKING_PAYMENT, TransactionType.COURSE_PAYMENT)


class PaymentTransaction(Base):
    """A single money movement with its settlement markers."""

    __tablename__ = "payment_transactions"

    __table_args__ = (
        CheckConstraint("transaction_fee >= 0", name="ck_payment_transactions_fee_non_negative"),
        CheckConstraint("net_amount >= 0", name="ck_payment_transactions_net_non_negative"),
        CheckConstraint(
            "ROUND(amount - transaction_fee, 2) = net_amount",
            name="ck_payment_transactions_net_matches",
        ),
        Index("ix_payment_transactions_gateway_reference", "gateway_reference"),
        Index("ix_payment_transactions_booking_id", "booking_id"),
        Index("ix_payment_transactions_from_user_id", "from_user_id"),
        Index("ix_payment_transactions_to_user_id", "to_user_id"),
        Index(
            "ix_payment_transactions_payout_eligibility",
            "status",
            "workflow_stage",
            "teacher_payout_eligible_at",
        ),
        # One teacher payout per original payment
        Index(
            "uq_payment_transactions_payout_parent",
            "parent_transaction_id",
            unique=True,
            postgresql_where=text("transaction_type = 'teacher_payout'"),
            sqlite_where=text("transaction_type = 'teacher_payout'"),
        ),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))

    # External references (booking/course/enrollment live outside this service)
    booking_id: Mapped[Optional[str]] = mapped_column(String(26), nullable=True)
    course_id: Mapped[Optional[str]] = mapped_column(String(26), nullable=True)
    enrollment_id: Mapped[Optional[str]] = mapped_column(String(26), nullable=True)
    parent_transaction_id: Mapped[Optional[str]] = mapped_column(String(26), nullable=True)

    transaction_type: Mapped[TransactionType] = mapped_column(
        create_safe_enum(TransactionType, "transaction_type_enum"), nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    transaction_fee: Mapped[Decimal] = mapped_column(
        Numeric(10, 2), nullable=False, default=Decimal("0.00")
    )
    net_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="INR")

    # Flow participants (null for system-originated payouts/refunds)
    from_user_id: Mapped[Optional[str]] = mapped_column(String(26), nullable=True)
    to_user_id: Mapped[Optional[str]] = mapped_column(String(26), nullable=True)
    to_payment_method_id: Mapped[Optional[str]] = mapped_column(String(26), nullable=True)

    status: Mapped[TransactionStatus] = mapped_column(
        create_safe_enum(TransactionStatus, "transaction_status_enum"),
        nullable=False,
        default=TransactionStatus.PENDING,
    )
    workflow_stage: Mapped[TransactionStage] = mapped_column(
        create_safe_enum(TransactionStage, "transaction_stage_enum"), nullable=False
    )

    # Timing controls
    scheduled_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    cancellation_deadline: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    teacher_payout_eligible_at: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime, nullable=True
    )
    scheduled_refund_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    scheduled_refund_amount: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(10, 2), nullable=True
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    # Gateway references
    gateway_reference: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    gateway_transfer_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    failure_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime, server_default=func.now(), onupdate=func.now(), nullable=True
    )

    workflows: Mapped[List["PaymentWorkflow"]] = relationship(
        "PaymentWorkflow", back_populates="transaction"
    )

    @property
    def is_payment(self) -> bool:
        return self.transaction_type in PAYMENT_TYPES

    def __repr__(self) -> str:
        return (
            f"<PaymentTransaction(id={self.id}, type={self.transaction_type}, "
            f"amount={self.amount}, status={self.status}, stage={self.workflow_stage})>"
        )
