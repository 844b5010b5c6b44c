"""Unsettled finance records: money that needs manual admin reconciliation."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import Index, Numeric, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column
import ulid

from app.database import Base
from app.models.base_enum import create_safe_enum
from app.models.types import UTCDateTime


class ConflictType(str, Enum):
    FAILED_ENROLLMENT = "failed_enrollment"
    FAILED_TRANSFER = "failed_transfer"
    DISPUTED_REFUND = "disputed_refund"
    MISSING_PAYOUT = "missing_payout"
    DOUBLE_PAYMENT = "double_payment"
    WORKFLOW_FAILURE = "workflow_failure"


class UnsettledStatus(str, Enum):
    OPEN = "open"
    RESOLVED = "resolved"


class UnsettledPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class UnsettledFinance(Base):
    """Exception record for money that could not be reconciled automatically."""

    __tablename__ = "unsettled_finances"

    __table_args__ = (
        Index("ix_unsettled_finances_status", "status"),
        Index("ix_unsettled_finances_gateway_reference", "gateway_reference"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    gateway_reference: Mapped[str] = mapped_column(String(255), nullable=False)
    transaction_id: Mapped[Optional[str]] = mapped_column(String(26), nullable=True)
    conflict_type: Mapped[ConflictType] = mapped_column(
        create_safe_enum(ConflictType, "unsettled_conflict_type_enum"), nullable=False
    )
    conflict_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)

    status: Mapped[UnsettledStatus] = mapped_column(
        create_safe_enum(UnsettledStatus, "unsettled_status_enum"),
        nullable=False,
        default=UnsettledStatus.OPEN,
    )
    priority: Mapped[UnsettledPriority] = mapped_column(
        create_safe_enum(UnsettledPriority, "unsettled_priority_enum"),
        nullable=False,
        default=UnsettledPriority.MEDIUM,
    )
    assigned_to: Mapped[Optional[str]] = mapped_column(String(26), nullable=True)

    # Resolution
    resolution_action: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    resolution_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    resolution_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    resolution_date: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    resolved_by: Mapped[Optional[str]] = mapped_column(String(26), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime, server_default=func.now(), onupdate=func.now(), nullable=True
    )

    def __repr__(self) -> str:
        return (
            f"<UnsettledFinance(id={self.id}, ref={self.gateway_reference}, "
            f"type={self.conflict_type}, amount={self.conflict_amount}, status={self.status})>"
        )
