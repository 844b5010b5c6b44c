"""Database model for the platform fee schedule."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, CheckConstraint, Integer, Numeric, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column
import ulid

from app.database import Base
from app.models.types import UTCDateTime


class FeePolicy(Base):
    """Percentage/min/max fee and payout wait; exactly one row is active."""

    __tablename__ = "fee_policies"

    __table_args__ = (
        CheckConstraint("fee_percentage >= 0", name="ck_fee_policies_percentage_non_negative"),
        CheckConstraint("minimum_fee >= 0", name="ck_fee_policies_minimum_non_negative"),
        CheckConstraint(
            "teacher_payout_wait_hours >= 0", name="ck_fee_policies_wait_non_negative"
        ),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    fee_percentage: Mapped[Decimal] = mapped_column(
        Numeric(5, 2), nullable=False, default=Decimal("2.00")
    )
    minimum_fee: Mapped[Decimal] = mapped_column(
        Numeric(10, 2), nullable=False, default=Decimal("0.50")
    )
    maximum_fee: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    teacher_payout_wait_hours: Mapped[int] = mapped_column(Integer, nullable=False, default=24)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    updated_by: Mapped[Optional[str]] = mapped_column(String(26), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime, server_default=func.now(), onupdate=func.now(), nullable=True
    )

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<FeePolicy(pct={self.fee_percentage}, min={self.minimum_fee}, active={self.is_active})>"
