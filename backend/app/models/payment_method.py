"""Teacher payout destinations (UPI handles, cards, bank accounts)."""

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import Boolean, Index, String, func
from sqlalchemy.orm import Mapped, mapped_column
import ulid

from app.database import Base
from app.models.base_enum import create_safe_enum
from app.models.types import UTCDateTime


class PaymentMethodType(str, Enum):
    UPI = "upi"
    CARD = "card"
    BANK_ACCOUNT = "bank_account"


class PaymentMethod(Base):
    """A stored payout destination for a user."""

    __tablename__ = "payment_methods"

    __table_args__ = (Index("ix_payment_methods_user_active", "user_id", "is_active"),)

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    user_id: Mapped[str] = mapped_column(String(26), nullable=False)
    method_type: Mapped[PaymentMethodType] = mapped_column(
        create_safe_enum(PaymentMethodType, "payment_method_type_enum"), nullable=False
    )
    display_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_default: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, onupdate=func.now())

    def __repr__(self) -> str:
        return (
            f"<PaymentMethod(user_id={self.user_id}, type={self.method_type}, "
            f"active={self.is_active}, default={self.is_default})>"
        )
