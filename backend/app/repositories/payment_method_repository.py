"""Read access to teacher payout destinations."""

from __future__ import annotations

from typing import Optional

from sqlalchemy.orm import Session

from app.models.payment_method import PaymentMethod
from app.repositories.base_repository import BaseRepository


class PaymentMethodRepository(BaseRepository[PaymentMethod]):
    def __init__(self, db: Session) -> None:
        super().__init__(db, PaymentMethod)

    def get_default_active(self, user_id: str) -> Optional[PaymentMethod]:
        """Default active payout method for a user, if one is configured."""
        return self.find_one_by(user_id=user_id, is_active=True, is_default=True)
