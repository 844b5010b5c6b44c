"""Fee policy resolution and administration."""

from __future__ import annotations

import logging
from typing import Any, Optional

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import ValidationException
from app.models.fee_policy import FeePolicy
from app.repositories.factory import RepositoryFactory
from app.schemas.settlement import FeePolicyCreate, FeePreview
from app.services.base import BaseService
from app.services.fee_calculator import FeePolicySnapshot, compute_fee

logger = logging.getLogger(__name__)


class FeePolicyService(BaseService):
    """
    Single source of the fee policy in force.

    Every consumer calls ``resolve_policy``; the settings defaults are applied
    here and nowhere else.
    """

    def __init__(self, db: Session, repository: Optional[Any] = None):
        super().__init__(db)
        self.repository = repository or RepositoryFactory.create_fee_policy_repository(db)

    def get_active_policy(self) -> Optional[FeePolicy]:
        return self.repository.get_active()

    def resolve_policy(self) -> FeePolicySnapshot:
        """Active policy as an immutable snapshot, or the configured default."""
        policy = self.repository.get_active()
        if policy is None:
            return FeePolicySnapshot.from_settings(settings)
        return FeePolicySnapshot.from_model(policy)

    @BaseService.measure_operation("create_fee_policy")
    def create_policy(self, data: FeePolicyCreate) -> FeePolicy:
        """Store a new active policy and deactivate all others in one commit."""
        if data.maximum_fee is not None and data.maximum_fee < data.minimum_fee:
            raise ValidationException(
                "maximum_fee must be greater than or equal to minimum_fee",
                code="INVALID_FEE_POLICY",
            )

        with self.transaction():
            deactivated = self.repository.deactivate_all()
            policy = self.repository.create(
                fee_percentage=data.fee_percentage,
                minimum_fee=data.minimum_fee,
                maximum_fee=data.maximum_fee,
                teacher_payout_wait_hours=data.teacher_payout_wait_hours,
                description=data.description,
                updated_by=data.updated_by,
                is_active=True,
            )

        logger.info(
            f"Fee policy {policy.id} activated ({deactivated} previous deactivated)",
            extra={
                "policy_id": policy.id,
                "fee_percentage": str(policy.fee_percentage),
                "updated_by": data.updated_by,
            },
        )
        return policy

    def preview_fee(self, gross_amount: Any) -> FeePreview:
        breakdown = compute_fee(gross_amount, self.resolve_policy())
        return FeePreview(
            gross_amount=breakdown.gross,
            transaction_fee=breakdown.fee,
            net_amount=breakdown.net,
        )
