"""Platform fee arithmetic.

Pure functions over ``Decimal``; no database or clock access. Both the
ledger and the fee-preview endpoint go through ``compute_fee`` so the
numbers a student sees are the numbers that get stored.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import TYPE_CHECKING, Any, Optional

from app.core.constants import MONEY_QUANTUM
from app.core.exceptions import InvalidAmountException

if TYPE_CHECKING:
    from app.core.config import Settings
    from app.models.fee_policy import FeePolicy

_HUNDRED = Decimal("100")


@dataclass(frozen=True)
class FeePolicySnapshot:
    """Immutable view of the fee policy in force for one calculation."""

    fee_percentage: Decimal
    minimum_fee: Decimal
    maximum_fee: Optional[Decimal]
    teacher_payout_wait_hours: int
    policy_id: Optional[str] = None

    @property
    def is_default(self) -> bool:
        return self.policy_id is None

    @classmethod
    def from_model(cls, policy: "FeePolicy") -> "FeePolicySnapshot":
        return cls(
            fee_percentage=Decimal(policy.fee_percentage),
            minimum_fee=Decimal(policy.minimum_fee),
            maximum_fee=Decimal(policy.maximum_fee) if policy.maximum_fee is not None else None,
            teacher_payout_wait_hours=int(policy.teacher_payout_wait_hours),
            policy_id=policy.id,
        )

    @classmethod
    def from_settings(cls, config: "Settings") -> "FeePolicySnapshot":
        return cls(
            fee_percentage=Decimal(config.default_fee_percentage),
            minimum_fee=Decimal(config.default_minimum_fee),
            maximum_fee=None,
            teacher_payout_wait_hours=int(config.default_teacher_payout_wait_hours),
        )


@dataclass(frozen=True)
class FeeBreakdown:
    gross: Decimal
    fee: Decimal
    net: Decimal


def to_money(value: Any) -> Decimal:
    """Coerce to ``Decimal`` and round half-up to cents."""
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise InvalidAmountException(value, f"Amount is not a number: {value!r}") from exc
    if not amount.is_finite():
        raise InvalidAmountException(value, f"Amount is not a finite number: {value!r}")
    return amount.quantize(MONEY_QUANTUM, rounding=ROUND_HALF_UP)


def compute_fee(gross_amount: Any, policy: FeePolicySnapshot) -> FeeBreakdown:
    """
    Split a gross payment into platform fee and teacher net.

    ``fee = max(gross * pct / 100, minimum)``, capped by ``maximum`` when
    set and never above gross. ``net`` is derived from the rounded fee so
    ``fee + net == gross`` holds to the cent.

    Raises:
        InvalidAmountException: if gross is not strictly positive
    """
    gross = to_money(gross_amount)
    if gross <= 0:
        raise InvalidAmountException(gross_amount)

    fee = max(gross * policy.fee_percentage / _HUNDRED, policy.minimum_fee)
    if policy.maximum_fee is not None:
        fee = min(fee, policy.maximum_fee)
    fee = min(to_money(fee), gross)

    return FeeBreakdown(gross=gross, fee=fee, net=gross - fee)
