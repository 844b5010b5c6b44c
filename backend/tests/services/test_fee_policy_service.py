from decimal import Decimal

from pydantic import ValidationError
import pytest

from app.models.fee_policy import FeePolicy
from app.schemas.settlement import FeePolicyCreate
from app.services.fee_policy_service import FeePolicyService


def test_resolve_policy_falls_back_to_configured_default(db):
    service = FeePolicyService(db)

    policy = service.resolve_policy()

    assert service.get_active_policy() is None
    assert policy.is_default is True
    assert policy.fee_percentage == Decimal("2.00")


def test_create_policy_becomes_the_resolved_policy(db):
    service = FeePolicyService(db)

    created = service.create_policy(
        FeePolicyCreate(
            fee_percentage=Decimal("5.00"),
            minimum_fee=Decimal("1.00"),
            maximum_fee=Decimal("20.00"),
            teacher_payout_wait_hours=48,
            updated_by="admin-1",
        )
    )
    resolved = service.resolve_policy()

    assert resolved.policy_id == created.id
    assert resolved.is_default is False
    assert resolved.fee_percentage == Decimal("5.00")
    assert resolved.maximum_fee == Decimal("20.00")
    assert resolved.teacher_payout_wait_hours == 48


def test_creating_a_policy_deactivates_previous_ones(db):
    service = FeePolicyService(db)
    first = service.create_policy(FeePolicyCreate(fee_percentage=Decimal("3.00")))
    second = service.create_policy(FeePolicyCreate(fee_percentage=Decimal("4.00")))

    active = db.query(FeePolicy).filter(FeePolicy.is_active.is_(True)).all()

    assert [p.id for p in active] == [second.id]
    db.refresh(first)
    assert first.is_active is False


def test_policy_rejects_maximum_below_minimum():
    with pytest.raises(ValidationError):
        FeePolicyCreate(
            fee_percentage=Decimal("2.00"),
            minimum_fee=Decimal("5.00"),
            maximum_fee=Decimal("1.00"),
        )


def test_preview_uses_active_policy(db):
    service = FeePolicyService(db)
    service.create_policy(FeePolicyCreate(fee_percentage=Decimal("10.00")))

    preview = service.preview_fee("250.00")

    assert preview.gross_amount == Decimal("250.00")
    assert preview.transaction_fee == Decimal("25.00")
    assert preview.net_amount == Decimal("225.00")
