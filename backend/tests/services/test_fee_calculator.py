from decimal import Decimal

import pytest

from app.core.exceptions import InvalidAmountException
from app.services.fee_calculator import FeePolicySnapshot, compute_fee, to_money

DEFAULT = FeePolicySnapshot(
    fee_percentage=Decimal("2.00"),
    minimum_fee=Decimal("0.50"),
    maximum_fee=None,
    teacher_payout_wait_hours=24,
)


def test_percentage_fee_applies_above_minimum():
    breakdown = compute_fee("100.00", DEFAULT)

    assert breakdown.gross == Decimal("100.00")
    assert breakdown.fee == Decimal("2.00")
    assert breakdown.net == Decimal("98.00")


def test_minimum_fee_applies_to_small_payments():
    breakdown = compute_fee(Decimal("10.00"), DEFAULT)

    assert breakdown.fee == Decimal("0.50")
    assert breakdown.net == Decimal("9.50")


def test_fee_never_exceeds_gross():
    breakdown = compute_fee("0.30", DEFAULT)

    assert breakdown.fee == Decimal("0.30")
    assert breakdown.net == Decimal("0.00")


def test_maximum_fee_caps_percentage():
    policy = FeePolicySnapshot(
        fee_percentage=Decimal("10.00"),
        minimum_fee=Decimal("1.00"),
        maximum_fee=Decimal("5.00"),
        teacher_payout_wait_hours=24,
    )

    breakdown = compute_fee("100.00", policy)

    assert breakdown.fee == Decimal("5.00")
    assert breakdown.net == Decimal("95.00")


def test_fee_rounds_half_up_to_cents_and_parts_sum_to_gross():
    breakdown = compute_fee("33.33", DEFAULT)

    # 33.33 * 2% = 0.6666
    assert breakdown.fee == Decimal("0.67")
    assert breakdown.net == Decimal("32.66")
    assert breakdown.fee + breakdown.net == breakdown.gross


@pytest.mark.parametrize("amount", ["0", "0.00", "-5.00"])
def test_non_positive_amount_is_rejected(amount):
    with pytest.raises(InvalidAmountException) as exc_info:
        compute_fee(amount, DEFAULT)

    assert exc_info.value.code == "INVALID_AMOUNT"


def test_non_numeric_amount_is_rejected():
    with pytest.raises(InvalidAmountException):
        to_money("twelve")


def test_to_money_quantizes():
    assert to_money(12.345) == Decimal("12.35")
    assert to_money("7") == Decimal("7.00")


def test_snapshot_from_settings_is_default(default_policy):
    assert default_policy.is_default is True
    assert default_policy.fee_percentage == Decimal("2.00")
    assert default_policy.minimum_fee == Decimal("0.50")
    assert default_policy.maximum_fee is None
    assert default_policy.teacher_payout_wait_hours == 24
