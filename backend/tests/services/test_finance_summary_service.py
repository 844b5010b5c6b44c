from datetime import timedelta
from decimal import Decimal

from app.models.unsettled_finance import ConflictType
from app.services.finance_summary_service import FinanceSummaryService
from app.services.teacher_payout_service import TeacherPayoutService
from app.services.unsettled_finance_service import UnsettledFinanceService


def test_empty_ledger_summary(db):
    summary = FinanceSummaryService(db).get_summary()

    assert summary.total_platform_revenue == Decimal("0")
    assert summary.total_teacher_payouts == Decimal("0")
    assert summary.open_conflict_amount == Decimal("0")
    assert summary.distinct_students == 0
    assert summary.distinct_teachers == 0


def test_summary_totals(db, make_payment, payout_method, ledger, now):
    payout_method("teacher-1")
    paid_out, _ = make_payment("100.00", student_id="student-1", teacher_id="teacher-1")
    refunded, _ = make_payment("50.00", student_id="student-2", teacher_id="teacher-2")
    make_payment("200.00", student_id="student-1", teacher_id="teacher-2")

    ledger.set_payout_eligible_at(paid_out.id, now - timedelta(hours=1))
    ledger.mark_scheduled_refund(refunded.id, now + timedelta(hours=48))
    db.commit()
    TeacherPayoutService(db, ledger=ledger).process_eligible_payouts(now)
    UnsettledFinanceService(db).record("pay_x", ConflictType.DOUBLE_PAYMENT, "25.00", "Charged twice")
    db.commit()

    summary = FinanceSummaryService(db).get_summary()

    # Cancelled-for-refund payments still count as captured revenue
    assert summary.total_platform_revenue == Decimal("350.00")
    assert summary.total_fees_collected == Decimal("7.00")
    assert summary.total_teacher_payouts == Decimal("98.00")
    assert summary.total_refunds == Decimal("0")
    assert summary.open_conflict_amount == Decimal("25.00")
    assert summary.distinct_students == 2
    assert summary.distinct_teachers == 1
