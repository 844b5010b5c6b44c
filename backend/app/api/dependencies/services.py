# backend/app/api/dependencies/services.py
"""
Service layer dependencies for dependency injection.

Each factory builds a service over the request's session. The ledger is
wrapped in the Redis read cache when caching is configured, and every
service that writes transactions shares that one ledger.
"""

from typing import Any

from fastapi import Depends
from sqlalchemy.orm import Session

from ...services.fee_policy_service import FeePolicyService
from ...services.finance_summary_service import FinanceSummaryService
from ...services.ledger_cache import build_ledger
from ...services.payment_workflow_service import PaymentWorkflowService
from ...services.settlement_scheduler import SettlementScheduler
from ...services.teacher_payout_service import TeacherPayoutService
from ...services.unsettled_finance_service import UnsettledFinanceService
from ...database import get_db


def get_ledger(db: Session = Depends(get_db)) -> Any:
    """Transaction ledger, cached when Redis is configured."""
    return build_ledger(db)


def get_fee_policy_service(db: Session = Depends(get_db)) -> FeePolicyService:
    return FeePolicyService(db)


def get_workflow_service(
    db: Session = Depends(get_db), ledger: Any = Depends(get_ledger)
) -> PaymentWorkflowService:
    return PaymentWorkflowService(db, ledger=ledger)


def get_unsettled_finance_service(db: Session = Depends(get_db)) -> UnsettledFinanceService:
    return UnsettledFinanceService(db)


def get_settlement_scheduler(
    db: Session = Depends(get_db), ledger: Any = Depends(get_ledger)
) -> SettlementScheduler:
    return SettlementScheduler(db, ledger=ledger)


def get_teacher_payout_service(
    db: Session = Depends(get_db), ledger: Any = Depends(get_ledger)
) -> TeacherPayoutService:
    return TeacherPayoutService(db, ledger=ledger)


def get_finance_summary_service(db: Session = Depends(get_db)) -> FinanceSummaryService:
    return FinanceSummaryService(db)
