# backend/app/api/dependencies/__init__.py
"""
Central export point for all dependencies.
"""

from ...database import get_db
from .services import (
    get_fee_policy_service,
    get_finance_summary_service,
    get_ledger,
    get_settlement_scheduler,
    get_teacher_payout_service,
    get_unsettled_finance_service,
    get_workflow_service,
)

__all__ = [
    # Database
    "get_db",
    # Services
    "get_fee_policy_service",
    "get_finance_summary_service",
    "get_ledger",
    "get_settlement_scheduler",
    "get_teacher_payout_service",
    "get_unsettled_finance_service",
    "get_workflow_service",
]
