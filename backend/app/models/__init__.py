"""
Database models for the TutorBridge settlement engine.

The models are organized by functionality:
- Transaction ledger (every money movement)
- Settlement workflows (one state machine per payment)
- Unsettled finances (manual reconciliation queue)
- Fee policies and teacher payout destinations
"""

from .fee_policy import FeePolicy
from .payment_method import PaymentMethod, PaymentMethodType
from .payment_transaction import (
    PaymentTransaction,
    TransactionStage,
    TransactionStatus,
    TransactionType,
)
from .payment_workflow import PaymentWorkflow, WorkflowStage, WorkflowStatus, WorkflowType
from .unsettled_finance import (
    ConflictType,
    UnsettledFinance,
    UnsettledPriority,
    UnsettledStatus,
)

__all__ = [
    "ConflictType",
    "FeePolicy",
    "PaymentMethod",
    "PaymentMethodType",
    "PaymentTransaction",
    "PaymentWorkflow",
    "TransactionStage",
    "TransactionStatus",
    "TransactionType",
    "UnsettledFinance",
    "UnsettledPriority",
    "UnsettledStatus",
    "WorkflowStage",
    "WorkflowStatus",
    "WorkflowType",
]
