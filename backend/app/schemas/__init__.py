# backend/app/schemas/__init__.py
"""
Pydantic schemas for the settlement engine.
"""

from .gateway_events import PaymentConfirmedEvent, PaymentFailedEvent, RefundIssuedEvent
from .settlement import (
    BulkCancellationResult,
    CancellationFailure,
    CancellationResult,
    FeePolicyCreate,
    FeePolicyRead,
    FeePreview,
    FinanceSummary,
    GatewayAck,
    PayoutBatchResult,
    SweepResult,
    TransactionCreate,
    TransactionRead,
    UnsettledFinanceRead,
    WorkflowRead,
)

__all__ = [
    "BulkCancellationResult",
    "CancellationFailure",
    "CancellationResult",
    "FeePolicyCreate",
    "FeePolicyRead",
    "FeePreview",
    "FinanceSummary",
    "GatewayAck",
    "PaymentConfirmedEvent",
    "PaymentFailedEvent",
    "PayoutBatchResult",
    "RefundIssuedEvent",
    "SweepResult",
    "TransactionCreate",
    "TransactionRead",
    "UnsettledFinanceRead",
    "WorkflowRead",
]
