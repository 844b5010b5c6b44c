# backend/app/repositories/__init__.py
"""
Repository layer for the settlement engine.

Key Components:
- BaseRepository: generic CRUD, error wrapping and sweep locking
- RepositoryFactory: factory for creating repository instances
- PaymentTransactionRepository: ledger queries
- PaymentWorkflowRepository: workflow queries and compare-and-set stage writes
- UnsettledFinanceRepository: reconciliation queue
- FeePolicyRepository / PaymentMethodRepository: policy and payout destinations

Usage:
    from app.repositories import RepositoryFactory

    repository = RepositoryFactory.create_payment_transaction_repository(db)
    transactions = repository.list_by_user(user_id)
"""

from .base_repository import BaseRepository
from .factory import RepositoryFactory
from .fee_policy_repository import FeePolicyRepository
from .payment_method_repository import PaymentMethodRepository
from .payment_transaction_repository import PaymentTransactionRepository
from .payment_workflow_repository import PaymentWorkflowRepository
from .unsettled_finance_repository import UnsettledFinanceRepository

__all__ = [
    "BaseRepository",
    "RepositoryFactory",
    "FeePolicyRepository",
    "PaymentMethodRepository",
    "PaymentTransactionRepository",
    "PaymentWorkflowRepository",
    "UnsettledFinanceRepository",
]
