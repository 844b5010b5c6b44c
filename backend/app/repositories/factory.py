# backend/app/repositories/factory.py
"""
Repository Factory for the settlement engine.

Provides centralized creation of repository instances,
ensuring consistent initialization and dependency injection.
"""

from typing import TYPE_CHECKING

from sqlalchemy.orm import Session

# Avoid circular imports
if TYPE_CHECKING:
    from .fee_policy_repository import FeePolicyRepository
    from .payment_method_repository import PaymentMethodRepository
    from .payment_transaction_repository import PaymentTransactionRepository
    from .payment_workflow_repository import PaymentWorkflowRepository
    from .unsettled_finance_repository import UnsettledFinanceRepository


class RepositoryFactory:
    """Factory class for creating repository instances."""

    @staticmethod
    def create_payment_transaction_repository(db: Session) -> "PaymentTransactionRepository":
        """Create repository for ledger operations."""
        from .payment_transaction_repository import PaymentTransactionRepository

        return PaymentTransactionRepository(db)

    @staticmethod
    def create_payment_workflow_repository(db: Session) -> "PaymentWorkflowRepository":
        """Create repository for settlement workflows."""
        from .payment_workflow_repository import PaymentWorkflowRepository

        return PaymentWorkflowRepository(db)

    @staticmethod
    def create_unsettled_finance_repository(db: Session) -> "UnsettledFinanceRepository":
        """Create repository for unsettled finance records."""
        from .unsettled_finance_repository import UnsettledFinanceRepository

        return UnsettledFinanceRepository(db)

    @staticmethod
    def create_fee_policy_repository(db: Session) -> "FeePolicyRepository":
        """Create repository for fee policies."""
        from .fee_policy_repository import FeePolicyRepository

        return FeePolicyRepository(db)

    @staticmethod
    def create_payment_method_repository(db: Session) -> "PaymentMethodRepository":
        """Create repository for teacher payout destinations."""
        from .payment_method_repository import PaymentMethodRepository

        return PaymentMethodRepository(db)
