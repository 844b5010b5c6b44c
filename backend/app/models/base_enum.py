# backend/app/models/base_enum.py
"""
Safe enum helpers for SQLAlchemy.

Settlement enums (transaction type/status/stage, workflow stage/status,
unsettled status) are closed sets. They are persisted by VALUE
('student_to_admin'), never by NAME ('STUDENT_TO_ADMIN'), so raw SQL reports
and the ORM agree on what is stored.

Usage:
    from app.models.base_enum import create_safe_enum

    class PaymentTransaction(Base):
        status = mapped_column(
            create_safe_enum(TransactionStatus, "transaction_status_enum"),
            nullable=False,
            default=TransactionStatus.PENDING,
        )

Note:
    All Python enums for database storage should inherit from (str, Enum)
    and define lowercase values explicitly.
"""

from enum import Enum
from typing import Sequence, Type

from sqlalchemy import Enum as SAEnum


def create_safe_enum(
    enum_class: Type[Enum],
    name: str,
    *,
    native_enum: bool = False,
    validate_strings: bool = True,
) -> SAEnum:
    """
    Create a SQLAlchemy Enum that stores enum values (not names).

    ``native_enum`` defaults to False: columns are VARCHAR with a CHECK
    constraint, which keeps adding a stage a plain migration instead of an
    ``ALTER TYPE``.

    Args:
        enum_class: The Python Enum class to use
        name: Constraint/type name
        native_enum: Whether to use a PostgreSQL native enum type
        validate_strings: Whether to reject unknown string values on bind

    Returns:
        SQLAlchemy Enum column type configured for value-based storage
    """
    verify_enum_consistency(enum_class)
    return SAEnum(
        enum_class,
        name=name,
        native_enum=native_enum,
        create_constraint=not native_enum,
        validate_strings=validate_strings,
        values_callable=_get_enum_values,
    )


def _get_enum_values(enum_class: Type[Enum]) -> Sequence[str]:
    """Extract values from an enum class for SAEnum storage."""
    return [member.value for member in enum_class]


def verify_enum_consistency(enum_class: Type[Enum]) -> None:
    """
    Verify that an enum is safe for database storage.

    Raises:
        AssertionError: If the enum does not inherit from str or has non-string values
    """
    if not issubclass(enum_class, str):
        raise AssertionError(
            f"{enum_class.__name__} must inherit from (str, Enum) for safe database storage"
        )

    for member in enum_class:
        if not isinstance(member.value, str):
            raise AssertionError(
                f"{enum_class.__name__}.{member.name} value must be a string, "
                f"got {type(member.value).__name__}"
            )
