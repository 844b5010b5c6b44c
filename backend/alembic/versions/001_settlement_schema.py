# backend/alembic/versions/001_settlement_schema.py
"""Settlement schema - transactions, workflows, unsettled finances, fee policies, payment methods

Revision ID: 001_settlement_schema
Revises:
Create Date: 2026-10-19 00:00:00.000000

Creates the five settlement tables. Enum columns are VARCHAR with CHECK
constraints (values, not names), matching ``create_safe_enum``.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

# revision identifiers, used by Alembic.
revision: str = "001_settlement_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

TRANSACTION_TYPES = ("course_payment", "booking_payment", "refund", "teacher_payout")
TRANSACTION_STATUSES = ("pending", "processing", "completed", "failed", "cancelled")
TRANSACTION_STAGES = ("student_to_admin", "admin_to_teacher", "refund_to_student", "completed")
WORKFLOW_TYPES = ("class_booking", "course_purchase")
WORKFLOW_STAGES = (
    "payment_received",
    "waiting_payout_delay",
    "teacher_payout",
    "refund_to_student",
    "completed",
)
WORKFLOW_STATUSES = ("active", "completed", "failed")
CONFLICT_TYPES = (
    "failed_enrollment",
    "failed_transfer",
    "disputed_refund",
    "missing_payout",
    "double_payment",
    "workflow_failure",
)
UNSETTLED_STATUSES = ("open", "resolved")
UNSETTLED_PRIORITIES = ("low", "medium", "high", "critical")
PAYMENT_METHOD_TYPES = ("upi", "card", "bank_account")


def _enum_column(name: str, values: Sequence[str], *, nullable: bool = False) -> sa.Column:
    length = max(len(v) for v in values)
    return sa.Column(name, sa.String(length), nullable=nullable)


def _enum_check(column: str, values: Sequence[str], name: str) -> sa.CheckConstraint:
    allowed = ", ".join(f"'{v}'" for v in values)
    return sa.CheckConstraint(f"{column} IN ({allowed})", name=name)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), nullable=True, server_default=sa.func.now()
        ),
    ]


def upgrade() -> None:
    """Create settlement tables and indexes."""
    bind = op.get_bind()
    is_postgres = bind is not None and bind.dialect.name == "postgresql"
    json_type = JSONB(astext_type=sa.Text()) if is_postgres else sa.JSON()

    op.create_table(
        "payment_transactions",
        sa.Column("id", sa.String(26), nullable=False),
        sa.Column("booking_id", sa.String(26), nullable=True),
        sa.Column("course_id", sa.String(26), nullable=True),
        sa.Column("enrollment_id", sa.String(26), nullable=True),
        sa.Column("parent_transaction_id", sa.String(26), nullable=True),
        _enum_column("transaction_type", TRANSACTION_TYPES),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("transaction_fee", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("net_amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="INR"),
        sa.Column("from_user_id", sa.String(26), nullable=True),
        sa.Column("to_user_id", sa.String(26), nullable=True),
        sa.Column("to_payment_method_id", sa.String(26), nullable=True),
        _enum_column("status", TRANSACTION_STATUSES),
        _enum_column("workflow_stage", TRANSACTION_STAGES),
        sa.Column("scheduled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancellation_deadline", sa.DateTime(timezone=True), nullable=True),
        sa.Column("teacher_payout_eligible_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("scheduled_refund_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("scheduled_refund_amount", sa.Numeric(10, 2), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("gateway_reference", sa.String(255), nullable=True),
        sa.Column("gateway_transfer_id", sa.String(255), nullable=True),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("transaction_fee >= 0", name="ck_payment_transactions_fee_non_negative"),
        sa.CheckConstraint("net_amount >= 0", name="ck_payment_transactions_net_non_negative"),
        sa.CheckConstraint(
            "ROUND(amount - transaction_fee, 2) = net_amount",
            name="ck_payment_transactions_net_matches",
        ),
        _enum_check("transaction_type", TRANSACTION_TYPES, "transaction_type_enum"),
        _enum_check("status", TRANSACTION_STATUSES, "transaction_status_enum"),
        _enum_check("workflow_stage", TRANSACTION_STAGES, "transaction_stage_enum"),
        comment="Every money movement: payments, teacher payouts and refunds",
    )
    op.create_index(
        "ix_payment_transactions_gateway_reference", "payment_transactions", ["gateway_reference"]
    )
    op.create_index("ix_payment_transactions_booking_id", "payment_transactions", ["booking_id"])
    op.create_index(
        "ix_payment_transactions_from_user_id", "payment_transactions", ["from_user_id"]
    )
    op.create_index("ix_payment_transactions_to_user_id", "payment_transactions", ["to_user_id"])
    op.create_index(
        "ix_payment_transactions_payout_eligibility",
        "payment_transactions",
        ["status", "workflow_stage", "teacher_payout_eligible_at"],
    )
    op.create_index(
        "uq_payment_transactions_payout_parent",
        "payment_transactions",
        ["parent_transaction_id"],
        unique=True,
        postgresql_where=sa.text("transaction_type = 'teacher_payout'"),
        sqlite_where=sa.text("transaction_type = 'teacher_payout'"),
    )

    op.create_table(
        "payment_workflows",
        sa.Column("id", sa.String(26), nullable=False),
        sa.Column("transaction_id", sa.String(26), nullable=False),
        _enum_column("workflow_type", WORKFLOW_TYPES),
        _enum_column("current_stage", WORKFLOW_STAGES),
        _enum_column("next_stage", WORKFLOW_STAGES, nullable=True),
        sa.Column("next_action_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancellation_window_hours", sa.Integer(), nullable=False, server_default="6"),
        sa.Column("teacher_payout_delay_hours", sa.Integer(), nullable=False, server_default="24"),
        _enum_column("status", WORKFLOW_STATUSES),
        sa.Column("processing_errors", json_type, nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["transaction_id"], ["payment_transactions.id"]),
        _enum_check("workflow_type", WORKFLOW_TYPES, "workflow_type_enum"),
        _enum_check("current_stage", WORKFLOW_STAGES, "workflow_stage_enum"),
        _enum_check("next_stage", WORKFLOW_STAGES, "workflow_next_stage_enum"),
        _enum_check("status", WORKFLOW_STATUSES, "workflow_status_enum"),
        comment="Settlement state machine instance per payment",
    )
    op.create_index("ix_payment_workflows_due", "payment_workflows", ["status", "next_action_at"])
    op.create_index(
        "ix_payment_workflows_transaction_id", "payment_workflows", ["transaction_id"]
    )

    op.create_table(
        "unsettled_finances",
        sa.Column("id", sa.String(26), nullable=False),
        sa.Column("gateway_reference", sa.String(255), nullable=False),
        sa.Column("transaction_id", sa.String(26), nullable=True),
        _enum_column("conflict_type", CONFLICT_TYPES),
        sa.Column("conflict_amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        _enum_column("status", UNSETTLED_STATUSES),
        _enum_column("priority", UNSETTLED_PRIORITIES),
        sa.Column("assigned_to", sa.String(26), nullable=True),
        sa.Column("resolution_action", sa.String(100), nullable=True),
        sa.Column("resolution_amount", sa.Numeric(10, 2), nullable=True),
        sa.Column("resolution_notes", sa.Text(), nullable=True),
        sa.Column("resolution_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resolved_by", sa.String(26), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        _enum_check("conflict_type", CONFLICT_TYPES, "unsettled_conflict_type_enum"),
        _enum_check("status", UNSETTLED_STATUSES, "unsettled_status_enum"),
        _enum_check("priority", UNSETTLED_PRIORITIES, "unsettled_priority_enum"),
        comment="Money needing manual reconciliation",
    )
    op.create_index("ix_unsettled_finances_status", "unsettled_finances", ["status"])
    op.create_index(
        "ix_unsettled_finances_gateway_reference", "unsettled_finances", ["gateway_reference"]
    )

    op.create_table(
        "fee_policies",
        sa.Column("id", sa.String(26), nullable=False),
        sa.Column("fee_percentage", sa.Numeric(5, 2), nullable=False),
        sa.Column("minimum_fee", sa.Numeric(10, 2), nullable=False),
        sa.Column("maximum_fee", sa.Numeric(10, 2), nullable=True),
        sa.Column("teacher_payout_wait_hours", sa.Integer(), nullable=False, server_default="24"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("updated_by", sa.String(26), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("fee_percentage >= 0", name="ck_fee_policies_percentage_non_negative"),
        sa.CheckConstraint("minimum_fee >= 0", name="ck_fee_policies_minimum_non_negative"),
        sa.CheckConstraint(
            "teacher_payout_wait_hours >= 0", name="ck_fee_policies_wait_non_negative"
        ),
        comment="Platform fee schedule; one active row",
    )

    op.create_table(
        "payment_methods",
        sa.Column("id", sa.String(26), nullable=False),
        sa.Column("user_id", sa.String(26), nullable=False),
        _enum_column("method_type", PAYMENT_METHOD_TYPES),
        sa.Column("display_name", sa.String(100), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("is_default", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        _enum_check("method_type", PAYMENT_METHOD_TYPES, "payment_method_type_enum"),
        comment="Teacher payout destinations",
    )
    op.create_index(
        "ix_payment_methods_user_active", "payment_methods", ["user_id", "is_active"]
    )


def downgrade() -> None:
    """Drop settlement tables in reverse dependency order."""
    op.drop_index("ix_payment_methods_user_active", table_name="payment_methods")
    op.drop_table("payment_methods")
    op.drop_table("fee_policies")
    op.drop_index("ix_unsettled_finances_gateway_reference", table_name="unsettled_finances")
    op.drop_index("ix_unsettled_finances_status", table_name="unsettled_finances")
    op.drop_table("unsettled_finances")
    op.drop_index("ix_payment_workflows_transaction_id", table_name="payment_workflows")
    op.drop_index("ix_payment_workflows_due", table_name="payment_workflows")
    op.drop_table("payment_workflows")
    op.drop_index("uq_payment_transactions_payout_parent", table_name="payment_transactions")
    op.drop_index("ix_payment_transactions_payout_eligibility", table_name="payment_transactions")
    op.drop_index("ix_payment_transactions_to_user_id", table_name="payment_transactions")
    op.drop_index("ix_payment_transactions_from_user_id", table_name="payment_transactions")
    op.drop_index("ix_payment_transactions_booking_id", table_name="payment_transactions")
    op.drop_index("ix_payment_transactions_gateway_reference", table_name="payment_transactions")
    op.drop_table("payment_transactions")
