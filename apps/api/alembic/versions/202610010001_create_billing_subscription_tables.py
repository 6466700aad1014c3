"""create billing customer, plan and subscription tables

Revision ID: 202610010001
Revises:
Create Date: 2026-10-01 09:00:00
"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa


revision: str = "202610010001"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "billing_customer",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("tenant_id", sa.String(length=128), nullable=False),
        sa.Column("test_mode", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("external_id", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=True),
        sa.Column("phone", sa.String(length=64), nullable=True),
        sa.Column("country", sa.String(length=64), nullable=True),
        sa.Column("tax_id", sa.String(length=64), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_billing_customer_external_id", "billing_customer", ["tenant_id", "test_mode", "external_id"])
    op.create_index("ix_billing_customer_scope_date", "billing_customer", ["tenant_id", "test_mode", "created_at"])

    op.create_table(
        "billing_plan",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("tenant_id", sa.String(length=128), nullable=False),
        sa.Column("test_mode", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("external_id", sa.String(length=255), nullable=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("billing_interval", sa.String(length=16), nullable=False),
        sa.Column("interval_count", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("trial_period_days", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("features", sa.JSON(), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="active"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("archived_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tenant_id", "test_mode", "external_id", name="uq_billing_plan_external_id"),
        sa.CheckConstraint("interval_count >= 1", name="ck_billing_plan_interval_count"),
        sa.CheckConstraint("trial_period_days >= 0", name="ck_billing_plan_trial_days"),
    )
    op.create_index("ix_billing_plan_scope_date", "billing_plan", ["tenant_id", "test_mode", "created_at"])
    op.create_index("ix_billing_plan_status", "billing_plan", ["tenant_id", "test_mode", "status"])

    op.create_table(
        "billing_plan_price",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("plan_id", sa.Uuid(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("unit_amount", sa.BigInteger(), nullable=False),
        sa.Column("pricing_model", sa.String(length=16), nullable=False, server_default="flat"),
        sa.Column("tiers", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["plan_id"], ["billing_plan.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("plan_id", "currency", name="uq_billing_plan_price_currency"),
        sa.CheckConstraint("unit_amount >= 0", name="ck_billing_plan_price_unit_amount"),
    )
    op.create_index("ix_billing_plan_price_plan", "billing_plan_price", ["plan_id"])

    op.create_table(
        "subscription",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("tenant_id", sa.String(length=128), nullable=False),
        sa.Column("test_mode", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("external_id", sa.String(length=255), nullable=True),
        sa.Column("customer_id", sa.Uuid(), nullable=False),
        sa.Column("plan_id", sa.Uuid(), nullable=False),
        sa.Column("items", sa.JSON(), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("current_period_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("current_period_end", sa.DateTime(timezone=True), nullable=False),
        sa.Column("trial_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("trial_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancel_at_period_end", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("cancel_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("canceled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        sa.Column("pause_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("pause_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("billing_cycle_anchor", sa.DateTime(timezone=True), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tenant_id", "test_mode", "external_id", name="uq_subscription_external_id"),
        sa.CheckConstraint("current_period_end > current_period_start", name="ck_subscription_valid_period"),
        sa.CheckConstraint(
            "(trial_start IS NULL AND trial_end IS NULL) OR "
            "(trial_start IS NOT NULL AND trial_end IS NOT NULL AND trial_end > trial_start)",
            name="ck_subscription_valid_trial",
        ),
    )
    op.create_index("ix_subscription_scope_date", "subscription", ["tenant_id", "test_mode", "created_at"])
    op.create_index("ix_subscription_customer", "subscription", ["tenant_id", "test_mode", "customer_id"])
    op.create_index("ix_subscription_plan", "subscription", ["tenant_id", "test_mode", "plan_id"])
    op.create_index("ix_subscription_status", "subscription", ["tenant_id", "test_mode", "status"])
    op.create_index("ix_subscription_trial_end", "subscription", ["status", "trial_end"])

    op.create_table(
        "subscription_state_change",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("subscription_id", sa.Uuid(), nullable=False),
        sa.Column("from_status", sa.String(length=32), nullable=False),
        sa.Column("to_status", sa.String(length=32), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("changed_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["subscription_id"], ["subscription.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_subscription_state_change_subscription",
        "subscription_state_change",
        ["subscription_id", "changed_at"],
    )


def downgrade() -> None:
    op.drop_index("ix_subscription_state_change_subscription", table_name="subscription_state_change")
    op.drop_table("subscription_state_change")

    op.drop_index("ix_subscription_trial_end", table_name="subscription")
    op.drop_index("ix_subscription_status", table_name="subscription")
    op.drop_index("ix_subscription_plan", table_name="subscription")
    op.drop_index("ix_subscription_customer", table_name="subscription")
    op.drop_index("ix_subscription_scope_date", table_name="subscription")
    op.drop_table("subscription")

    op.drop_index("ix_billing_plan_price_plan", table_name="billing_plan_price")
    op.drop_table("billing_plan_price")

    op.drop_index("ix_billing_plan_status", table_name="billing_plan")
    op.drop_index("ix_billing_plan_scope_date", table_name="billing_plan")
    op.drop_table("billing_plan")

    op.drop_index("ix_billing_customer_scope_date", table_name="billing_customer")
    op.drop_index("ix_billing_customer_external_id", table_name="billing_customer")
    op.drop_table("billing_customer")
