"""subscriptions and payment records

Revision ID: 202610170900
Revises:
Create Date: 2026-10-17 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202610170900"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "subscriptions",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("plan", sa.String(length=120)),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column(
            "billing_cycle",
            sa.Enum("monthly", "quarterly", "yearly", name="billingcycle"),
            nullable=False,
        ),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("last_billing_date", sa.Date()),
        sa.Column("next_billing_date", sa.Date()),
        sa.Column(
            "renewal_type",
            sa.Enum("auto", "manual", name="renewaltype"),
            nullable=False,
            server_default="manual",
        ),
        sa.Column(
            "status",
            sa.Enum("active", "trial", "cancelled", name="subscriptionstatus"),
            nullable=False,
            server_default="active",
        ),
        sa.Column("notes", sa.Text()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("amount >= 0", name="ck_subscription_amount_positive"),
    )
    op.create_index(
        "ix_subscriptions_renewal_due",
        "subscriptions",
        ["renewal_type", "next_billing_date"],
    )

    op.create_table(
        "payment_records",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "subscription_id",
            sa.String(length=36),
            sa.ForeignKey("subscriptions.id"),
            nullable=False,
        ),
        sa.Column("payment_date", sa.Date(), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("billing_period_start", sa.Date(), nullable=False),
        sa.Column("billing_period_end", sa.Date(), nullable=False),
        sa.Column(
            "status",
            sa.Enum("success", "failed", "pending", name="paymentstatus"),
            nullable=False,
        ),
        sa.Column("notes", sa.Text()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("amount > 0", name="ck_payment_amount_positive"),
        sa.CheckConstraint(
            "billing_period_start <= billing_period_end",
            name="ck_payment_period_order",
        ),
    )
    op.create_index(
        "ix_payment_records_subscription_period",
        "payment_records",
        ["subscription_id", "billing_period_start"],
    )
    op.create_index(
        "ix_payment_records_payment_date", "payment_records", ["payment_date"]
    )


def downgrade():
    op.drop_index("ix_payment_records_payment_date", table_name="payment_records")
    op.drop_index(
        "ix_payment_records_subscription_period", table_name="payment_records"
    )
    op.drop_table("payment_records")
    op.drop_index("ix_subscriptions_renewal_due", table_name="subscriptions")
    op.drop_table("subscriptions")
