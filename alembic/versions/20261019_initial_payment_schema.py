"""initial payment schema

Revision ID: 20261019_initial
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "20261019_initial"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "orders",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("business_id", sa.String(length=36), nullable=False),
        sa.Column("business_name", sa.String(length=255), nullable=True),
        sa.Column("total_cents", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("customer_name", sa.String(length=255), nullable=True),
        sa.Column("customer_phone", sa.String(length=32), nullable=True),
        sa.Column("customer_email", sa.String(length=255), nullable=True),
        sa.Column("payment_status", sa.String(length=16), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("total_cents > 0", name="ck_orders_total_positive"),
    )
    op.create_index("ix_orders_business_id", "orders", ["business_id"])

    op.create_table(
        "payment_processors",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("business_id", sa.String(length=36), nullable=False),
        sa.Column("processor_type", sa.String(length=16), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("priority", sa.Integer(), nullable=False),
        sa.Column("credentials", sa.JSON(), nullable=False),
        sa.Column("fee_percentage", sa.Numeric(5, 2), nullable=True),
        sa.Column("fixed_fee_cents", sa.Integer(), nullable=False),
        sa.Column("settlement_schedule", sa.String(length=16), nullable=False),
        sa.Column("min_payout_threshold_cents", sa.Integer(), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("connection_error", sa.Text(), nullable=True),
        sa.Column("last_transaction_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index(
        "ix_payment_processors_business_type", "payment_processors", ["business_id", "processor_type"]
    )
    op.create_index(
        "ix_payment_processors_business_priority", "payment_processors", ["business_id", "priority"]
    )

    op.create_table(
        "payments",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("order_id", sa.String(length=36), sa.ForeignKey("orders.id"), nullable=False),
        sa.Column("business_id", sa.String(length=36), nullable=False),
        sa.Column(
            "payment_processor_id",
            sa.String(length=36),
            sa.ForeignKey("payment_processors.id"),
            nullable=False,
        ),
        sa.Column("processor_type", sa.String(length=16), nullable=False),
        sa.Column("processor_payment_id", sa.String(length=128), nullable=True),
        sa.Column("processor_charge_id", sa.String(length=128), nullable=True),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("processor_fee_cents", sa.Integer(), nullable=False),
        sa.Column("net_amount_cents", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("payment_method", sa.String(length=50), nullable=True),
        sa.Column("payment_method_details", sa.JSON(), nullable=True),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        sa.Column("refunded_amount_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("refund_details", sa.JSON(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("amount_cents > 0", name="ck_payments_amount_positive"),
        sa.CheckConstraint("net_amount_cents = amount_cents - processor_fee_cents", name="ck_payments_net_amount"),
        sa.CheckConstraint("refunded_amount_cents >= 0", name="ck_payments_refunded_non_negative"),
        sa.UniqueConstraint("processor_type", "processor_payment_id", name="uq_payments_processor_ref"),
    )
    op.create_index("ix_payments_order_id", "payments", ["order_id"])
    op.create_index("ix_payments_business_id", "payments", ["business_id"])
    op.create_index("ix_payments_status_created", "payments", ["status", "created_at"])
    op.create_index("ix_payments_charge_id", "payments", ["processor_type", "processor_charge_id"])
    op.create_index(
        "uq_payments_order_pending",
        "payments",
        ["order_id"],
        unique=True,
        sqlite_where=sa.text("status = 'pending'"),
        postgresql_where=sa.text("status = 'pending'"),
    )

    op.create_table(
        "payment_refunds",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("payment_id", sa.String(length=36), sa.ForeignKey("payments.id"), nullable=False),
        sa.Column("reference", sa.String(length=64), nullable=False),
        sa.Column("idempotency_key", sa.String(length=128), nullable=True),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("reason", sa.String(length=255), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("processor_refund_id", sa.String(length=128), nullable=True),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("amount_cents > 0", name="ck_payment_refunds_amount_positive"),
        sa.UniqueConstraint("reference", name="uq_payment_refunds_reference"),
        sa.UniqueConstraint("idempotency_key", name="uq_payment_refunds_idempotency_key"),
    )
    op.create_index("ix_payment_refunds_payment_id", "payment_refunds", ["payment_id"])
    op.create_index("ix_payment_refunds_processor_refund_id", "payment_refunds", ["processor_refund_id"])

    op.create_table(
        "webhook_events",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("provider", sa.String(length=16), nullable=False),
        sa.Column("event_id", sa.String(length=191), nullable=False),
        sa.Column("event_type", sa.String(length=50), nullable=False),
        sa.Column("processor_payment_id", sa.String(length=128), nullable=True),
        sa.Column("payment_id", sa.String(length=36), nullable=True),
        sa.Column("result_json", sa.JSON(), nullable=False),
        sa.Column("received_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("provider", "event_id", name="uq_webhook_events_provider_event_id"),
    )
    op.create_index("ix_webhook_events_expires_at", "webhook_events", ["expires_at"])
    op.create_index("ix_webhook_events_processor_ref", "webhook_events", ["provider", "processor_payment_id"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("actor", sa.String(length=100), nullable=False),
        sa.Column("action", sa.String(length=100), nullable=False),
        sa.Column("entity", sa.String(length=100), nullable=False),
        sa.Column("entity_id", sa.String(length=36), nullable=False),
        sa.Column("data_json", sa.JSON(), nullable=False),
        sa.Column("at", sa.DateTime(timezone=True), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_audit_logs_entity", "audit_logs", ["entity", "entity_id"])


def downgrade() -> None:
    op.drop_index("ix_audit_logs_entity", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_index("ix_webhook_events_processor_ref", table_name="webhook_events")
    op.drop_index("ix_webhook_events_expires_at", table_name="webhook_events")
    op.drop_table("webhook_events")
    op.drop_index("ix_payment_refunds_processor_refund_id", table_name="payment_refunds")
    op.drop_index("ix_payment_refunds_payment_id", table_name="payment_refunds")
    op.drop_table("payment_refunds")
    op.drop_index("uq_payments_order_pending", table_name="payments")
    op.drop_index("ix_payments_charge_id", table_name="payments")
    op.drop_index("ix_payments_status_created", table_name="payments")
    op.drop_index("ix_payments_business_id", table_name="payments")
    op.drop_index("ix_payments_order_id", table_name="payments")
    op.drop_table("payments")
    op.drop_index("ix_payment_processors_business_priority", table_name="payment_processors")
    op.drop_index("ix_payment_processors_business_type", table_name="payment_processors")
    op.drop_table("payment_processors")
    op.drop_index("ix_orders_business_id", table_name="orders")
    op.drop_table("orders")
