"""
Delivery score schema: tenants, customers, global identities, shipments,
status history and the delivery score journal.

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision = "001"
down_revision = None
branch_labels = None
depends_on = None

SHIPMENT_STATUS_CHECK = (
    "status IN ('pending', 'picked_up', 'in_transit', 'out_for_delivery', "
    "'delivered', 'failed', 'returned', 'cancelled')"
)


def upgrade() -> None:
    op.create_table(
        "tenants",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="active"),
        sa.Column("can_view_global_scores", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("status IN ('active', 'trial', 'inactive', 'suspended')", name="ck_tenant_status"),
    )

    op.create_table(
        "global_customers",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("primary_email", sa.String(length=255), nullable=True),
        sa.Column("primary_phone", sa.String(length=64), nullable=True),
        sa.Column("hashed_fingerprint", sa.String(length=64), nullable=False, unique=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        "customers",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column(
            "global_customer_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("global_customers.id"),
            nullable=True,
        ),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("phone", sa.String(length=64), nullable=True),
        sa.Column("delivery_score", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_customers_tenant", "customers", ["tenant_id"])
    op.create_index("ix_customers_global", "customers", ["global_customer_id"])

    op.create_table(
        "shipments",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("customer_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("customers.id"), nullable=True),
        sa.Column(
            "global_customer_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("global_customers.id"),
            nullable=True,
        ),
        sa.Column("tracking_number", sa.String(length=100), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="pending"),
        sa.Column("scored_at", sa.DateTime(), nullable=True),
        sa.Column("scored_delta", sa.SmallInteger(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint(SHIPMENT_STATUS_CHECK, name="ck_shipment_status"),
        sa.CheckConstraint("scored_delta IN (-1, 1) OR scored_delta IS NULL", name="ck_shipment_scored_delta"),
    )
    op.create_index("ix_shipments_tenant_status", "shipments", ["tenant_id", "status"])
    op.create_index("ix_shipments_customer_status", "shipments", ["customer_id", "status"])
    op.create_index("ix_shipments_global_status", "shipments", ["global_customer_id", "status"])

    op.create_table(
        "shipment_status_history",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("shipment_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("shipments.id"), nullable=False),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("location", sa.String(length=255), nullable=True),
        sa.Column("correlation_id", sa.String(length=64), nullable=True),
        sa.Column("happened_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint(SHIPMENT_STATUS_CHECK, name="ck_status_history_status"),
    )
    op.create_index(
        "ix_status_history_shipment_time",
        "shipment_status_history",
        ["shipment_id", "happened_at"],
    )

    op.create_table(
        "delivery_score_journal",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "shipment_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("shipments.id"),
            nullable=False,
            unique=True,
        ),
        sa.Column("customer_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("customers.id"), nullable=False),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("tenants.id"), nullable=True),
        sa.Column("delta", sa.SmallInteger(), nullable=False),
        sa.Column("reason", sa.String(length=32), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("delta IN (-1, 1)", name="ck_journal_delta"),
        sa.CheckConstraint("reason IN ('delivered', 'returned', 'cancelled')", name="ck_journal_reason"),
    )
    op.create_index(
        "ix_journal_customer_created",
        "delivery_score_journal",
        ["customer_id", "created_at"],
    )
    op.create_index(
        "ix_journal_tenant_created",
        "delivery_score_journal",
        ["tenant_id", "created_at"],
    )


def downgrade() -> None:
    op.drop_index("ix_journal_tenant_created", table_name="delivery_score_journal")
    op.drop_index("ix_journal_customer_created", table_name="delivery_score_journal")
    op.drop_table("delivery_score_journal")
    op.drop_index("ix_status_history_shipment_time", table_name="shipment_status_history")
    op.drop_table("shipment_status_history")
    op.drop_index("ix_shipments_global_status", table_name="shipments")
    op.drop_index("ix_shipments_customer_status", table_name="shipments")
    op.drop_index("ix_shipments_tenant_status", table_name="shipments")
    op.drop_table("shipments")
    op.drop_index("ix_customers_global", table_name="customers")
    op.drop_index("ix_customers_tenant", table_name="customers")
    op.drop_table("customers")
    op.drop_table("global_customers")
    op.drop_table("tenants")
