"""init

Revision ID: 0001_init
Revises: 
Create Date: 2026-10-12 09:00:00.000000
"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


def _json() -> sa.types.TypeEngine:
    return sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def _money() -> sa.Numeric:
    return sa.Numeric(12, 4)


def upgrade() -> None:
    op.create_table(
        "tenants",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("api_key_hash", sa.String(), nullable=False),
        sa.Column("api_key_prefix", sa.String(), nullable=False),
        sa.Column("plan", sa.String(), nullable=False, server_default="free"),
        sa.Column("enabled_services", _json(), nullable=False),
        sa.Column("onboarding_status", sa.String(), nullable=False, server_default="pending"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("deactivated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_tenants_api_key_hash", "tenants", ["api_key_hash"], unique=True)

    op.create_table(
        "tenant_users",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("tenant_id", sa.String(), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("external_subject", sa.String(), nullable=False),
        sa.Column("role", sa.String(), nullable=False, server_default="customer"),
        sa.Column("email", sa.String(), nullable=True),
        sa.Column("status", sa.String(), nullable=False, server_default="active"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_tenant_users_tenant_id", "tenant_users", ["tenant_id"])
    op.create_index(
        "ix_tenant_users_external_subject", "tenant_users", ["external_subject"], unique=True
    )
    op.create_index("ix_tenant_users_tenant_role", "tenant_users", ["tenant_id", "role"])

    op.create_table(
        "shipments",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("tenant_id", sa.String(), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("tracking_number", sa.String(), nullable=False),
        sa.Column("sender", _json(), nullable=False),
        sa.Column("receiver", _json(), nullable=False),
        sa.Column("parcel", _json(), nullable=False),
        sa.Column("service_type", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="Created"),
        sa.Column("special_instructions", sa.Text(), nullable=True),
        sa.Column("estimated_delivery", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        # Tracking numbers are unique inside a tenant's namespace only.
        sa.UniqueConstraint("tenant_id", "tracking_number", name="uq_shipments_tenant_tracking"),
    )
    op.create_index("ix_shipments_tenant_id", "shipments", ["tenant_id"])
    op.create_index("ix_shipments_tenant_status", "shipments", ["tenant_id", "status"])
    op.create_index("ix_shipments_tracking_number", "shipments", ["tracking_number"])

    op.create_table(
        "shipment_events",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("tenant_id", sa.String(), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("shipment_id", sa.String(), sa.ForeignKey("shipments.id"), nullable=False),
        sa.Column("tracking_number", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("location", sa.String(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_shipment_events_tenant_id", "shipment_events", ["tenant_id"])
    op.create_index("ix_shipment_events_shipment_id", "shipment_events", ["shipment_id"])
    op.create_index(
        "ix_shipment_events_tenant_tracking",
        "shipment_events",
        ["tenant_id", "tracking_number"],
    )

    op.create_table(
        "rates",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("tenant_id", sa.String(), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("service_type", sa.String(), nullable=False),
        sa.Column("base_rate", _money(), nullable=False),
        sa.Column("additional_kg_rate", _money(), nullable=False),
        sa.Column("min_weight", _money(), nullable=False),
        sa.Column("max_weight", _money(), nullable=False),
        sa.Column("volumetric_divisor", sa.Integer(), nullable=False, server_default="5000"),
        sa.Column("fuel_surcharge_percent", _money(), nullable=False, server_default="0"),
        sa.Column("remote_surcharge", _money(), nullable=True),
        sa.Column("currency", sa.String(), nullable=False, server_default="USD"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("min_weight < max_weight", name="ck_rates_weight_bracket"),
        sa.CheckConstraint(
            "base_rate >= 0 AND additional_kg_rate >= 0 AND fuel_surcharge_percent >= 0",
            name="ck_rates_non_negative",
        ),
        sa.CheckConstraint("volumetric_divisor > 0", name="ck_rates_divisor_positive"),
    )
    op.create_index("ix_rates_tenant_id", "rates", ["tenant_id"])
    op.create_index("ix_rates_tenant_service", "rates", ["tenant_id", "service_type"])

    op.create_table(
        "sessions",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("tenant_id", sa.String(), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("session_id", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("channel", sa.String(), nullable=False),
        sa.Column("data", _json(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
    )
    op.create_index("ix_sessions_tenant_id", "sessions", ["tenant_id"])
    op.create_index("ix_sessions_session_id", "sessions", ["session_id"], unique=True)
    op.create_index(
        "ix_sessions_tenant_user_channel", "sessions", ["tenant_id", "user_id", "channel"]
    )
    # Serves the reaper's set-based sweep.
    op.create_index("ix_sessions_active_expires", "sessions", ["is_active", "expires_at"])


def downgrade() -> None:
    op.drop_table("sessions")
    op.drop_table("rates")
    op.drop_table("shipment_events")
    op.drop_table("shipments")
    op.drop_table("tenant_users")
    op.drop_table("tenants")
