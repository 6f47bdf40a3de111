"""custom domains

Revision ID: 0001_custom_domains
Revises: 
Create Date: 2026-10-19 09:00:00.000000
"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "0001_custom_domains"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "tenants",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("subdomain", sa.String(), nullable=False),
        sa.Column("custom_domain", sa.String(), nullable=True),
        sa.Column("canonical_preference", sa.String(), nullable=False, server_default="apex"),
        sa.Column("domain_status", sa.String(), nullable=False, server_default="none"),
        sa.Column("domain_requested_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("monitoring_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("domain_verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("domain_check_attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_verdict_reason", sa.String(), nullable=True),
        sa.Column("last_checked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("registrar_domain_id", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("subdomain", name="uq_tenants_subdomain"),
    )
    op.create_index("ix_tenants_custom_domain", "tenants", ["custom_domain"])
    # Session resume scans tenants by status on every process start.
    op.create_index("ix_tenants_domain_status", "tenants", ["domain_status"])

    op.create_table(
        "domain_status_events",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("hostname", sa.String(), nullable=True),
        sa.Column("from_status", sa.String(), nullable=False),
        sa.Column("to_status", sa.String(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("session_id", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_domain_status_events_tenant_id", "domain_status_events", ["tenant_id"])
    op.create_index(
        "ix_domain_status_events_tenant_created",
        "domain_status_events",
        ["tenant_id", "created_at"],
    )


def downgrade() -> None:
    op.drop_index("ix_domain_status_events_tenant_created", table_name="domain_status_events")
    op.drop_index("ix_domain_status_events_tenant_id", table_name="domain_status_events")
    op.drop_table("domain_status_events")
    op.drop_index("ix_tenants_domain_status", table_name="tenants")
    op.drop_index("ix_tenants_custom_domain", table_name="tenants")
    op.drop_table("tenants")
