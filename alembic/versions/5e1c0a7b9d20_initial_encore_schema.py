"""Initial Encore schema

Revision ID: 5e1c0a7b9d20
Revises:
Create Date: 2026-10-19 10:12:03.418220

"""
from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = '5e1c0a7b9d20'
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _updated_at(name: str = "last_updated") -> sa.Column:
    return sa.Column(
        name, sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
    )


def upgrade() -> None:
    """Create tenants, catalog, roster, bucket, dashboard and quota tables."""

    # --- tenants ---
    op.create_table(
        "tenants",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False, unique=True),
        sa.Column("report_reference", sa.String(500), nullable=True),
        sa.Column("origin_event_id", sa.String(36), nullable=True),
        sa.Column("sync_lock", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("sync_locked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("member_property_types", postgresql.JSONB, nullable=False, server_default="{}"),
        sa.Column("point_types", postgresql.JSONB, nullable=False, server_default="{}"),
        sa.Column("field_matchers", postgresql.JSONB, nullable=False, server_default="[]"),
        _updated_at("created_at"),
        _updated_at(),
    )

    # --- event_types ---
    op.create_table(
        "event_types",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "tenant_id", sa.String(36),
            sa.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("value", sa.Integer, nullable=False, server_default="0"),
        sa.Column("source_folders", postgresql.JSONB, nullable=False, server_default="[]"),
        _updated_at(),
    )
    op.create_index("ix_event_types_tenant", "event_types", ["tenant_id"])

    # --- events ---
    op.create_table(
        "events",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "tenant_id", sa.String(36),
            sa.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("title", sa.String(300), nullable=False),
        sa.Column("source_kind", sa.String(20), nullable=False),
        sa.Column("source_id", sa.String(500), nullable=False),
        sa.Column("start_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "event_type_id", sa.String(36),
            sa.ForeignKey("event_types.id", ondelete="SET NULL"), nullable=True,
        ),
        sa.Column("value", sa.Integer, nullable=False, server_default="0"),
        sa.Column("field_map", postgresql.JSONB, nullable=False, server_default="{}"),
        sa.Column("synchronized_field_map", postgresql.JSONB, nullable=False, server_default="{}"),
        _updated_at(),
        sa.UniqueConstraint("tenant_id", "source_id", name="uq_events_tenant_source"),
    )
    op.create_index("ix_events_tenant_start", "events", ["tenant_id", "start_date"])

    # --- members ---
    op.create_table(
        "members",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "tenant_id", sa.String(36),
            sa.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("member_key", sa.String(200), nullable=False),
        sa.Column("properties", postgresql.JSONB, nullable=False, server_default="{}"),
        sa.Column("points", postgresql.JSONB, nullable=False, server_default="{}"),
        _updated_at(),
        sa.UniqueConstraint("tenant_id", "member_key", name="uq_members_tenant_key"),
    )

    # --- attendance_buckets ---
    op.create_table(
        "attendance_buckets",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "tenant_id", sa.String(36),
            sa.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column(
            "member_id", sa.String(36),
            sa.ForeignKey("members.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("page", sa.Integer, nullable=False),
        sa.Column("events", postgresql.JSONB, nullable=False, server_default="[]"),
        sa.UniqueConstraint("member_id", "page", name="uq_buckets_member_page"),
    )
    op.create_index("ix_buckets_tenant", "attendance_buckets", ["tenant_id"])

    # --- dashboards ---
    op.create_table(
        "dashboards",
        sa.Column(
            "tenant_id", sa.String(36),
            sa.ForeignKey("tenants.id", ondelete="CASCADE"), primary_key=True,
        ),
        sa.Column("stats", postgresql.JSONB, nullable=False, server_default="{}"),
        _updated_at(),
    )

    # --- quotas ---
    op.create_table(
        "quotas",
        sa.Column(
            "tenant_id", sa.String(36),
            sa.ForeignKey("tenants.id", ondelete="CASCADE"), primary_key=True,
        ),
        sa.Column("has_invite_code", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("read_operations_left", sa.Integer, nullable=False, server_default="0"),
        sa.Column("modify_operations_left", sa.Integer, nullable=False, server_default="0"),
        sa.Column("manual_syncs_left", sa.Integer, nullable=False, server_default="0"),
        sa.Column("source_folders_left", sa.Integer, nullable=False, server_default="0"),
        sa.Column("events_left", sa.Integer, nullable=False, server_default="0"),
        sa.Column("members_left", sa.Integer, nullable=False, server_default="0"),
        sa.CheckConstraint("read_operations_left >= 0", name="ck_quota_read_ops"),
        sa.CheckConstraint("modify_operations_left >= 0", name="ck_quota_modify_ops"),
        sa.CheckConstraint("manual_syncs_left >= 0", name="ck_quota_manual_syncs"),
        sa.CheckConstraint("source_folders_left >= 0", name="ck_quota_source_folders"),
        sa.CheckConstraint("events_left >= 0", name="ck_quota_events"),
        sa.CheckConstraint("members_left >= 0", name="ck_quota_members"),
    )


def downgrade() -> None:
    op.drop_table("quotas")
    op.drop_table("dashboards")
    op.drop_index("ix_buckets_tenant", table_name="attendance_buckets")
    op.drop_table("attendance_buckets")
    op.drop_table("members")
    op.drop_index("ix_events_tenant_start", table_name="events")
    op.drop_table("events")
    op.drop_index("ix_event_types_tenant", table_name="event_types")
    op.drop_table("event_types")
    op.drop_table("tenants")
