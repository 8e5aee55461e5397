"""
encore.database.models — SQLAlchemy 2.0 Data Models
====================================================

Tables:
- tenants             — Organizations; schema, point types, sync lock
- event_types         — Event categories with point value + source folders
- events              — One row per discovered content source
- members             — Attendee roster keyed by the "Member ID" property
- attendance_buckets  — Paged attendance history per member
- dashboards          — Derived statistics, replaced on every sync
- quotas              — Per-tenant remaining-operation counters

JSON columns are always reassigned with a fresh object, never mutated in
place, so SQLAlchemy sees every change without ``MutableDict`` tracking.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from encore.constants import QUOTA_FIELDS


def _new_id() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all Encore ORM models."""


# ---------------------------------------------------------------------------
# Tenants — one row per organization
# ---------------------------------------------------------------------------
class Tenant(Base):
    __tablename__ = "tenants"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)
    report_reference: Mapped[str | None] = mapped_column(String(500), default=None)
    origin_event_id: Mapped[str | None] = mapped_column(String(36), default=None)
    sync_lock: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    sync_locked_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
    # property name → "string!" | "number?" | "boolean!" | "date?" …
    member_property_types: Mapped[dict] = mapped_column(JSONB, default=dict)
    # point type name → {"start": iso, "end": iso}
    point_types: Mapped[dict] = mapped_column(JSONB, default=dict)
    field_matchers: Mapped[list] = mapped_column(JSONB, default=list)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    last_updated: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    event_types: Mapped[list[EventType]] = relationship(
        back_populates="tenant", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<Tenant id={self.id} name={self.name!r} locked={self.sync_lock}>"


# ---------------------------------------------------------------------------
# Event types — categories that own source folders
# ---------------------------------------------------------------------------
class EventType(Base):
    __tablename__ = "event_types"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    tenant_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    value: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    source_folders: Mapped[list] = mapped_column(JSONB, default=list)
    last_updated: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    tenant: Mapped[Tenant] = relationship(back_populates="event_types")

    __table_args__ = (
        Index("ix_event_types_tenant", "tenant_id"),
    )

    def __repr__(self) -> str:
        return f"<EventType id={self.id} title={self.title!r} value={self.value}>"


# ---------------------------------------------------------------------------
# Events — one per spreadsheet / form
# ---------------------------------------------------------------------------
class Event(Base):
    __tablename__ = "events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    tenant_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False
    )
    title: Mapped[str] = mapped_column(String(300), nullable=False)
    source_kind: Mapped[str] = mapped_column(String(20), nullable=False)
    source_id: Mapped[str] = mapped_column(String(500), nullable=False)
    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    event_type_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("event_types.id", ondelete="SET NULL"), default=None
    )
    value: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    # provider field id → {"field", "property", "matcher_id", "override"}
    field_map: Mapped[dict] = mapped_column(JSONB, default=dict)
    synchronized_field_map: Mapped[dict] = mapped_column(JSONB, default=dict)
    last_updated: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("tenant_id", "source_id", name="uq_events_tenant_source"),
        Index("ix_events_tenant_start", "tenant_id", "start_date"),
    )

    def __repr__(self) -> str:
        return f"<Event id={self.id} title={self.title!r} kind={self.source_kind}>"


# ---------------------------------------------------------------------------
# Members — attendee roster
# ---------------------------------------------------------------------------
class Member(Base):
    __tablename__ = "members"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    tenant_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False
    )
    member_key: Mapped[str] = mapped_column(String(200), nullable=False)
    # property name → {"value": ..., "override": bool}
    properties: Mapped[dict] = mapped_column(JSONB, default=dict)
    # point type name → total
    points: Mapped[dict] = mapped_column(JSONB, default=dict)
    last_updated: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    buckets: Mapped[list[AttendanceBucket]] = relationship(
        back_populates="member",
        cascade="all, delete-orphan",
        order_by="AttendanceBucket.page",
    )

    __table_args__ = (
        UniqueConstraint("tenant_id", "member_key", name="uq_members_tenant_key"),
    )

    def __repr__(self) -> str:
        return f"<Member id={self.id} key={self.member_key!r}>"


# ---------------------------------------------------------------------------
# Attendance buckets — bounded pages of a member's history
# ---------------------------------------------------------------------------
class AttendanceBucket(Base):
    __tablename__ = "attendance_buckets"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    tenant_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False
    )
    member_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("members.id", ondelete="CASCADE"), nullable=False
    )
    page: Mapped[int] = mapped_column(Integer, nullable=False)
    # ordered [{"event_id", "type_id", "value", "start_date"}]
    events: Mapped[list] = mapped_column(JSONB, default=list)

    member: Mapped[Member] = relationship(back_populates="buckets")

    __table_args__ = (
        UniqueConstraint("member_id", "page", name="uq_buckets_member_page"),
        Index("ix_buckets_tenant", "tenant_id"),
    )

    def __repr__(self) -> str:
        return f"<AttendanceBucket member={self.member_id} page={self.page} n={len(self.events or [])}>"


# ---------------------------------------------------------------------------
# Dashboards — recomputed wholesale every sync
# ---------------------------------------------------------------------------
class Dashboard(Base):
    __tablename__ = "dashboards"

    tenant_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("tenants.id", ondelete="CASCADE"), primary_key=True
    )
    stats: Mapped[dict] = mapped_column(JSONB, default=dict)
    last_updated: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )


# ---------------------------------------------------------------------------
# Quotas — counters that must never go negative
# ---------------------------------------------------------------------------
class QuotaRecord(Base):
    __tablename__ = "quotas"

    tenant_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("tenants.id", ondelete="CASCADE"), primary_key=True
    )
    has_invite_code: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    read_operations_left: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    modify_operations_left: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    manual_syncs_left: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    source_folders_left: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    events_left: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    members_left: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    __table_args__ = (
        CheckConstraint("read_operations_left >= 0", name="ck_quota_read_ops"),
        CheckConstraint("modify_operations_left >= 0", name="ck_quota_modify_ops"),
        CheckConstraint("manual_syncs_left >= 0", name="ck_quota_manual_syncs"),
        CheckConstraint("source_folders_left >= 0", name="ck_quota_source_folders"),
        CheckConstraint("events_left >= 0", name="ck_quota_events"),
        CheckConstraint("members_left >= 0", name="ck_quota_members"),
    )

    def as_dict(self) -> dict[str, int]:
        return {name: getattr(self, name) for name in QUOTA_FIELDS}
