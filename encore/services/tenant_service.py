"""
encore.services.tenant_service — Tenants, sync lock & snapshot loading
=======================================================================

Synchronous functions (run them through ``run_db`` from async code):

* Tenant bootstrap and small configuration writes.
* The sync lock: a compare-and-set on ``tenants.sync_lock``.
* :func:`load_state` — reads everything a sync needs into a detached
  :class:`~encore.engine.state.SyncState`.
* Quota-charged reads for the API (dashboard, quota, overview).
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import Engine, select, update
from sqlalchemy.orm import Session

from encore.database.engine import get_session
from encore.database.models import (
    AttendanceBucket,
    Dashboard,
    Event,
    EventType,
    Member,
    QuotaRecord,
    Tenant,
)
from encore.database.seed import seed_tenant
from encore.engine.matchers import FieldMatcher, parse_matchers
from encore.engine.properties import as_utc, parse_schema
from encore.engine.quota import QuotaContext
from encore.engine.state import (
    AttendanceEntry,
    EventRecord,
    EventTypeRecord,
    MemberRecord,
    PropertyValue,
    SyncState,
    TenantSnapshot,
    field_map_from_json,
    parse_point_types,
)
from encore.errors import (
    QuotaExceededError,
    SyncInProgressError,
    SyncInvariantError,
    TenantNotFoundError,
)
from encore.services.quota_service import QuotaService

logger = logging.getLogger(__name__)

READ_CHARGE = {"read_operations_left": -1}


def _require_tenant(session: Session, tenant_id: str) -> Tenant:
    tenant = session.get(Tenant, tenant_id)
    if tenant is None:
        raise TenantNotFoundError(tenant_id)
    return tenant


# ---------------------------------------------------------------------------
# Bootstrap & configuration
# ---------------------------------------------------------------------------
def create_tenant(
    engine: Engine,
    name: str,
    has_invite_code: bool = False,
    member_property_types: dict[str, str] | None = None,
    point_types: dict[str, dict] | None = None,
) -> str:
    """Create a tenant with its dashboard and quota rows; return its id."""
    if member_property_types:
        parse_schema(member_property_types)
    if point_types:
        parse_point_types(point_types)
    with get_session(engine) as session:
        tenant = seed_tenant(
            session, name, has_invite_code,
            member_property_types=member_property_types,
            point_types=point_types,
        )
        return tenant.id


def add_event_type(
    engine: Engine,
    tenant_id: str,
    title: str,
    value: int,
    source_folders: list[str],
    context: QuotaContext | None = None,
) -> str:
    """Create an event type, charging one modify operation plus one
    source-folder slot per folder."""
    delta = {"modify_operations_left": -1, "source_folders_left": -len(source_folders)}
    quota = QuotaService(engine)
    with get_session(engine) as session:
        _require_tenant(session, tenant_id)
        if not quota.increment(tenant_id, delta, context, session=session):
            raise QuotaExceededError(tenant_id, delta)
        event_type = EventType(
            tenant_id=tenant_id, title=title, value=value, source_folders=list(source_folders)
        )
        session.add(event_type)
        session.flush()
        return event_type.id


def set_origin_event(engine: Engine, tenant_id: str, event_id: str | None) -> None:
    with get_session(engine) as session:
        tenant = _require_tenant(session, tenant_id)
        tenant.origin_event_id = event_id


def set_field_matchers(engine: Engine, tenant_id: str, raw: list[dict]) -> None:
    """Replace the tenant's field matchers.

    Every entry must parse; a bad condition or expression raises
    :class:`SchemaError` and nothing is written.
    """
    matchers = [FieldMatcher.from_dict(item) for item in raw]
    with get_session(engine) as session:
        tenant = _require_tenant(session, tenant_id)
        tenant.field_matchers = [matcher.to_dict() for matcher in matchers]


def save_report_reference(engine: Engine, tenant_id: str, reference: str) -> None:
    with get_session(engine) as session:
        session.execute(
            update(Tenant).where(Tenant.id == tenant_id).values(report_reference=reference)
        )


# ---------------------------------------------------------------------------
# Sync lock
# ---------------------------------------------------------------------------
def acquire_lock(engine: Engine, tenant_id: str, now: datetime) -> None:
    """Set the sync lock if it is clear.

    Raises
    ------
    TenantNotFoundError
        No tenant has this id.
    SyncInProgressError
        The lock is already held.
    """
    with get_session(engine) as session:
        result = session.execute(
            update(Tenant)
            .where(Tenant.id == tenant_id, Tenant.sync_lock.is_(False))
            .values(sync_lock=True, sync_locked_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            logger.info("Sync lock acquired for tenant %s", tenant_id)
            return
        exists = session.scalar(select(Tenant.id).where(Tenant.id == tenant_id))

    if exists is None:
        raise TenantNotFoundError(tenant_id)
    raise SyncInProgressError(tenant_id)


def release_lock(engine: Engine, tenant_id: str) -> bool:
    """Clear the sync lock.  Returns whether the tenant row was updated."""
    with get_session(engine) as session:
        result = session.execute(
            update(Tenant)
            .where(Tenant.id == tenant_id)
            .values(sync_lock=False, sync_locked_at=None)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1


# ---------------------------------------------------------------------------
# Snapshot
# ---------------------------------------------------------------------------
def load_state(engine: Engine, tenant_id: str, timestamp: datetime) -> SyncState:
    """Read the tenant's configuration, quota and stored records.

    Raises :class:`SyncInvariantError` when the tenant, its dashboard or its
    quota row is missing; a locked tenant always has all three.
    """
    with get_session(engine) as session:
        tenant = session.get(Tenant, tenant_id)
        dashboard = session.get(Dashboard, tenant_id)
        quota = session.get(QuotaRecord, tenant_id)
        if tenant is None:
            raise SyncInvariantError(f"Locked tenant {tenant_id} has no tenant row")
        if dashboard is None:
            raise SyncInvariantError(f"Tenant {tenant_id} has no dashboard")
        if quota is None:
            raise SyncInvariantError(f"Tenant {tenant_id} has no quota record")

        property_types = parse_schema(tenant.member_property_types or {})
        stats = dashboard.stats or {}
        snapshot = TenantSnapshot(
            id=tenant.id,
            name=tenant.name,
            origin_event_id=tenant.origin_event_id,
            report_reference=tenant.report_reference,
            property_types=property_types,
            point_types=parse_point_types(tenant.point_types or {}),
            field_matchers=parse_matchers(tenant.field_matchers or []),
            birthday_frequency=stats.get("upcoming_birthdays", {}).get("frequency", "monthly"),
        )
        state = SyncState(tenant=snapshot, quota=quota.as_dict(), timestamp=timestamp)

        for row in session.scalars(select(EventType).where(EventType.tenant_id == tenant_id)):
            state.event_types[row.id] = EventTypeRecord(
                id=row.id, title=row.title, value=row.value,
                source_folders=list(row.source_folders or []),
            )

        for row in session.scalars(select(Event).where(Event.tenant_id == tenant_id)):
            state.events[row.source_id] = EventRecord(
                id=row.id,
                title=row.title,
                source_kind=row.source_kind,
                source_id=row.source_id,
                start_date=as_utc(row.start_date),
                event_type_id=row.event_type_id,
                value=row.value,
                field_map=field_map_from_json(row.field_map),
                synchronized_field_map=field_map_from_json(row.field_map),
                stored=True,
            )

        bucket_ids: dict[str, dict[int, str]] = {}
        attendance: dict[str, list[AttendanceEntry]] = {}
        bucket_rows = session.scalars(
            select(AttendanceBucket)
            .where(AttendanceBucket.tenant_id == tenant_id)
            .order_by(AttendanceBucket.member_id, AttendanceBucket.page)
        )
        for bucket in bucket_rows:
            bucket_ids.setdefault(bucket.member_id, {})[bucket.page] = bucket.id
            attendance.setdefault(bucket.member_id, []).extend(
                AttendanceEntry.from_dict(raw) for raw in bucket.events or []
            )

        for row in session.scalars(select(Member).where(Member.tenant_id == tenant_id)):
            properties = {
                name: PropertyValue(value=raw.get("value"), override=bool(raw.get("override")))
                for name, raw in (row.properties or {}).items()
            }
            for name in property_types:
                properties.setdefault(name, PropertyValue())
            state.members[row.member_key] = MemberRecord(
                id=row.id,
                member_key=row.member_key,
                properties=properties,
                points=dict(row.points or {}),
                last_updated=as_utc(row.last_updated) if row.last_updated else timestamp,
                stored=True,
                attendance=attendance.get(row.id, []),
                bucket_ids=bucket_ids.get(row.id, {}),
            )

    logger.info(
        "Loaded tenant %s: %d event types, %d events, %d members",
        tenant_id, len(state.event_types), len(state.events), len(state.members),
    )
    return state


# ---------------------------------------------------------------------------
# Quota-charged reads
# ---------------------------------------------------------------------------
def get_dashboard(
    engine: Engine, tenant_id: str, quota: QuotaService, context: QuotaContext | None = None
) -> dict:
    with get_session(engine) as session:
        _require_tenant(session, tenant_id)
    quota.charge(tenant_id, READ_CHARGE, context)
    with get_session(engine) as session:
        dashboard = session.get(Dashboard, tenant_id)
        return dict(dashboard.stats or {}) if dashboard else {}


def get_quota_view(
    engine: Engine, tenant_id: str, quota: QuotaService, context: QuotaContext | None = None
) -> dict:
    with get_session(engine) as session:
        _require_tenant(session, tenant_id)
    quota.charge(tenant_id, READ_CHARGE, context)
    return quota.get_quota(tenant_id) or {}


def get_overview(
    engine: Engine, tenant_id: str, quota: QuotaService, context: QuotaContext | None = None
) -> dict:
    """Tenant summary, dashboard and quota for one read operation.

    The nested reads run inside ``context.ignore`` so only the outer call
    is charged.
    """
    context = context or QuotaContext()
    with get_session(engine) as session:
        tenant = _require_tenant(session, tenant_id)
        summary = {
            "id": tenant.id,
            "name": tenant.name,
            "syncing": tenant.sync_lock,
            "report_reference": tenant.report_reference,
            "last_updated": tenant.last_updated.isoformat() if tenant.last_updated else None,
        }
    quota.charge(tenant_id, READ_CHARGE, context)
    with context.ignore(tenant_id):
        dashboard = get_dashboard(engine, tenant_id, quota, context)
        limits = get_quota_view(engine, tenant_id, quota, context)
    return {"tenant": summary, "dashboard": dashboard, "quota": limits}
