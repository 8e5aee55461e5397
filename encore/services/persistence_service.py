"""
encore.services.persistence_service — Persistence Committer
============================================================

Writes one sync's working set back to the store in a single transaction.

How it works:
    1. Plan (pure, no I/O):
       * events to upsert (live) and delete (flagged and on file);
       * members to upsert (live) and delete (flagged and on file);
       * bucket pages per live member via stable repagination;
       * the dashboard, rebuilt from the upsert sets;
       * the quota delta: the pending discovery delta plus one
         ``events_left`` / ``members_left`` back per flagged event / member.
    2. Apply everything in one ``get_session`` block, finishing with the
       conditional quota ``UPDATE``.  If that update matches nothing the
       whole transaction rolls back with :class:`QuotaCommitError`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from sqlalchemy import Engine, select

from encore.constants import MAX_PAGE_SIZE
from encore.database.engine import get_session
from encore.database.models import (
    AttendanceBucket,
    Dashboard,
    Event,
    EventType,
    Member,
    Tenant,
)
from encore.engine.dashboard import compute_dashboard
from encore.engine.pagination import BucketPage, plan_buckets
from encore.engine.state import EventRecord, MemberRecord, SyncState, field_map_to_json
from encore.errors import QuotaCommitError
from encore.services.quota_service import QuotaService

logger = logging.getLogger(__name__)


@dataclass
class CommitPlan:
    event_upserts: list[EventRecord] = field(default_factory=list)
    event_deletes: list[str] = field(default_factory=list)
    member_upserts: list[MemberRecord] = field(default_factory=list)
    member_deletes: list[str] = field(default_factory=list)
    bucket_upserts: list[BucketPage] = field(default_factory=list)
    bucket_deletes: list[str] = field(default_factory=list)
    event_type_folders: dict[str, list[str]] = field(default_factory=dict)
    dashboard: dict = field(default_factory=dict)
    quota_delta: dict[str, int] = field(default_factory=dict)
    remapped_events: int = 0


@dataclass
class CommitSummary:
    events_upserted: int = 0
    events_deleted: int = 0
    members_upserted: int = 0
    members_deleted: int = 0
    buckets_upserted: int = 0
    buckets_deleted: int = 0
    quota_delta: dict[str, int] = field(default_factory=dict)


class PersistenceCommitter:
    def __init__(self, engine: Engine, page_capacity: int = MAX_PAGE_SIZE) -> None:
        self.engine = engine
        self.page_capacity = page_capacity
        self.quota = QuotaService(engine)

    # -----------------------------------------------------------------------
    # Planning
    # -----------------------------------------------------------------------
    def plan(self, state: SyncState) -> CommitPlan:
        plan = CommitPlan()

        for event in state.events.values():
            if event.delete:
                state.pending.adjust("events_left", 1)
                if event.stored:
                    plan.event_deletes.append(event.id)
                continue
            plan.event_upserts.append(event)
            if event.field_map != event.synchronized_field_map:
                plan.remapped_events += 1

        for member in state.members.values():
            if member.delete:
                state.pending.adjust("members_left", 1)
                if member.stored:
                    plan.member_deletes.append(member.id)
                    plan.bucket_deletes.extend(member.bucket_ids.values())
                continue
            plan.member_upserts.append(member)
            buckets = plan_buckets(member, self.page_capacity)
            plan.bucket_upserts.extend(buckets.upserts)
            plan.bucket_deletes.extend(buckets.deletes)

        for event_type in state.event_types.values():
            if event_type.folders_changed:
                plan.event_type_folders[event_type.id] = list(event_type.source_folders)

        plan.dashboard = compute_dashboard(
            list(state.event_types.values()),
            plan.event_upserts,
            plan.member_upserts,
            state.timestamp,
            state.tenant.birthday_frequency,
        )
        plan.quota_delta = state.pending.consume()
        return plan

    # -----------------------------------------------------------------------
    # Commit
    # -----------------------------------------------------------------------
    def commit(self, state: SyncState) -> CommitSummary:
        """Plan and apply *state* atomically.

        Raises
        ------
        QuotaCommitError
            The quota could not absorb the delta; nothing was written.
        """
        plan = self.plan(state)
        tenant_id = state.tenant.id
        now = state.timestamp

        with get_session(self.engine) as session:
            self._write_events(session, tenant_id, plan, now)
            self._write_members(session, tenant_id, plan, now)
            self._write_buckets(session, tenant_id, plan)

            for type_id, folders in plan.event_type_folders.items():
                event_type = session.get(EventType, type_id)
                if event_type is not None:
                    event_type.source_folders = folders
                    event_type.last_updated = now

            dashboard = session.get(Dashboard, tenant_id)
            if dashboard is None:
                dashboard = Dashboard(tenant_id=tenant_id)
                session.add(dashboard)
            dashboard.stats = plan.dashboard
            dashboard.last_updated = now

            tenant = session.get(Tenant, tenant_id)
            if tenant is not None:
                tenant.last_updated = now

            session.flush()
            if not self.quota.increment(tenant_id, plan.quota_delta, session=session):
                raise QuotaCommitError(
                    f"Quota for tenant {tenant_id} cannot absorb {plan.quota_delta}"
                )

        logger.info(
            "Committed tenant %s: events +%d/-%d (%d remapped), members +%d/-%d, "
            "buckets +%d/-%d, quota %s",
            tenant_id,
            len(plan.event_upserts), len(plan.event_deletes), plan.remapped_events,
            len(plan.member_upserts), len(plan.member_deletes),
            len(plan.bucket_upserts), len(plan.bucket_deletes),
            plan.quota_delta,
        )
        for event in plan.event_upserts:
            event.stored = True
            event.synchronized_field_map = dict(event.field_map)
        for member in plan.member_upserts:
            member.stored = True

        return CommitSummary(
            events_upserted=len(plan.event_upserts),
            events_deleted=len(plan.event_deletes),
            members_upserted=len(plan.member_upserts),
            members_deleted=len(plan.member_deletes),
            buckets_upserted=len(plan.bucket_upserts),
            buckets_deleted=len(plan.bucket_deletes),
            quota_delta=plan.quota_delta,
        )

    def _write_events(self, session, tenant_id: str, plan: CommitPlan, now) -> None:
        rows = {
            row.id: row
            for row in session.scalars(select(Event).where(Event.tenant_id == tenant_id))
        }
        for event_id in plan.event_deletes:
            row = rows.get(event_id)
            if row is not None:
                session.delete(row)

        for event in plan.event_upserts:
            row = rows.get(event.id)
            if row is None:
                row = Event(id=event.id, tenant_id=tenant_id)
                session.add(row)
            field_map = field_map_to_json(event.field_map)
            row.title = event.title
            row.source_kind = event.source_kind
            row.source_id = event.source_id
            row.start_date = event.start_date
            row.event_type_id = event.event_type_id
            row.value = event.value
            row.field_map = field_map
            row.synchronized_field_map = field_map_to_json(event.field_map)
            row.last_updated = now

    def _write_members(self, session, tenant_id: str, plan: CommitPlan, now) -> None:
        rows = {
            row.id: row
            for row in session.scalars(select(Member).where(Member.tenant_id == tenant_id))
        }
        for member_id in plan.member_deletes:
            row = rows.get(member_id)
            if row is not None:
                session.delete(row)

        for member in plan.member_upserts:
            row = rows.get(member.id)
            if row is None:
                row = Member(id=member.id, tenant_id=tenant_id)
                session.add(row)
            row.member_key = member.member_key
            row.properties = member.properties_json()
            row.points = dict(member.points)
            row.last_updated = now

    def _write_buckets(self, session, tenant_id: str, plan: CommitPlan) -> None:
        rows = {
            row.id: row
            for row in session.scalars(
                select(AttendanceBucket).where(AttendanceBucket.tenant_id == tenant_id)
            )
        }
        for bucket_id in plan.bucket_deletes:
            row = rows.get(bucket_id)
            if row is not None:
                session.delete(row)

        for page in plan.bucket_upserts:
            row = rows.get(page.id)
            if row is None:
                row = AttendanceBucket(id=page.id, tenant_id=tenant_id, member_id=page.member_id)
                session.add(row)
            row.page = page.page
            row.events = page.events_json()
