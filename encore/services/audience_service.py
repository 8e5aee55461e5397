"""
encore.services.audience_service — Audience Discovery & Merge
==============================================================

Turns each discovered event's submissions into members and attendance.

How it works:
    1. Reset every stored member: points to zero, non-override properties
       unset, attendance emptied.  What was reset is kept aside.
    2. Fan out one unit per live event with ``asyncio.gather``.  A unit
       asks the event's content provider for its fields, rebuilds the
       field map, and (if some field feeds "Member ID") reads the records.
    3. Each record is merged into ``state.members`` in one synchronous
       step, with no ``await`` between reading and writing the shared map.
    4. Once every unit is done, members keep what they had from events
       whose source could not be read this time, members missing a
       required property are flagged for deletion, attendance is put in
       event order, and points are accrued.

Merge rules for one property:
    * the tenant's origin event always wins and marks the value override;
    * any other event fills a value that is not overridden, and among
      those the earliest event (start date, then source id) wins.

The outcome does not depend on the order in which provider calls finish.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime

from encore.constants import MEMBER_ID_PROPERTY
from encore.engine.matchers import match_field
from encore.engine.points import apply_points
from encore.engine.properties import PropertyType, as_utc, required_properties
from encore.engine.state import (
    AttendanceEntry,
    EventRecord,
    FieldMapping,
    MemberRecord,
    PropertyValue,
    SyncState,
)
from encore.errors import ProviderError, SourceNotFoundError
from encore.providers.base import ContentProvider, FieldDefinition
from encore.providers.registry import ProviderSet

logger = logging.getLogger(__name__)


def _event_rank(event: EventRecord) -> tuple:
    return (as_utc(event.start_date), event.source_id)


def _entry_rank(entry: AttendanceEntry) -> tuple:
    return (as_utc(entry.start_date), entry.event_id)


class AudienceDiscovery:
    def __init__(self, providers: ProviderSet) -> None:
        self.providers = providers

    async def discover(self, state: SyncState) -> None:
        previous = self.reset_members(state)
        events = state.live_events()
        await asyncio.gather(
            *(self.discover_audience(state, event, state.timestamp) for event in events)
        )
        carried = self.carry_forward_pruned(state, previous)
        flagged = self.flag_incomplete_members(state)
        for member in state.live_members():
            member.attendance.sort(key=_entry_rank)
        apply_points(state.live_members(), state.tenant.point_types)
        logger.info(
            "Tenant %s: %d events read, %d members live, %d kept from unread events, "
            "%d flagged for deletion",
            state.tenant.id, len(events), len(state.live_members()), carried, flagged,
        )

    # -----------------------------------------------------------------------
    # Phase steps
    # -----------------------------------------------------------------------
    def reset_members(self, state: SyncState) -> dict[str, tuple[list, dict]]:
        """Reset stored members; return what each had, by member key.

        The returned ``(attendance, values)`` pairs hold the member's stored
        attendance and its non-override property values before the reset.
        """
        zero_points = {name: 0 for name in state.tenant.point_types}
        previous: dict[str, tuple[list, dict]] = {}
        for member in state.members.values():
            for name in state.tenant.property_types:
                member.properties.setdefault(name, PropertyValue())
            values = {}
            for name, prop in member.properties.items():
                if not prop.override:
                    values[name] = prop.value
                    prop.value = None
            previous[member.member_key] = (member.attendance, values)
            member.points = dict(zero_points)
            member.attendance = []
            member.value_ranks = {}
            member.last_updated = state.timestamp
        return previous

    def carry_forward_pruned(self, state: SyncState, previous: dict[str, tuple[list, dict]]) -> int:
        """Keep stored attendance and values tied to events that were not read.

        A pruned event is still on file; its attendees keep their entry for
        it and any value nothing else supplied this sync.
        """
        pruned = {event.id for event in state.live_events() if event.pruned}
        if not pruned:
            return 0
        carried = 0
        for key, (attendance, values) in previous.items():
            entries = [entry for entry in attendance if entry.event_id in pruned]
            if not entries:
                continue
            member = state.members[key]
            for entry in entries:
                if not member.has_attended(entry.event_id):
                    member.attendance.append(entry)
            for name, value in values.items():
                prop = member.properties.setdefault(name, PropertyValue())
                if prop.value is None and not prop.override:
                    prop.value = value
            carried += 1
        return carried

    def flag_incomplete_members(self, state: SyncState) -> int:
        required = required_properties(state.tenant.property_types)
        flagged = 0
        for member in state.members.values():
            missing = [
                name for name in required
                if member.properties.get(name) is None or member.properties[name].value is None
            ]
            if missing:
                member.delete = True
                flagged += 1
                logger.debug("Member %s is missing %s", member.member_key, missing)
        return flagged

    async def discover_audience(self, state: SyncState, event: EventRecord, timestamp: datetime) -> None:
        """Read one event's submissions and merge them into ``state.members``."""
        provider = self.providers.for_kind(event.source_kind)
        if provider is None:
            event.pruned = True
            state.warn("No provider for %s sources; %s yields no audience", event.source_kind, event.title)
            return

        try:
            definitions = await provider.list_fields(event.source_id)
            field_types = self._rebuild_field_map(state, event, provider, definitions)
            if event.member_id_field() is None:
                logger.info("Event %s has no Member ID field; no audience", event.title)
                return
            records = await provider.list_records(event.source_id, field_types)
        except SourceNotFoundError as exc:
            event.delete = True
            state.warn("Source for %s is gone; event will be deleted: %s", event.title, exc)
            return
        except ProviderError as exc:
            event.pruned = True
            state.warn("Could not read %s; skipping its audience this sync: %s", event.title, exc)
            return

        for record in records:
            self._merge_record(state, event, record, timestamp)

    # -----------------------------------------------------------------------
    # Helpers
    # -----------------------------------------------------------------------
    def _rebuild_field_map(
        self,
        state: SyncState,
        event: EventRecord,
        provider: ContentProvider,
        definitions: list[FieldDefinition],
    ) -> dict[str, PropertyType]:
        """Map provider fields to member properties; return the typed fields."""
        matchers = state.tenant.field_matchers
        field_map: dict[str, FieldMapping] = {}
        field_types: dict[str, PropertyType] = {}

        for definition in definitions:
            previous = event.field_map.get(definition.id)
            matcher = match_field(matchers, definition.title)
            if previous is not None and (previous.override or previous.property):
                prop = previous.property
            else:
                prop = matcher.property if matcher is not None else None

            mapping = FieldMapping(
                field=definition.title,
                matcher_id=matcher.key if matcher is not None else None,
                override=previous.override if previous else False,
            )
            field_map[definition.id] = mapping
            if prop is None:
                continue

            ptype = state.tenant.property_types.get(prop)
            if ptype is None or not provider.supports(definition, ptype):
                logger.debug("Field %r of %s cannot feed %s", definition.title, event.title, prop)
                continue
            mapping.property = prop
            field_types[definition.id] = ptype

        event.field_map = field_map
        return field_types

    def _merge_record(
        self, state: SyncState, event: EventRecord, record: dict, timestamp: datetime
    ) -> None:
        key_field = event.member_id_field()
        key = record.get(key_field)
        if key is None or key == "":
            return
        key = str(key)

        member = state.members.get(key)
        if member is None:
            if not state.pending.admit("members_left", state.quota["members_left"]):
                state.warn("Member quota exhausted; skipping %s from %s", key, event.title)
                return
            member = MemberRecord(
                id=str(uuid.uuid4()),
                member_key=key,
                properties={name: PropertyValue() for name in state.tenant.property_types},
                points={name: 0 for name in state.tenant.point_types},
                last_updated=timestamp,
            )
            state.members[key] = member

        is_origin = event.id == state.tenant.origin_event_id
        rank = _event_rank(event)
        for field_id, value in record.items():
            mapping = event.field_map.get(field_id)
            if mapping is None or mapping.property is None or value is None:
                continue
            current = member.properties.setdefault(mapping.property, PropertyValue())
            if is_origin:
                current.value = value
                current.override = True
            elif not current.override:
                held = member.value_ranks.get(mapping.property)
                if current.value is None or (held is not None and rank < held):
                    current.value = value
                    member.value_ranks[mapping.property] = rank

        key_prop = member.properties.setdefault(MEMBER_ID_PROPERTY, PropertyValue())
        if key_prop.value is None:
            key_prop.value = key

        if not member.has_attended(event.id):
            member.attendance.append(AttendanceEntry(
                event_id=event.id,
                type_id=event.event_type_id,
                value=event.value,
                start_date=event.start_date,
            ))
