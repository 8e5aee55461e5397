"""
encore.engine.state — In-memory sync working set
=================================================

Plain dataclasses that carry one tenant's sync attempt from discovery to
commit.  They are built from ORM rows on a worker thread and handed to the
event loop detached, so nothing here touches a session.

:class:`SyncState` is the shared store every audience unit reads and
writes.  Units run on one event loop and keep each read-merge-write step
free of ``await``, so the maps need no lock.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime

from encore.constants import MEMBER_ID_PROPERTY
from encore.engine.matchers import FieldMatcher
from encore.engine.properties import PropertyType, as_utc, parse_date
from encore.engine.quota import PendingQuota
from encore.errors import SchemaError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Tenant configuration
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class PointRange:
    start: datetime
    end: datetime

    def contains(self, moment: datetime) -> bool:
        return self.start <= as_utc(moment) <= self.end


def parse_point_types(raw: dict[str, dict]) -> dict[str, PointRange]:
    ranges: dict[str, PointRange] = {}
    for name, bounds in raw.items():
        start = parse_date(bounds.get("start"))
        end = parse_date(bounds.get("end"))
        if start is None or end is None or start > end:
            raise SchemaError(f"Point type {name!r} has an invalid date range")
        ranges[name] = PointRange(start=start, end=end)
    return ranges


@dataclass(slots=True)
class TenantSnapshot:
    id: str
    name: str
    origin_event_id: str | None
    report_reference: str | None
    property_types: dict[str, PropertyType]
    point_types: dict[str, PointRange]
    field_matchers: list[FieldMatcher]
    birthday_frequency: str = "monthly"


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------
@dataclass(slots=True)
class FieldMapping:
    """How one provider field feeds a member property."""

    field: str
    property: str | None = None
    matcher_id: str | None = None
    override: bool = False

    @classmethod
    def from_dict(cls, raw: dict) -> FieldMapping:
        return cls(
            field=raw.get("field", ""),
            property=raw.get("property"),
            matcher_id=raw.get("matcher_id"),
            override=bool(raw.get("override", False)),
        )

    def to_dict(self) -> dict:
        return {
            "field": self.field,
            "property": self.property,
            "matcher_id": self.matcher_id,
            "override": self.override,
        }


def field_map_from_json(raw: dict | None) -> dict[str, FieldMapping]:
    return {key: FieldMapping.from_dict(value) for key, value in (raw or {}).items()}


def field_map_to_json(mapping: dict[str, FieldMapping]) -> dict:
    return {key: value.to_dict() for key, value in mapping.items()}


@dataclass(slots=True)
class EventTypeRecord:
    id: str
    title: str
    value: int
    source_folders: list[str]
    # Transient; only meaningful during one ownership pass
    claimed: int = 0
    folders_changed: bool = False


@dataclass(slots=True)
class EventRecord:
    id: str
    title: str
    source_kind: str
    source_id: str
    start_date: datetime
    event_type_id: str | None
    value: int
    field_map: dict[str, FieldMapping] = field(default_factory=dict)
    synchronized_field_map: dict[str, FieldMapping] = field(default_factory=dict)
    stored: bool = False
    delete: bool = False
    # Provider failed this sync; the event is kept but yields no audience
    pruned: bool = False

    def member_id_field(self) -> str | None:
        for field_id, mapping in self.field_map.items():
            if mapping.property == MEMBER_ID_PROPERTY:
                return field_id
        return None


# ---------------------------------------------------------------------------
# Members
# ---------------------------------------------------------------------------
@dataclass(slots=True)
class AttendanceEntry:
    event_id: str
    type_id: str | None
    value: int
    start_date: datetime

    @classmethod
    def from_dict(cls, raw: dict) -> AttendanceEntry:
        return cls(
            event_id=raw["event_id"],
            type_id=raw.get("type_id"),
            value=int(raw.get("value", 0)),
            start_date=parse_date(raw["start_date"]),
        )

    def to_dict(self) -> dict:
        return {
            "event_id": self.event_id,
            "type_id": self.type_id,
            "value": self.value,
            "start_date": as_utc(self.start_date).isoformat(),
        }


@dataclass(slots=True)
class PropertyValue:
    value: object = None
    override: bool = False

    def to_dict(self) -> dict:
        return {"value": self.value, "override": self.override}


@dataclass(slots=True)
class MemberRecord:
    id: str
    member_key: str
    properties: dict[str, PropertyValue]
    points: dict[str, int]
    last_updated: datetime
    stored: bool = False
    delete: bool = False
    attendance: list[AttendanceEntry] = field(default_factory=list)
    # page → id of the bucket row already on file
    bucket_ids: dict[int, str] = field(default_factory=dict)
    # Transient; property → precedence of the event that filled it this sync
    value_ranks: dict[str, tuple] = field(default_factory=dict)

    def has_attended(self, event_id: str) -> bool:
        return any(entry.event_id == event_id for entry in self.attendance)

    def properties_json(self) -> dict:
        return {name: prop.to_dict() for name, prop in self.properties.items()}


# ---------------------------------------------------------------------------
# Working set
# ---------------------------------------------------------------------------
@dataclass
class SyncState:
    tenant: TenantSnapshot
    quota: dict[str, int]
    timestamp: datetime
    pending: PendingQuota = field(default_factory=PendingQuota)
    event_types: dict[str, EventTypeRecord] = field(default_factory=dict)
    # source id → event
    events: dict[str, EventRecord] = field(default_factory=dict)
    # member key → member
    members: dict[str, MemberRecord] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)

    def warn(self, message: str, *args) -> None:
        text = message % args if args else message
        logger.warning("[tenant %s] %s", self.tenant.id, text)
        self.warnings.append(text)

    def live_events(self) -> list[EventRecord]:
        return [event for event in self.events.values() if not event.delete]

    def live_members(self) -> list[MemberRecord]:
        return [member for member in self.members.values() if not member.delete]
