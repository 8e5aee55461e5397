"""
encore.engine.dashboard — Dashboard aggregate recomputation
============================================================

The dashboard is rebuilt from scratch on every sync from the events and
members about to be committed.  Nothing is patched incrementally.

Per-event-type maps are keyed by event type id, each value carrying the
type's title.  Events without a type (or whose type no longer exists)
land in the ``"etc"`` bucket titled "Other".
"""

from __future__ import annotations

import math
from datetime import date, datetime, timedelta

from encore.constants import (
    BIRTHDAY_WINDOWS,
    UNTYPED_EVENT_BUCKET,
    UNTYPED_EVENT_TITLE,
)
from encore.engine.properties import parse_date
from encore.engine.state import EventRecord, EventTypeRecord, MemberRecord


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _ratio(part: int, whole: int) -> float:
    return part / whole if whole > 0 else 0.0


def next_birthday(birthday: date, today: date) -> date:
    """Next anniversary of *birthday* on or after *today* (Feb 29 → Feb 28)."""
    def _in(year: int) -> date:
        try:
            return birthday.replace(year=year)
        except ValueError:
            return date(year, 2, 28)

    candidate = _in(today.year)
    return candidate if candidate >= today else _in(today.year + 1)


def upcoming_birthdays(
    members: list[MemberRecord], now: datetime, frequency: str
) -> list[dict]:
    window = timedelta(days=BIRTHDAY_WINDOWS.get(frequency, BIRTHDAY_WINDOWS["monthly"]))
    today = now.date()
    upcoming = []
    for member in members:
        prop = member.properties.get("Birthday")
        born = parse_date(prop.value) if prop is not None else None
        if born is None:
            continue
        anniversary = next_birthday(born.date(), today)
        if anniversary - today > window:
            continue
        first = member.properties.get("First Name")
        last = member.properties.get("Last Name")
        upcoming.append({
            "member_id": member.id,
            "first_name": first.value if first else None,
            "last_name": last.value if last else None,
            "birthday": born.date().isoformat(),
            "next_birthday": anniversary.isoformat(),
        })
    upcoming.sort(key=lambda item: item["next_birthday"])
    return upcoming


def compute_dashboard(
    event_types: list[EventTypeRecord],
    events: list[EventRecord],
    members: list[MemberRecord],
    now: datetime,
    frequency: str = "monthly",
) -> dict:
    """Build the full dashboard payload for one tenant."""
    known_types = {event_type.id: event_type for event_type in event_types}
    events_by_type = {type_id: 0 for type_id in known_types}
    attendees_by_type = {type_id: 0 for type_id in known_types}

    for event in events:
        if event.event_type_id in known_types:
            events_by_type[event.event_type_id] += 1

    total_attendees = 0
    for member in members:
        for entry in member.attendance:
            total_attendees += 1
            if entry.type_id in known_types:
                attendees_by_type[entry.type_id] += 1

    total_events = len(events)
    other_events = total_events - sum(events_by_type.values())
    other_attendees = total_attendees - sum(attendees_by_type.values())

    def _section(counts: dict[str, int], other: int, whole: int, with_percent: bool) -> dict:
        section = {}
        for type_id, count in counts.items():
            item = {"title": known_types[type_id].title, "value": count}
            if with_percent:
                item["percent"] = _ratio(count, whole)
            section[type_id] = item
        item = {"title": UNTYPED_EVENT_TITLE, "value": other}
        if with_percent:
            item["percent"] = _ratio(other, whole)
        section[UNTYPED_EVENT_BUCKET] = item
        return section

    avg_by_type = {
        type_id: {
            "title": known_types[type_id].title,
            "value": _round_half_up(_ratio(attendees_by_type[type_id], count)),
        }
        for type_id, count in events_by_type.items()
    }
    avg_by_type[UNTYPED_EVENT_BUCKET] = {
        "title": UNTYPED_EVENT_TITLE,
        "value": _round_half_up(_ratio(other_attendees, other_events)),
    }

    if frequency not in BIRTHDAY_WINDOWS:
        frequency = "monthly"

    return {
        "last_updated": now.isoformat(),
        "total_members": len(members),
        "total_events": total_events,
        "total_attendees": total_attendees,
        "total_event_types": len(event_types),
        "avg_attendees_per_event": _round_half_up(_ratio(total_attendees, total_events)),
        "total_events_by_event_type": _section(events_by_type, other_events, total_events, False),
        "total_attendees_by_event_type": _section(
            attendees_by_type, other_attendees, total_attendees, False
        ),
        "event_percentage_by_event_type": _section(
            events_by_type, other_events, total_events, True
        ),
        "attendee_percentage_by_event_type": _section(
            attendees_by_type, other_attendees, total_attendees, True
        ),
        "avg_attendees_by_event_type": avg_by_type,
        "upcoming_birthdays": {
            "frequency": frequency,
            "members": upcoming_birthdays(members, now, frequency),
        },
    }
