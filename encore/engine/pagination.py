"""
encore.engine.pagination — Attendance bucket repagination
==========================================================

A member's attendance history is stored as fixed-capacity pages.  Every
sync rebuilds the pages from the full pending history: entries are taken
in list order (audience discovery sorts them by event start date) and each
page is filled before the next one starts, so only the last page can be
short.  Page rows already on file keep their ids; pages beyond the new
count are deleted.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from dataclasses import dataclass, field

from encore.engine.state import AttendanceEntry, MemberRecord


def chunk(entries: list[AttendanceEntry], capacity: int) -> list[list[AttendanceEntry]]:
    if capacity < 1:
        raise ValueError("capacity must be at least 1")
    return [entries[i:i + capacity] for i in range(0, len(entries), capacity)]


@dataclass(slots=True)
class BucketPage:
    id: str
    member_id: str
    page: int
    entries: list[AttendanceEntry]

    def events_json(self) -> list[dict]:
        return [entry.to_dict() for entry in self.entries]


@dataclass(slots=True)
class BucketPlan:
    upserts: list[BucketPage] = field(default_factory=list)
    deletes: list[str] = field(default_factory=list)


def plan_buckets(
    member: MemberRecord,
    capacity: int,
    new_id: Callable[[], str] = lambda: str(uuid.uuid4()),
) -> BucketPlan:
    """Plan the bucket rows for *member*'s current attendance list."""
    plan = BucketPlan()
    pages = chunk(member.attendance, capacity)
    for index, entries in enumerate(pages):
        bucket_id = member.bucket_ids.get(index) or new_id()
        plan.upserts.append(
            BucketPage(id=bucket_id, member_id=member.id, page=index, entries=entries)
        )
    plan.deletes = [
        bucket_id for page, bucket_id in sorted(member.bucket_ids.items())
        if page >= len(pages)
    ]
    return plan
