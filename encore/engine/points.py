"""
encore.engine.points — Point accrual from attendance
=====================================================
"""

from __future__ import annotations

from encore.engine.state import AttendanceEntry, MemberRecord, PointRange


def accrue_points(
    attendance: list[AttendanceEntry], point_types: dict[str, PointRange]
) -> dict[str, int]:
    """Total each point type over the entries whose start date is in range.

    Ranges are inclusive at both ends.  Every point type gets a key, even
    when the member has no qualifying attendance.
    """
    totals = {name: 0 for name in point_types}
    for entry in attendance:
        for name, window in point_types.items():
            if window.contains(entry.start_date):
                totals[name] += entry.value
    return totals


def apply_points(members: list[MemberRecord], point_types: dict[str, PointRange]) -> None:
    for member in members:
        member.points = accrue_points(member.attendance, point_types)
