"""
encore.services.report_service — Report refresh
================================================

After a successful commit the coordinator hands the committed events and
members to a :class:`ReportPublisher`.  Events arrive sorted by ascending
start date and members by ascending ``"Total"`` points; publishers may
rely on that order.

:class:`CsvReportPublisher` writes two CSV files per tenant and returns
the directory as the report reference.
"""

from __future__ import annotations

import asyncio
import csv
import logging
import re
from abc import ABC, abstractmethod
from pathlib import Path

from encore.constants import TOTAL_POINT_TYPE
from encore.engine.properties import as_utc
from encore.engine.state import EventRecord, MemberRecord, SyncState, TenantSnapshot
from encore.errors import SyncInvariantError

logger = logging.getLogger(__name__)


def _total(member: MemberRecord) -> int:
    return member.points.get(TOTAL_POINT_TYPE, 0)


def order_for_report(state: SyncState) -> tuple[list[EventRecord], list[MemberRecord]]:
    events = sorted(state.live_events(), key=lambda e: as_utc(e.start_date))
    members = sorted(state.live_members(), key=_total)
    return events, members


class ReportPublisher(ABC):
    @abstractmethod
    async def publish(
        self, tenant: TenantSnapshot, events: list[EventRecord], members: list[MemberRecord]
    ) -> str:
        """Render the report; return a reference stored on the tenant."""

    @staticmethod
    def validate_order(events: list[EventRecord], members: list[MemberRecord]) -> None:
        dates = [as_utc(event.start_date) for event in events]
        if dates != sorted(dates):
            raise SyncInvariantError("Report events must be sorted by start date")
        totals = [_total(member) for member in members]
        if totals != sorted(totals):
            raise SyncInvariantError("Report members must be sorted by total points")


class CsvReportPublisher(ReportPublisher):
    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)

    async def publish(
        self, tenant: TenantSnapshot, events: list[EventRecord], members: list[MemberRecord]
    ) -> str:
        self.validate_order(events, members)
        return await asyncio.to_thread(self._write, tenant, events, members)

    def _write(
        self, tenant: TenantSnapshot, events: list[EventRecord], members: list[MemberRecord]
    ) -> str:
        self.directory.mkdir(parents=True, exist_ok=True)
        slug = re.sub(r"[^A-Za-z0-9_-]+", "-", tenant.name).strip("-") or tenant.id

        with open(self.directory / f"{slug}-events.csv", "w", encoding="utf-8", newline="") as fh:
            writer = csv.writer(fh)
            writer.writerow(["Event ID", "Title", "Start Date", "Type ID", "Value", "Source"])
            for event in events:
                writer.writerow([
                    event.id, event.title, as_utc(event.start_date).isoformat(),
                    event.event_type_id or "", event.value, event.source_id,
                ])

        properties = list(tenant.property_types)
        point_types = list(tenant.point_types)
        with open(self.directory / f"{slug}-members.csv", "w", encoding="utf-8", newline="") as fh:
            writer = csv.writer(fh)
            writer.writerow(properties + point_types + ["Events Attended"])
            for member in members:
                values = [
                    member.properties[name].value if name in member.properties else None
                    for name in properties
                ]
                points = [member.points.get(name, 0) for name in point_types]
                writer.writerow(
                    ["" if v is None else v for v in values] + points + [len(member.attendance)]
                )

        logger.info("Report for tenant %s written to %s", tenant.id, self.directory)
        return str(self.directory.resolve())
