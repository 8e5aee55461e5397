"""
tests/test_sync_service.py — Sync Coordinator Integration Tests
================================================================
End-to-end sync attempts against SQLite with in-memory providers:
lock lifecycle, failure handling, manual-sync charging, repeated syncs,
report publishing and the scheduled sync-all job.
"""

from __future__ import annotations

import csv
import os
from unittest.mock import AsyncMock, patch

import pytest
from conftest import HEADER, NOW, make_providers, roster, run_async, sheet
from sqlalchemy.orm import Session

from encore.config import EncoreConfig
from encore.database.models import AttendanceBucket, Event, Member, QuotaRecord, Tenant
from encore.errors import (
    ProviderError,
    QuotaExceededError,
    SyncInProgressError,
    TenantNotFoundError,
    TenantStuckError,
)
from encore.providers.registry import build_providers
from encore.services import maintenance_service, tenant_service
from encore.services.report_service import CsvReportPublisher, ReportPublisher
from encore.services.sync_service import SyncService

ADA = ("A1", "Ada", "Lovelace", "ada@example.org", "")
BO = ("B2", "Bo", "Diddley", "bo@example.org", "")

FAST = EncoreConfig(unlock_attempts=2, unlock_delay_seconds=0)


@pytest.fixture
def providers():
    return make_providers(
        {"r": [sheet("r/jan.csv", "January", day=5), sheet("r/feb.csv", "February", day=9)]},
        {"r/jan.csv": roster(ADA, BO), "r/feb.csv": roster(BO)},
    )


@pytest.fixture
def configured_tenant(db_engine, tenant_id) -> str:
    tenant_service.add_event_type(db_engine, tenant_id, "Rehearsal", 5, ["r"])
    return tenant_id


def _service(engine, providers, **kwargs) -> SyncService:
    return SyncService(engine, providers, config=FAST, clock=lambda: NOW, **kwargs)


def _locked(engine, tenant_id) -> bool:
    with Session(engine) as session:
        return session.get(Tenant, tenant_id).sync_lock


class TestSync:
    def test_completed_sync_commits_and_unlocks(self, db_engine, providers, configured_tenant):
        result = run_async(_service(db_engine, providers).sync(configured_tenant))

        assert result.ok
        assert result.events_upserted == 2
        assert result.members_upserted == 2
        assert result.quota_delta == {"events_left": -2, "members_left": -2}
        assert result.started_at == NOW
        assert not _locked(db_engine, configured_tenant)

    def test_second_sync_is_idempotent(self, db_engine, providers, configured_tenant):
        service = _service(db_engine, providers)
        run_async(service.sync(configured_tenant))
        with Session(db_engine) as session:
            before = {m.member_key: (m.points, m.properties) for m in session.query(Member)}

        result = run_async(service.sync(configured_tenant))

        assert result.ok
        assert result.quota_delta == {}
        assert result.events_deleted == 0 and result.members_deleted == 0
        with Session(db_engine) as session:
            after = {m.member_key: (m.points, m.properties) for m in session.query(Member)}
            assert session.query(Event).count() == 2
            assert session.get(QuotaRecord, configured_tenant).events_left == 98
        assert after == before

    def test_origin_event_wins_on_next_sync(self, db_engine, configured_tenant):
        tree = {"r": [sheet("r/jan.csv", day=5), sheet("r/signup.csv", day=2)]}
        sheets = {
            "r/jan.csv": roster(("A1", "Ada", "Lovelace", "x@y.com", "")),
            "r/signup.csv": roster(("A1", "Ada", "Lovelace", "z@y.com", "")),
        }
        service = _service(db_engine, make_providers(tree, sheets))
        run_async(service.sync(configured_tenant))

        with Session(db_engine) as session:
            signup = session.query(Event).filter_by(source_id="r/signup.csv").one().id
        tenant_service.set_origin_event(db_engine, configured_tenant, signup)
        run_async(service.sync(configured_tenant))

        with Session(db_engine) as session:
            email = session.query(Member).filter_by(member_key="A1").one().properties["Email"]
        assert email == {"value": "z@y.com", "override": True}

    def test_already_locked_raises_without_running(self, db_engine, providers, configured_tenant):
        tenant_service.acquire_lock(db_engine, configured_tenant, NOW)
        with pytest.raises(SyncInProgressError):
            run_async(_service(db_engine, providers).sync(configured_tenant))
        assert providers.folders.calls == []
        # the other holder's lock is left alone
        assert _locked(db_engine, configured_tenant)

    def test_unknown_tenant(self, db_engine, providers):
        with pytest.raises(TenantNotFoundError):
            run_async(_service(db_engine, providers).sync("missing"))

    def test_invariant_failure_is_reported_and_unlocked(self, db_engine, providers, configured_tenant):
        with Session(db_engine) as session:
            session.delete(session.get(QuotaRecord, configured_tenant))
            session.commit()

        result = run_async(_service(db_engine, providers).sync(configured_tenant))

        assert result.status == "failed"
        assert "SyncInvariantError" in result.error
        assert not _locked(db_engine, configured_tenant)

    def test_provider_failures_do_not_fail_the_sync(self, db_engine, configured_tenant):
        providers = make_providers(
            {"r": [sheet("r/jan.csv"), sheet("r/feb.csv")]},
            {"r/jan.csv": roster(ADA), "r/feb.csv": roster(BO)},
            failing_sheets={"r/feb.csv"},
        )
        result = run_async(_service(db_engine, providers).sync(configured_tenant))

        assert result.ok
        assert result.events_upserted == 2  # pruned event is kept
        assert result.members_upserted == 1
        assert any("r/feb.csv" in w for w in result.warnings)

    def test_event_quota_scenario(self, db_engine, tenant_id):
        tenant_service.add_event_type(db_engine, tenant_id, "Gig", 5, ["a", "b"])
        with Session(db_engine) as session:
            session.get(QuotaRecord, tenant_id).events_left = 2
            session.commit()
        providers = make_providers(
            {
                "a": [sheet("a/1.csv"), sheet("a/2.csv"), sheet("a/3.csv")],
                "b": [sheet("b/4.csv"), sheet("b/5.csv")],
            },
            {f"{f}/{n}.csv": roster(ADA) for f, n in
             [("a", 1), ("a", 2), ("a", 3), ("b", 4), ("b", 5)]},
        )
        result = run_async(_service(db_engine, providers).sync(tenant_id))

        assert result.ok
        with Session(db_engine) as session:
            assert sorted(e.source_id for e in session.query(Event)) == ["a/1.csv", "a/2.csv"]
            assert session.get(QuotaRecord, tenant_id).events_left == 0
        assert len([w for w in result.warnings if "Event quota exhausted" in w]) == 3

    def test_folder_failure_scenario(self, db_engine, tenant_id):
        type_id = tenant_service.add_event_type(db_engine, tenant_id, "Gig", 5, ["ok", "down"])
        providers = make_providers(
            {"ok": [sheet("ok/1.csv")]}, {"ok/1.csv": roster(ADA)}, failing_folders={"down"},
        )
        result = run_async(_service(db_engine, providers).sync(tenant_id))

        assert result.ok
        assert result.events_upserted == 1
        state = tenant_service.load_state(db_engine, tenant_id, NOW)
        assert state.event_types[type_id].source_folders == ["ok"]
        assert not _locked(db_engine, tenant_id)

    def test_unlock_failure_marks_tenant_stuck(self, db_engine, providers, configured_tenant):
        with patch.object(tenant_service, "release_lock", return_value=False) as release:
            with pytest.raises(TenantStuckError):
                run_async(_service(db_engine, providers).sync(configured_tenant))
        assert release.call_count == FAST.unlock_attempts
        assert _locked(db_engine, configured_tenant)

    def test_unlock_retried_until_it_succeeds(self, db_engine, providers, configured_tenant):
        real_release = tenant_service.release_lock
        outcomes = iter([False])

        def flaky_release(engine, tenant_id):
            if next(outcomes, True):
                return real_release(engine, tenant_id)
            return False

        with patch.object(tenant_service, "release_lock", side_effect=flaky_release):
            result = run_async(_service(db_engine, providers).sync(configured_tenant))
        assert result.ok
        assert not _locked(db_engine, configured_tenant)


class TestManualSync:
    def test_charges_one_manual_sync(self, db_engine, providers, configured_tenant):
        result = run_async(_service(db_engine, providers).request_manual_sync(configured_tenant))
        assert result.ok
        with Session(db_engine) as session:
            assert session.get(QuotaRecord, configured_tenant).manual_syncs_left == 4

    def test_refused_when_exhausted(self, db_engine, providers, configured_tenant):
        with Session(db_engine) as session:
            session.get(QuotaRecord, configured_tenant).manual_syncs_left = 0
            session.commit()
        with pytest.raises(QuotaExceededError):
            run_async(_service(db_engine, providers).request_manual_sync(configured_tenant))
        assert providers.folders.calls == []

    def test_failed_sync_is_not_charged(self, db_engine, providers, configured_tenant):
        service = _service(db_engine, providers)
        with patch.object(
            tenant_service, "load_state", side_effect=ProviderError("store offline")
        ):
            result = run_async(service.request_manual_sync(configured_tenant))
        assert result.status == "failed"
        with Session(db_engine) as session:
            assert session.get(QuotaRecord, configured_tenant).manual_syncs_left == 5

    def test_unknown_tenant(self, db_engine, providers):
        with pytest.raises(TenantNotFoundError):
            run_async(_service(db_engine, providers).request_manual_sync("missing"))


class TestReport:
    def test_csv_report_written_in_order(self, db_engine, providers, configured_tenant, tmp_path):
        service = _service(db_engine, providers, reporter=CsvReportPublisher(tmp_path))
        result = run_async(service.sync(configured_tenant))

        assert result.report_reference == str(tmp_path.resolve())
        with open(tmp_path / "City-Orchestra-events.csv", newline="") as fh:
            rows = list(csv.reader(fh))
        assert [row[1] for row in rows[1:]] == ["January", "February"]

        with open(tmp_path / "City-Orchestra-members.csv", newline="") as fh:
            members = list(csv.DictReader(fh))
        # ascending total points: Ada (5) before Bo (10)
        assert [m["Member ID"] for m in members] == ["A1", "B2"]
        assert members[1]["Total"] == "10"

        with Session(db_engine) as session:
            assert session.get(Tenant, configured_tenant).report_reference == result.report_reference

    def test_skip_report(self, db_engine, providers, configured_tenant):
        reporter = AsyncMock(spec=ReportPublisher)
        service = _service(db_engine, providers, reporter=reporter)
        run_async(service.sync(configured_tenant, skip_report_publish=True))
        reporter.publish.assert_not_called()

    def test_report_failure_is_a_warning(self, db_engine, providers, configured_tenant):
        reporter = AsyncMock(spec=ReportPublisher)
        reporter.publish.side_effect = OSError("disk full")
        result = run_async(_service(db_engine, providers, reporter=reporter).sync(configured_tenant))

        assert result.ok
        assert any("disk full" in w for w in result.warnings)
        assert not _locked(db_engine, configured_tenant)


class TestSyncAll:
    def test_counts_outcomes(self, db_engine, providers, configured_tenant):
        busy = tenant_service.create_tenant(db_engine, "Busy")
        tenant_service.acquire_lock(db_engine, busy, NOW)
        tenant_service.create_tenant(db_engine, "Empty")

        summary = run_async(
            maintenance_service.sync_all_tenants(db_engine, _service(db_engine, providers))
        )
        assert summary == {"completed": 2, "failed": 0, "skipped": 0, "stuck": 0}
        assert _locked(db_engine, busy)


def _ada_state(engine) -> tuple[str, list[str]]:
    """Ada's stored Email and her bucketed event source ids, in page order."""
    with Session(engine) as session:
        ada = session.query(Member).filter_by(member_key="A1").one()
        sources = {e.id: e.source_id for e in session.query(Event)}
        buckets = (
            session.query(AttendanceBucket)
            .filter_by(member_id=ada.id)
            .order_by(AttendanceBucket.page)
        )
        attended = [sources[entry["event_id"]] for b in buckets for entry in b.events]
        return ada.properties["Email"]["value"], attended


class TestRepeatableSync:
    def test_result_does_not_depend_on_read_timing(self, db_engine, configured_tenant):
        tree = {"r": [sheet("r/jan.csv", day=5), sheet("r/feb.csv", day=9)]}
        sheets = {
            "r/jan.csv": roster(("A1", "Ada", "Lovelace", "first@example.org", "")),
            "r/feb.csv": roster(("A1", "Ada", "Lovelace", "second@example.org", "")),
        }
        slow_jan = make_providers(tree, sheets, delays={"r/jan.csv": 0.02})
        slow_feb = make_providers(tree, sheets, delays={"r/feb.csv": 0.02})

        assert run_async(_service(db_engine, slow_jan).sync(configured_tenant)).ok
        first = _ada_state(db_engine)
        assert run_async(_service(db_engine, slow_feb).sync(configured_tenant)).ok
        second = _ada_state(db_engine)

        assert first == ("first@example.org", ["r/jan.csv", "r/feb.csv"])
        assert second == first

    def test_unreadable_source_keeps_its_members(self, db_engine, configured_tenant):
        tree = {"r": [sheet("r/jan.csv", day=5)]}
        sheets = {"r/jan.csv": roster(ADA)}
        run_async(_service(db_engine, make_providers(tree, sheets)).sync(configured_tenant))
        with Session(db_engine) as session:
            member_id = session.query(Member).one().id

        flaky = make_providers(tree, sheets, failing_sheets={"r/jan.csv"})
        result = run_async(_service(db_engine, flaky).sync(configured_tenant))

        assert result.ok
        assert result.members_deleted == 0
        assert any("r/jan.csv" in w for w in result.warnings)
        with Session(db_engine) as session:
            ada = session.query(Member).one()
            assert ada.id == member_id
            assert ada.points["Total"] == 5
            assert session.query(AttendanceBucket).count() == 1
            assert session.get(QuotaRecord, configured_tenant).members_left == 199

        run_async(_service(db_engine, make_providers(tree, sheets)).sync(configured_tenant))
        with Session(db_engine) as session:
            assert session.query(Member).one().id == member_id

    def test_bad_stored_matcher_does_not_fail_the_sync(self, db_engine, configured_tenant):
        with Session(db_engine) as session:
            tenant = session.get(Tenant, configured_tenant)
            tenant.field_matchers = list(tenant.field_matchers) + [
                {"expression": "(", "property": "Email", "priority": 9}
            ]
            session.commit()
        providers = make_providers(
            {"r": [sheet("r/jan.csv")]},
            {"r/jan.csv": [HEADER + ["Notes"], list(ADA) + ["front row"]]},
        )
        result = run_async(_service(db_engine, providers).sync(configured_tenant))

        assert result.ok
        assert result.members_upserted == 1

    def test_broken_link_in_local_folder(self, db_engine, configured_tenant, tmp_path):
        (tmp_path / "r").mkdir()
        (tmp_path / "r" / "jan.csv").write_text(
            ",".join(HEADER) + "\n" + ",".join(ADA) + "\n", encoding="utf-8"
        )
        os.symlink(tmp_path / "missing.csv", tmp_path / "r" / "ghost.csv")
        providers = build_providers(EncoreConfig(data_root=str(tmp_path)))

        result = run_async(_service(db_engine, providers).sync(configured_tenant))

        assert result.ok
        assert result.events_upserted == 1
        assert result.members_upserted == 1
        assert not _locked(db_engine, configured_tenant)
