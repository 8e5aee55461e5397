"""
encore.services.sync_service — Sync Coordinator
================================================

Runs one tenant's sync attempt end to end:

    acquire lock → load snapshot → event discovery → audience discovery
    → commit → report refresh → release lock

Lock acquisition fails fast with a client error.  Past that point,
provider failures are pruned inside the phases, and invariant or commit
failures end the attempt; both are logged and reported in the returned
:class:`SyncResult` instead of raised.  The lock release always runs and
is retried; if it never succeeds the tenant is stuck and
:class:`~encore.errors.TenantStuckError` is raised.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime

from sqlalchemy import Engine
from sqlalchemy.exc import SQLAlchemyError

from encore.config import EncoreConfig
from encore.database.engine import run_db
from encore.engine.quota import QuotaContext
from encore.engine.state import SyncState
from encore.errors import (
    EncoreError,
    QuotaExceededError,
    TenantNotFoundError,
    TenantStuckError,
)
from encore.providers.registry import ProviderSet
from encore.services import tenant_service
from encore.services.audience_service import AudienceDiscovery
from encore.services.discovery_service import EventDiscovery
from encore.services.persistence_service import PersistenceCommitter
from encore.services.quota_service import QuotaService
from encore.services.report_service import ReportPublisher, order_for_report

logger = logging.getLogger(__name__)

MANUAL_SYNC_CHARGE = {"manual_syncs_left": -1}


@dataclass
class SyncResult:
    tenant_id: str
    status: str = "running"  # "completed" | "failed"
    events_upserted: int = 0
    events_deleted: int = 0
    members_upserted: int = 0
    members_deleted: int = 0
    buckets_upserted: int = 0
    buckets_deleted: int = 0
    quota_delta: dict[str, int] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)
    error: str | None = None
    report_reference: str | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @property
    def ok(self) -> bool:
        return self.status == "completed"

    def as_dict(self) -> dict:
        return {
            "tenant_id": self.tenant_id,
            "status": self.status,
            "events_upserted": self.events_upserted,
            "events_deleted": self.events_deleted,
            "members_upserted": self.members_upserted,
            "members_deleted": self.members_deleted,
            "buckets_upserted": self.buckets_upserted,
            "buckets_deleted": self.buckets_deleted,
            "quota_delta": dict(self.quota_delta),
            "warnings": list(self.warnings),
            "error": self.error,
            "report_reference": self.report_reference,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }


class SyncService:
    def __init__(
        self,
        engine: Engine,
        providers: ProviderSet,
        config: EncoreConfig | None = None,
        reporter: ReportPublisher | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.engine = engine
        self.providers = providers
        self.config = config or EncoreConfig()
        self.reporter = reporter
        self.clock = clock or (lambda: datetime.now(UTC))
        self.quota = QuotaService(engine)
        self.committer = PersistenceCommitter(engine, self.config.page_capacity)

    async def sync(self, tenant_id: str, skip_report_publish: bool = False) -> SyncResult:
        """Run one sync attempt for *tenant_id*.

        Raises
        ------
        TenantNotFoundError, SyncInProgressError
            The lock could not be taken; nothing else ran.
        TenantStuckError
            The attempt ran but the lock could not be released.
        """
        started = self.clock()
        await run_db(tenant_service.acquire_lock, self.engine, tenant_id, started)

        result = SyncResult(tenant_id=tenant_id, started_at=started)
        try:
            await self._run_phases(tenant_id, started, result, skip_report_publish)
        except (EncoreError, SQLAlchemyError) as exc:
            logger.exception("Sync for tenant %s failed", tenant_id)
            result.status = "failed"
            result.error = f"{type(exc).__name__}: {exc}"
        finally:
            await self._release_lock(tenant_id)

        result.finished_at = self.clock()
        logger.info(
            "Sync for tenant %s %s with %d warnings",
            tenant_id, result.status, len(result.warnings),
        )
        return result

    async def request_manual_sync(
        self, tenant_id: str, context: QuotaContext | None = None
    ) -> SyncResult:
        """User-initiated sync; costs one manual sync when it completes."""
        quota = await run_db(self.quota.get_quota, tenant_id)
        if quota is None:
            raise TenantNotFoundError(tenant_id)
        if not await run_db(self.quota.within_limits, tenant_id, MANUAL_SYNC_CHARGE, context):
            raise QuotaExceededError(tenant_id, MANUAL_SYNC_CHARGE)

        result = await self.sync(tenant_id)
        if result.ok and not await run_db(
            self.quota.increment, tenant_id, MANUAL_SYNC_CHARGE, context
        ):
            logger.warning("Manual sync for tenant %s completed but was not charged", tenant_id)
        return result

    # -----------------------------------------------------------------------
    # Phases
    # -----------------------------------------------------------------------
    async def _run_phases(
        self, tenant_id: str, timestamp: datetime, result: SyncResult, skip_report_publish: bool
    ) -> None:
        state = await run_db(tenant_service.load_state, self.engine, tenant_id, timestamp)
        result.warnings = state.warnings

        await EventDiscovery(self.providers.folders).discover(state)
        await AudienceDiscovery(self.providers).discover(state)

        summary = await run_db(self.committer.commit, state)
        result.events_upserted = summary.events_upserted
        result.events_deleted = summary.events_deleted
        result.members_upserted = summary.members_upserted
        result.members_deleted = summary.members_deleted
        result.buckets_upserted = summary.buckets_upserted
        result.buckets_deleted = summary.buckets_deleted
        result.quota_delta = summary.quota_delta

        if not skip_report_publish and self.reporter is not None:
            result.report_reference = await self._publish_report(state)
        result.status = "completed"

    async def _publish_report(self, state: SyncState) -> str | None:
        events, members = order_for_report(state)
        try:
            reference = await self.reporter.publish(state.tenant, events, members)
        except (EncoreError, OSError) as exc:
            state.warn("Report refresh failed: %s", exc)
            return state.tenant.report_reference

        if reference != state.tenant.report_reference:
            await run_db(tenant_service.save_report_reference, self.engine, state.tenant.id, reference)
        return reference

    async def _release_lock(self, tenant_id: str) -> None:
        attempts = self.config.unlock_attempts
        for attempt in range(1, attempts + 1):
            try:
                if await run_db(tenant_service.release_lock, self.engine, tenant_id):
                    return
                logger.warning(
                    "Unlock attempt %d/%d for tenant %s matched no row", attempt, attempts, tenant_id
                )
            except SQLAlchemyError:
                logger.warning(
                    "Unlock attempt %d/%d for tenant %s failed", attempt, attempts, tenant_id,
                    exc_info=True,
                )
            if attempt < attempts:
                await asyncio.sleep(self.config.unlock_delay_seconds)

        logger.critical("Tenant %s is stuck in the locked state; manual unlock required", tenant_id)
        raise TenantStuckError(tenant_id, attempts)
