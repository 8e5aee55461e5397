"""
encore.services.maintenance_service — Scheduled jobs
=====================================================

Jobs meant to run from cron (see ``python -m encore``):

* :func:`sync_all_tenants` — sync every tenant that isn't already syncing.
* :func:`unlock_stale_tenants` — clear locks held longer than the maximum
  sync duration, recovering tenants whose process died mid-sync.
* :func:`refresh_quotas` — reset per-period operation counters.

Each returns a small summary dict for logging.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta

from sqlalchemy import Engine, or_, select, update

from encore.database.engine import get_session, run_db
from encore.database.models import Tenant
from encore.errors import ClientError, TenantStuckError
from encore.services.quota_service import QuotaService
from encore.services.sync_service import SyncService

logger = logging.getLogger(__name__)


def list_unlocked_tenants(engine: Engine) -> list[str]:
    with get_session(engine) as session:
        return list(session.scalars(
            select(Tenant.id).where(Tenant.sync_lock.is_(False)).order_by(Tenant.created_at)
        ))


async def sync_all_tenants(engine: Engine, sync_service: SyncService) -> dict:
    """Sync every unlocked tenant, one after another.

    Returns ``{"completed": N, "failed": N, "skipped": N, "stuck": N}``.
    """
    summary = {"completed": 0, "failed": 0, "skipped": 0, "stuck": 0}
    for tenant_id in await run_db(list_unlocked_tenants, engine):
        try:
            result = await sync_service.sync(tenant_id)
        except ClientError as exc:
            logger.info("Skipping tenant %s: %s", tenant_id, exc)
            summary["skipped"] += 1
            continue
        except TenantStuckError:
            summary["stuck"] += 1
            continue
        summary["completed" if result.ok else "failed"] += 1

    logger.info("Scheduled sync finished: %s", summary)
    return summary


def unlock_stale_tenants(
    engine: Engine, max_sync_duration: timedelta, now: datetime | None = None
) -> dict:
    """Clear sync locks older than *max_sync_duration*.

    Locks without a timestamp are treated as stale.

    Returns ``{"unlocked": N, "tenant_ids": [...]}``.
    """
    cutoff = (now or datetime.now(UTC)) - max_sync_duration
    with get_session(engine) as session:
        stale = list(session.scalars(
            select(Tenant.id).where(
                Tenant.sync_lock.is_(True),
                or_(Tenant.sync_locked_at.is_(None), Tenant.sync_locked_at < cutoff),
            )
        ))
        if stale:
            session.execute(
                update(Tenant)
                .where(Tenant.id.in_(stale))
                .values(sync_lock=False, sync_locked_at=None)
                .execution_options(synchronize_session=False)
            )

    for tenant_id in stale:
        logger.warning("Cleared stale sync lock on tenant %s", tenant_id)
    return {"unlocked": len(stale), "tenant_ids": stale}


def refresh_quotas(engine: Engine) -> dict:
    return QuotaService(engine).refresh_quotas()
