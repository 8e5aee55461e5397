"""
encore.services.quota_service — Quota Limiter
==============================================

Tenant-scoped counters stored in ``quotas``.  Every counter must stay
non-negative; the only write path is one conditional ``UPDATE`` that adds
a delta and matches nothing if any resulting counter would drop below
zero.

Checks and increments accept an optional
:class:`~encore.engine.quota.QuotaContext`.  While the tenant is inside
``context.ignore(tenant_id)``, checks pass and increments are no-ops, so
a composed operation can charge once and call its parts freely.

Sync discovery never calls in here directly: it accumulates a
:class:`~encore.engine.quota.PendingQuota` and the committer applies it
with :meth:`QuotaService.increment` inside the commit transaction.
"""

from __future__ import annotations

import logging

from sqlalchemy import Engine, select, update
from sqlalchemy.orm import Session

from encore.constants import (
    INVITED_LIMITS,
    QUOTA_FIELDS,
    REFRESHED_QUOTA_FIELDS,
    UNINVITED_LIMITS,
)
from encore.database.engine import get_session
from encore.database.models import QuotaRecord
from encore.engine.quota import QuotaContext
from encore.errors import QuotaExceededError

logger = logging.getLogger(__name__)


def _validate(delta: dict[str, int]) -> None:
    unknown = set(delta) - set(QUOTA_FIELDS)
    if unknown:
        raise KeyError(f"Unknown quota counters: {sorted(unknown)}")


class QuotaService:
    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    # -----------------------------------------------------------------------
    # Reads
    # -----------------------------------------------------------------------
    def get_quota(self, tenant_id: str) -> dict[str, int] | None:
        with get_session(self.engine) as session:
            record = session.get(QuotaRecord, tenant_id)
            return record.as_dict() if record else None

    def within_limits(
        self, tenant_id: str, delta: dict[str, int], context: QuotaContext | None = None
    ) -> bool:
        """True if applying *delta* would keep every counter ≥ 0."""
        _validate(delta)
        if context is not None and context.is_ignored(tenant_id):
            return True
        quota = self.get_quota(tenant_id)
        if quota is None:
            return False
        return all(quota[name] + amount >= 0 for name, amount in delta.items())

    # -----------------------------------------------------------------------
    # Writes
    # -----------------------------------------------------------------------
    def increment(
        self,
        tenant_id: str,
        delta: dict[str, int],
        context: QuotaContext | None = None,
        session: Session | None = None,
    ) -> bool:
        """Atomically add *delta* if every counter stays ≥ 0.

        Returns whether a matching quota record was updated.  With
        *session*, the update joins the caller's transaction.
        """
        _validate(delta)
        if context is not None and context.is_ignored(tenant_id):
            return True
        if session is None:
            with get_session(self.engine) as own_session:
                return self._apply(own_session, tenant_id, delta)
        return self._apply(session, tenant_id, delta)

    def _apply(self, session: Session, tenant_id: str, delta: dict[str, int]) -> bool:
        changes = {name: amount for name, amount in delta.items() if amount}
        if not changes:
            exists = session.scalar(
                select(QuotaRecord.tenant_id).where(QuotaRecord.tenant_id == tenant_id)
            )
            return exists is not None

        stmt = update(QuotaRecord).where(QuotaRecord.tenant_id == tenant_id)
        values = {}
        for name, amount in changes.items():
            column = getattr(QuotaRecord, name)
            stmt = stmt.where(column + amount >= 0)
            values[name] = column + amount
        result = session.execute(
            stmt.values(**values).execution_options(synchronize_session=False)
        )
        applied = result.rowcount == 1
        if not applied:
            logger.info("Quota update %s rejected for tenant %s", changes, tenant_id)
        return applied

    def charge(
        self, tenant_id: str, delta: dict[str, int], context: QuotaContext | None = None
    ) -> None:
        """Like :meth:`increment`, but raise when the quota can't cover *delta*."""
        if not self.increment(tenant_id, delta, context):
            raise QuotaExceededError(tenant_id, delta)

    # -----------------------------------------------------------------------
    # Periodic refresh
    # -----------------------------------------------------------------------
    def refresh_quotas(self) -> dict:
        """Reset operation counters to each plan's allowance.

        Capacity counters (events, members, source folders) are consumed
        and returned by syncs and are left alone.

        Returns ``{"invited": N, "uninvited": M}`` — rows refreshed per plan.
        """
        refreshed = {}
        with get_session(self.engine) as session:
            for label, invited, limits in (
                ("invited", True, INVITED_LIMITS),
                ("uninvited", False, UNINVITED_LIMITS),
            ):
                result = session.execute(
                    update(QuotaRecord)
                    .where(QuotaRecord.has_invite_code.is_(invited))
                    .values({name: limits[name] for name in REFRESHED_QUOTA_FIELDS})
                    .execution_options(synchronize_session=False)
                )
                refreshed[label] = result.rowcount
        logger.info("Quota refresh: %s", refreshed)
        return refreshed
