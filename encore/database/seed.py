"""
encore.database.seed — Tenant Bootstrap Rows
=============================================

A tenant is never on its own: every sync expects a dashboard row and a
quota row next to it.  :func:`seed_tenant` creates all three in the
caller's session so they land in one transaction.
"""

from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from encore.constants import (
    BASE_MEMBER_PROPERTY_TYPES,
    BASE_POINT_TYPES,
    DEFAULT_FIELD_MATCHERS,
    INVITED_LIMITS,
    UNINVITED_LIMITS,
)
from encore.database.models import Dashboard, QuotaRecord, Tenant

logger = logging.getLogger(__name__)


def plan_limits(has_invite_code: bool) -> dict[str, int]:
    return dict(INVITED_LIMITS if has_invite_code else UNINVITED_LIMITS)


def new_quota_record(tenant_id: str, has_invite_code: bool) -> QuotaRecord:
    return QuotaRecord(
        tenant_id=tenant_id,
        has_invite_code=has_invite_code,
        **plan_limits(has_invite_code),
    )


def seed_tenant(
    session: Session,
    name: str,
    has_invite_code: bool = False,
    member_property_types: dict[str, str] | None = None,
    point_types: dict[str, dict] | None = None,
) -> Tenant:
    """Create a tenant plus its empty dashboard and plan-sized quota."""
    properties = dict(BASE_MEMBER_PROPERTY_TYPES)
    properties.update(member_property_types or {})
    points = {label: dict(bounds) for label, bounds in BASE_POINT_TYPES.items()}
    points.update(point_types or {})

    tenant = Tenant(
        name=name,
        member_property_types=properties,
        point_types=points,
        field_matchers=[dict(matcher) for matcher in DEFAULT_FIELD_MATCHERS],
    )
    session.add(tenant)
    session.flush()

    session.add(Dashboard(tenant_id=tenant.id, stats={}))
    session.add(new_quota_record(tenant.id, has_invite_code))
    session.flush()
    logger.info("Seeded tenant %s (%s), invited=%s", tenant.name, tenant.id, has_invite_code)
    return tenant
