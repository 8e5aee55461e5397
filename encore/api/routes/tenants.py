"""
encore.api.routes.tenants — Tenant sync & read endpoints
=========================================================

Authentication is handled upstream; these routes assume the caller may
act on the tenant in the path.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import Engine

from encore.api.deps import get_engine, get_quota_service, get_sync_service
from encore.database.engine import run_db
from encore.services import tenant_service
from encore.services.quota_service import QuotaService
from encore.services.sync_service import SyncService

router = APIRouter(prefix="/tenants", tags=["tenants"])


class SyncResponse(BaseModel):
    tenant_id: str
    status: str
    events_upserted: int
    events_deleted: int
    members_upserted: int
    members_deleted: int
    warnings: list[str]
    error: str | None = None


class QuotaResponse(BaseModel):
    read_operations_left: int
    modify_operations_left: int
    manual_syncs_left: int
    source_folders_left: int
    events_left: int
    members_left: int


# ---------------------------------------------------------------------------
# POST /tenants/{tenant_id}/sync
# ---------------------------------------------------------------------------
@router.post("/{tenant_id}/sync", response_model=SyncResponse)
async def trigger_sync(
    tenant_id: str,
    sync_service: Annotated[SyncService, Depends(get_sync_service)],
):
    """Run a manual sync and report its outcome (no phase detail)."""
    result = await sync_service.request_manual_sync(tenant_id)
    return SyncResponse(
        tenant_id=result.tenant_id,
        status=result.status,
        events_upserted=result.events_upserted,
        events_deleted=result.events_deleted,
        members_upserted=result.members_upserted,
        members_deleted=result.members_deleted,
        warnings=result.warnings,
        error=result.error,
    )


# ---------------------------------------------------------------------------
# Reads (each costs one read operation)
# ---------------------------------------------------------------------------
@router.get("/{tenant_id}/dashboard")
async def read_dashboard(
    tenant_id: str,
    engine: Annotated[Engine, Depends(get_engine)],
    quota: Annotated[QuotaService, Depends(get_quota_service)],
):
    return await run_db(tenant_service.get_dashboard, engine, tenant_id, quota)


@router.get("/{tenant_id}/quota", response_model=QuotaResponse)
async def read_quota(
    tenant_id: str,
    engine: Annotated[Engine, Depends(get_engine)],
    quota: Annotated[QuotaService, Depends(get_quota_service)],
):
    return await run_db(tenant_service.get_quota_view, engine, tenant_id, quota)


@router.get("/{tenant_id}/overview")
async def read_overview(
    tenant_id: str,
    engine: Annotated[Engine, Depends(get_engine)],
    quota: Annotated[QuotaService, Depends(get_quota_service)],
):
    return await run_db(tenant_service.get_overview, engine, tenant_id, quota)
