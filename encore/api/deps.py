"""
encore.api.deps — FastAPI dependency injection
===============================================
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Annotated

from fastapi import Depends
from sqlalchemy import Engine

from encore.config import EncoreConfig, load_config
from encore.database.engine import create_db_engine
from encore.providers.registry import ProviderSet, build_providers
from encore.services.quota_service import QuotaService
from encore.services.report_service import CsvReportPublisher
from encore.services.sync_service import SyncService


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return create_db_engine()


@lru_cache(maxsize=1)
def get_config() -> EncoreConfig:
    if not Path("config.yaml").exists():
        return EncoreConfig()
    return load_config()


@lru_cache(maxsize=1)
def get_providers() -> ProviderSet:
    return build_providers(get_config())


def get_quota_service(engine: Annotated[Engine, Depends(get_engine)]) -> QuotaService:
    return QuotaService(engine)


def get_sync_service(
    engine: Annotated[Engine, Depends(get_engine)],
    providers: Annotated[ProviderSet, Depends(get_providers)],
    cfg: Annotated[EncoreConfig, Depends(get_config)],
) -> SyncService:
    reporter = CsvReportPublisher(cfg.report_directory) if cfg.report_directory else None
    return SyncService(engine, providers, config=cfg, reporter=reporter)
