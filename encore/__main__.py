"""
encore.__main__ — Command line entry point
===========================================

Wiring:
1. Load .env (DATABASE_URL, tokens).
2. Load config.yaml (tuning, provider roots).
3. Create the SQLAlchemy engine.
4. Run the requested command.

Run with::

    python -m encore init-db
    python -m encore create-tenant "City Orchestra" --invited
    python -m encore sync <tenant-id>
    python -m encore sync-all            # cron
    python -m encore unlock-stale        # cron
    python -m encore refresh-quotas      # cron
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from datetime import timedelta

from dotenv import load_dotenv

from encore.config import EncoreConfig, load_config
from encore.database.engine import create_db_engine, init_db
from encore.errors import ClientError, TenantStuckError
from encore.providers.registry import build_providers
from encore.services import maintenance_service, tenant_service
from encore.services.report_service import CsvReportPublisher
from encore.services.sync_service import SyncService

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("encore")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="encore", description="Encore sync engine")
    parser.add_argument("--config", default="config.yaml", help="Path to config.yaml")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create all tables")

    create = sub.add_parser("create-tenant", help="Create a tenant with default schema")
    create.add_argument("name")
    create.add_argument("--invited", action="store_true", help="Use the invited quota plan")

    sync = sub.add_parser("sync", help="Synchronize one tenant")
    sync.add_argument("tenant_id")
    sync.add_argument("--skip-report", action="store_true")

    sub.add_parser("sync-all", help="Synchronize every unlocked tenant")
    sub.add_parser("unlock-stale", help="Clear locks older than max_sync_duration_minutes")
    sub.add_parser("refresh-quotas", help="Reset per-period operation counters")
    return parser


def _sync_service(engine, cfg: EncoreConfig) -> SyncService:
    reporter = CsvReportPublisher(cfg.report_directory) if cfg.report_directory else None
    return SyncService(engine, build_providers(cfg), config=cfg, reporter=reporter)


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)

    load_dotenv()
    try:
        cfg = load_config(args.config)
    except FileNotFoundError:
        logger.warning("No %s found; using defaults", args.config)
        cfg = EncoreConfig()
    engine = create_db_engine()

    if args.command == "init-db":
        init_db(engine)
        output = {"status": "ok"}
    elif args.command == "create-tenant":
        output = {"tenant_id": tenant_service.create_tenant(engine, args.name, args.invited)}
    elif args.command == "sync":
        try:
            result = asyncio.run(
                _sync_service(engine, cfg).sync(args.tenant_id, skip_report_publish=args.skip_report)
            )
        except ClientError as exc:
            logger.error("%s", exc)
            return 2
        except TenantStuckError as exc:
            logger.critical("%s", exc)
            return 3
        output = result.as_dict()
    elif args.command == "sync-all":
        output = asyncio.run(
            maintenance_service.sync_all_tenants(engine, _sync_service(engine, cfg))
        )
    elif args.command == "unlock-stale":
        output = maintenance_service.unlock_stale_tenants(
            engine, timedelta(minutes=cfg.max_sync_duration_minutes)
        )
    else:
        output = maintenance_service.refresh_quotas(engine)

    print(json.dumps(output, indent=2, default=str))
    return 0


if __name__ == "__main__":
    sys.exit(main())
