"""
encore.api.main — FastAPI application entry point
==================================================

Run with::

    uvicorn encore.api.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

load_dotenv()

from encore.api.deps import get_engine  # noqa: E402
from encore.api.routes.tenants import router as tenants_router  # noqa: E402
from encore.errors import ClientError, TenantStuckError  # noqa: E402

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle — warm the DB engine."""
    engine = get_engine()
    logger.info("Encore API started — engine ready (%s)", engine.url.database)
    yield
    logger.info("Encore API shutting down")


app = FastAPI(
    title="Encore Sync API",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(tenants_router, prefix="/api")


@app.exception_handler(ClientError)
async def client_error_handler(request: Request, exc: ClientError):
    return JSONResponse(status_code=exc.status_code, content={"detail": str(exc)})


@app.exception_handler(TenantStuckError)
async def stuck_tenant_handler(request: Request, exc: TenantStuckError):
    logger.critical("Request %s left tenant %s locked", request.url.path, exc.tenant_id)
    return JSONResponse(status_code=503, content={"detail": str(exc)})


@app.get("/api/health")
def health():
    return {"status": "ok"}
