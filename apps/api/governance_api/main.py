"""Governance API - Main FastAPI application."""

import logging
import os
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from governance_api import __version__
from governance_api.db.session import SessionLocal
from governance_api.errors import GovernanceError, error_context
from governance_api.middleware.correlation import RequestIDMiddleware, get_request_id
from governance_api.routes import ledger, printing, reports
from governance_api.settings import get_settings

# Configure logging
logging.basicConfig(
    level=get_settings().log_level,
    format='{"time": "%(asctime)s", "level": "%(levelname)s", "message": "%(message)s", "module": "%(name)s"}',
    handlers=[logging.StreamHandler(sys.stdout)],
)
logger = logging.getLogger(__name__)

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    logger.info("Starting Governance API...")
    try:
        settings.validate_production_settings()
    except ValueError as e:
        logger.error(f"Configuration validation failed: {e}")
        raise
    yield
    logger.info("Shutting down Governance API...")


app = FastAPI(
    title="Governance API",
    description="Tamper-evident governance ledger and signed report runs",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
)
app.add_middleware(RequestIDMiddleware)

# Prometheus metrics
metrics_app = make_asgi_app()
app.mount("/metrics", metrics_app)

app.include_router(ledger.router)
app.include_router(reports.router)
app.include_router(printing.router)


@app.exception_handler(GovernanceError)
async def governance_error_handler(request: Request, exc: GovernanceError):
    """Render domain errors with their status, stable code and request id."""
    request_id = get_request_id(request)
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        f"{exc.code}: {exc.message}",
        extra={"request_id": request_id, "path": request.url.path, "code": exc.code},
    )
    return JSONResponse(status_code=exc.status_code, content=error_context(exc, request_id))


@app.get("/health")
async def health_check():
    """Health check endpoint (basic liveness)."""
    return {
        "status": "healthy",
        "service": "governance-api",
        "version": __version__,
    }


def _migrations_at_head(db) -> bool:
    from alembic.config import Config
    from alembic.runtime.migration import MigrationContext
    from alembic.script import ScriptDirectory

    alembic_cfg = Config(os.path.join(os.path.dirname(__file__), "..", "alembic.ini"))
    alembic_cfg.set_main_option("script_location", os.path.join(os.path.dirname(__file__), "..", "alembic"))
    head_rev = ScriptDirectory.from_config(alembic_cfg).get_current_head()
    current_rev = MigrationContext.configure(db.connection()).get_current_revision()
    if current_rev != head_rev:
        logger.warning(f"Migrations not at head: current={current_rev}, head={head_rev}")
        return False
    return True


@app.get("/ready")
async def readiness_check():
    """Readiness check endpoint (database reachable, migrations at head)."""
    checks = {"database": False, "migrations": False}

    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
        checks["database"] = True
        checks["migrations"] = _migrations_at_head(db)
    except SQLAlchemyError as e:
        logger.error(f"Database check failed: {e}")
    finally:
        db.close()

    all_ready = all(checks.values())
    return JSONResponse(
        content={"status": "ready" if all_ready else "not_ready", "checks": checks},
        status_code=200 if all_ready else 503,
    )


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "service": "Governance API",
        "version": __version__,
        "docs": "/docs",
        "health": "/health",
    }
