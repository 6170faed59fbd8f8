"""
backend/app/main.py

Purpose:
    FastAPI application bootstrap, middleware/router wiring, scheduler
    lifecycle, error mapping and startup seeding.

Dependencies:
    - app.database
    - app.services.event_bus
    - app.workers.subscription_sweeper
"""

import logging
from contextlib import asynccontextmanager

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from bson.errors import InvalidId
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.errors import (
    ConnectionFailure,
    DuplicateKeyError,
    OperationFailure,
    ServerSelectionTimeoutError,
)

from app.config import settings
import app.database as _db
from app.database import connect_db, close_db
from app.middleware.logging import StructuredLoggingMiddleware, setup_logging
from app.services.errors import DomainError

logger = logging.getLogger("vipslips")
scheduler = AsyncIOScheduler()


def _register_jobs() -> int:
    from app.workers.subscription_sweeper import STATE_KEY, run_subscription_sweep

    if not settings.SUBSCRIPTION_SWEEP_ENABLED:
        logger.info("Subscription sweep disabled via config")
        return 0
    scheduler.add_job(
        run_subscription_sweep,
        "interval",
        id=STATE_KEY,
        minutes=settings.SUBSCRIPTION_SWEEP_INTERVAL_MINUTES,
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    return 1


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    await connect_db()
    from app.seed import seed_admin_user, seed_default_packages
    from app.services.event_bus import event_bus
    from app.services.event_handlers import register_event_handlers

    await seed_admin_user()
    await seed_default_packages()

    if settings.EVENT_BUS_ENABLED:
        register_event_handlers(event_bus)
        await event_bus.start()
        logger.info("Event bus enabled")
    else:
        logger.info("Event bus disabled via config")

    jobs = _register_jobs()
    scheduler.start()
    logger.info("Background scheduler started (%d job(s))", jobs)

    yield

    if settings.EVENT_BUS_ENABLED:
        await event_bus.stop()
    if scheduler.running:
        scheduler.shutdown(wait=False)
    await close_db()


app = FastAPI(
    title="VIP Slips",
    description="Subscription-gated betslip platform",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.BACKEND_CORS_ORIGINS.split(","),
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type"],
)

# Structured logging
app.add_middleware(StructuredLoggingMiddleware)

# Routers
from app.routers.admin import router as admin_router
from app.routers.admin_betslips import router as admin_betslips_router
from app.routers.admin_packages import router as admin_packages_router
from app.routers.admin_subscriptions import router as admin_subscriptions_router
from app.routers.subscriptions import router as subscriptions_router

app.include_router(admin_router)
app.include_router(admin_subscriptions_router)
app.include_router(admin_betslips_router)
app.include_router(admin_packages_router)
app.include_router(subscriptions_router)


@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError):
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", exc.code, request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.exception_handler(InvalidId)
async def invalid_object_id_handler(request: Request, exc: InvalidId):
    return JSONResponse(status_code=400, content={"detail": "Invalid ID."})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Return clean validation errors without leaking internal field paths."""
    errors = []
    for err in exc.errors():
        loc = err.get("loc", ())
        # Strip the "body" / "query" prefix for cleaner messages
        field = ".".join(str(l) for l in loc[1:]) if len(loc) > 1 else str(loc[-1]) if loc else "unknown"
        errors.append({"field": field, "message": err.get("msg", "Invalid value.")})
    return JSONResponse(status_code=422, content={"detail": "Validation error.", "errors": errors})


@app.exception_handler(DuplicateKeyError)
async def duplicate_key_handler(request: Request, exc: DuplicateKeyError):
    return JSONResponse(status_code=409, content={"detail": "Duplicate entry."})


@app.exception_handler(ServerSelectionTimeoutError)
async def db_timeout_handler(request: Request, exc: ServerSelectionTimeoutError):
    logger.error("Database timeout: %s %s", request.method, request.url.path)
    return JSONResponse(status_code=503, content={"detail": "Service temporarily unavailable."})


@app.exception_handler(ConnectionFailure)
async def db_connection_handler(request: Request, exc: ConnectionFailure):
    logger.error("Database connection failure: %s %s", request.method, request.url.path)
    return JSONResponse(status_code=503, content={"detail": "Service temporarily unavailable."})


@app.exception_handler(OperationFailure)
async def db_operation_handler(request: Request, exc: OperationFailure):
    logger.error("Database operation error on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=500, content={"detail": "An internal error occurred."})


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    logger.warning("ValueError on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=400, content={"detail": "Invalid input."})


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    """Catch-all: log the real error, return a safe generic message."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "An internal error occurred."})


@app.get("/health")
async def health():
    """Health check: verifies the DB connection and background services."""
    from app.services.event_bus import event_bus

    try:
        result = await _db.db.command("ping")
        db_ok = result.get("ok") == 1.0
    except Exception:
        db_ok = False

    bus = event_bus.stats()
    return {
        "status": "healthy" if db_ok else "degraded",
        "db": "connected" if db_ok else "disconnected",
        "scheduler": "running" if scheduler.running else "stopped",
        "event_bus": {"enabled": bus["enabled"], "running": bus["running"]},
    }
