# main.py
import os
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from app.routers import (
    auth_router,
    activity_router,
    quotation_router,
    approval_router,
    revision_router,
)

from app.core.config import APP_ENV, ENABLE_SCHEDULER
from app.core.db import init_models
from app.core.scheduler import scheduler
from app.core.exceptions import AppException
from app.core.logging import setup_logging
from app.middleware.request_logging import request_logging_middleware
from app.services.notifications.dispatcher import get_dispatcher
from app.services.workflow.transition_table import DEFAULT_WORKFLOW
from app.core.error_handlers import (
    app_exception_handler,
    validation_exception_handler,
    pydantic_validation_handler,
    http_exception_handler,
    stale_data_handler,
    integrity_error_handler,
    unhandled_exception_handler,
)

# ------------------------------------------------------------------------------
# ENV CONFIG
# ------------------------------------------------------------------------------
APP_NAME = "Quotation Workflow API"
APP_VERSION = os.getenv("APP_VERSION", "1.0.0")
ALLOWED_ORIGINS = os.getenv("CORS_ORIGINS", "").split(",")

# ------------------------------------------------------------------------------
# LOGGING
# ------------------------------------------------------------------------------
setup_logging()
logger = logging.getLogger(__name__)


def scheduler_wanted() -> bool:
    # production runs several workers; only the one with ENABLE_SCHEDULER sweeps
    return APP_ENV != "production" or ENABLE_SCHEDULER


# ------------------------------------------------------------------------------
# LIFESPAN
# ------------------------------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("🚀 Starting %s (%s)", APP_NAME, APP_ENV)

    if APP_ENV == "development":
        await init_models()
        logger.info("📦 Database tables created (development)")

    if scheduler_wanted():
        scheduler.start()
        logger.info(
            "🕒 Scheduler started with jobs: %s",
            ", ".join(job.id for job in scheduler.get_jobs()),
        )
    else:
        logger.info("🕒 Scheduler disabled on this worker")

    yield

    logger.info("🛑 Shutting down application")
    if scheduler.running:
        scheduler.shutdown(wait=False)
    # let queued emails finish before the loop closes
    await get_dispatcher().drain()


# ------------------------------------------------------------------------------
# APP INIT
# ------------------------------------------------------------------------------
app = FastAPI(
    title=APP_NAME,
    description="Quotation lifecycle, approval chain and revision workflow",
    version=APP_VERSION,
    docs_url="/docs" if APP_ENV != "production" else None,
    redoc_url=None,
    lifespan=lifespan,
)

# ------------------------------------------------------------------------------
# EXCEPTION HANDLERS
# ------------------------------------------------------------------------------
app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(ValidationError, pydantic_validation_handler)
app.add_exception_handler(StarletteHTTPException, http_exception_handler)
app.add_exception_handler(StaleDataError, stale_data_handler)
app.add_exception_handler(IntegrityError, integrity_error_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

# ------------------------------------------------------------------------------
# MIDDLEWARE
# ------------------------------------------------------------------------------
app.middleware("http")(request_logging_middleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in ALLOWED_ORIGINS if o.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ------------------------------------------------------------------------------
# HEALTH CHECK
# ------------------------------------------------------------------------------
@app.get("/", tags=["Health"])
async def health_check():
    return {
        "status": "ok",
        "service": "quotation-workflow-api",
        "environment": APP_ENV,
        "version": APP_VERSION,
        "workflow_states": len(DEFAULT_WORKFLOW.rules),
        "scheduler_running": scheduler.running,
    }

# ------------------------------------------------------------------------------
# ROUTERS
# ------------------------------------------------------------------------------
app.include_router(auth_router)
app.include_router(activity_router)
app.include_router(quotation_router)
app.include_router(approval_router)
app.include_router(revision_router)
