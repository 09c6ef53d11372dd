"""
ApiAlly - Backend API
=====================
FastAPI application behind the ApiAlly dashboard.

ARCHITECTURE:
    Devices push JSON telemetry with a per-source API key. The dashboard
    (a browser app) reads it back, edits schemas, charts usage and manages
    backups. Everything lives in one JSON database under DATA_DIR.

    [Devices] --X-API-Key--> [/api/v1/data-receiver] ---> [JSON store + raw files]
                                                                 |
    [Dashboard] --Bearer DASHBOARD_API_KEY--> [/api/...] --------+
                                                                 |
                                            [Scheduler] ---------+---> [Dropbox]
                                                                 +---> [SMTP relay]

SCHEDULED JOBS:
    1. Daily Dropbox backup at BACKUP_HOUR_UTC:00 UTC
    2. Scheduled-export sweep every EXPORT_CHECK_INTERVAL seconds
    3. Rate limiter cleanup every hour

HOW TO RUN:
    # Install dependencies
    pip install -e .

    # Put your settings in a .env file (see Config below)

    # Run the server
    cd backend
    uvicorn apially.main:app --reload --port 8000

API DOCUMENTATION:
    After starting the server, visit:
    - Swagger UI: http://localhost:8000/docs
    - ReDoc: http://localhost:8000/redoc
    - OpenAPI JSON: http://localhost:8000/openapi.json

Author: ApiAlly Team
"""

import logging
import os
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path

from apscheduler.triggers.interval import IntervalTrigger
from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from apially.routers import (
    analytics_router,
    backup_logs_router,
    data_router,
    dropbox_router,
    email_router,
    exports_router,
    ingest_router,
    logs_router,
    oauth_callback_router,
    schema_router,
    sources_router,
    set_services,
)
from apially.routers.dependencies import client_ip, current_services
from apially.services import build_services


# Load environment variables from .env file
load_dotenv()

logging.basicConfig(level=logging.INFO, format="[%(asctime)s] %(message)s")
logger = logging.getLogger(__name__)

VERSION = "1.0.0"


# =============================================================================
# CONFIGURATION
# =============================================================================

class Config:
    """
    Application configuration loaded from environment variables.

    Environment Variables:
        DATA_DIR: Where the JSON database and raw payloads live (default: ./data)
        DASHBOARD_API_KEY: Bearer token for dashboard endpoints (empty = open)
        FRONTEND_URL: URL of the dashboard, for CORS and OAuth redirects
        BACKUP_HOUR_UTC: Hour of the daily Dropbox backup (default: 2)
        EXPORT_CHECK_INTERVAL: Seconds between scheduled-export sweeps (default: 300)
        RATE_LIMIT_MAX_REQUESTS / RATE_LIMIT_WINDOW_SECONDS / RATE_LIMIT_BLOCK_SECONDS:
            Throttling for the SMTP and Dropbox test endpoints
        DROPBOX_APP_KEY / DROPBOX_APP_SECRET: Dropbox app for OAuth
        DROPBOX_REDIRECT_URI: OAuth redirect registered with the Dropbox app

    SMTP_* settings are read by the EmailService itself.
    """

    DATA_DIR = Path(os.getenv("DATA_DIR", "./data"))

    DASHBOARD_API_KEY = os.getenv("DASHBOARD_API_KEY", "")

    # Frontend URL for CORS
    FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:5173")

    BACKUP_HOUR_UTC = int(os.getenv("BACKUP_HOUR_UTC", "2"))
    EXPORT_CHECK_INTERVAL = int(os.getenv("EXPORT_CHECK_INTERVAL", "300"))

    RATE_LIMIT_MAX_REQUESTS = int(os.getenv("RATE_LIMIT_MAX_REQUESTS", "5"))
    RATE_LIMIT_WINDOW_SECONDS = int(os.getenv("RATE_LIMIT_WINDOW_SECONDS", "3600"))
    RATE_LIMIT_BLOCK_SECONDS = int(os.getenv("RATE_LIMIT_BLOCK_SECONDS", "3600"))

    DROPBOX_APP_KEY = os.getenv("DROPBOX_APP_KEY", "")
    DROPBOX_APP_SECRET = os.getenv("DROPBOX_APP_SECRET", "")
    DROPBOX_REDIRECT_URI = os.getenv(
        "DROPBOX_REDIRECT_URI",
        "http://localhost:8000/api/dropbox/oauth/callback"
    )

    # Allowed CORS origins
    CORS_ORIGINS = [
        FRONTEND_URL,
        "http://localhost:5173",    # Vite dev server
        "http://localhost:3000",
        "http://127.0.0.1:5173",
        "http://127.0.0.1:3000",
    ]


# =============================================================================
# APPLICATION LIFESPAN
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    STARTUP:
        1. Build every service on top of the JSON store
        2. Inject them into the routers
        3. Start the scheduler (backups, exports, rate limiter cleanup)

    SHUTDOWN:
        1. Stop the scheduler
        2. Close HTTP clients
    """
    # ========== STARTUP ==========
    print("=" * 60)
    print("🚀 APIALLY - Starting Backend")
    print("=" * 60)

    services = build_services(
        data_dir=Config.DATA_DIR,
        dashboard_api_key=Config.DASHBOARD_API_KEY,
        frontend_url=Config.FRONTEND_URL,
        backup_hour=Config.BACKUP_HOUR_UTC,
        export_check_interval=Config.EXPORT_CHECK_INTERVAL,
        rate_limit_max_requests=Config.RATE_LIMIT_MAX_REQUESTS,
        rate_limit_window_seconds=Config.RATE_LIMIT_WINDOW_SECONDS,
        rate_limit_block_seconds=Config.RATE_LIMIT_BLOCK_SECONDS,
        dropbox_app_key=Config.DROPBOX_APP_KEY,
        dropbox_app_secret=Config.DROPBOX_APP_SECRET,
        dropbox_redirect_uri=Config.DROPBOX_REDIRECT_URI,
    )

    # Inject into routers
    set_services(services)

    services.backups.start()
    services.backups.scheduler.add_job(
        services.rate_limiter.cleanup,
        trigger=IntervalTrigger(hours=1),
        id="rate_limiter_cleanup",
        replace_existing=True,
    )

    # Print configuration
    print(f"✅ Services initialized")
    print(f"   Data directory: {Config.DATA_DIR.resolve()}")
    print(f"   Sources: {len(services.sources.list_sources())}, entries: {services.data.count()}")
    print(f"   Daily backup: {Config.BACKUP_HOUR_UTC:02d}:00 UTC")
    print(f"   Export check interval: {Config.EXPORT_CHECK_INTERVAL} seconds")
    print(f"   Dashboard auth: {'on' if Config.DASHBOARD_API_KEY else 'OFF (set DASHBOARD_API_KEY)'}")
    print(f"   Email: {'configured' if services.email.is_configured else 'not configured'}")
    print(f"   CORS origins: {len(Config.CORS_ORIGINS)} configured")
    print()
    print("📖 API Documentation: http://localhost:8000/docs")
    print("=" * 60)

    yield  # Application runs here

    # ========== SHUTDOWN ==========
    print()
    print("🛑 Shutting down...")
    await services.backups.shutdown()
    set_services(None)
    print("✅ Shutdown complete")


# =============================================================================
# CREATE FASTAPI APPLICATION
# =============================================================================

app = FastAPI(
    title="ApiAlly API",
    description="""
## Overview

Backend API for the ApiAlly dashboard: collect JSON telemetry from your
devices, browse it, chart it, and back it up to Dropbox.

## How It Works

1. **Add a source** - Every device gets its own API key
2. **Send data** - `POST /api/v1/data-receiver` with `X-API-Key: <key>`
3. **Explore** - Browse, filter, download and chart the data
4. **Back up** - Daily CSV backups to Dropbox, scheduled exports by email

## Authentication

- The data receiver uses the source's API key (`X-API-Key` or `Authorization: Bearer <key>`)
- Dashboard endpoints require `Authorization: Bearer <DASHBOARD_API_KEY>` when that variable is set
    """,
    version=VERSION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)


# =============================================================================
# CORS MIDDLEWARE
# =============================================================================

app.add_middleware(
    CORSMiddleware,
    allow_origins=Config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# REQUEST LOGGING
# =============================================================================

@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Record every request in the in-memory API log."""
    started = time.perf_counter()
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        return response
    finally:
        # Requests that arrive before startup have nowhere to go
        services = current_services()
        if services is not None:
            services.request_log.record(
                method=request.method,
                endpoint=request.url.path,
                status_code=status_code,
                response_time_ms=(time.perf_counter() - started) * 1000,
                ip=client_ip(request),
                user_agent=request.headers.get("user-agent", ""),
            )


# =============================================================================
# ERROR HANDLING
# =============================================================================

@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {type(exc).__name__}: {exc}", exc_info=exc)
    return JSONResponse(status_code=500, content={"error": "An internal server error occurred"})


# =============================================================================
# INCLUDE ROUTERS
# =============================================================================

# Device-facing
app.include_router(ingest_router)

# Dashboard
app.include_router(data_router)
app.include_router(sources_router)
app.include_router(schema_router)
app.include_router(analytics_router)
app.include_router(dropbox_router)
app.include_router(oauth_callback_router)
app.include_router(backup_logs_router)
app.include_router(exports_router)
app.include_router(email_router)
app.include_router(logs_router)


# =============================================================================
# ROOT ENDPOINTS
# =============================================================================

@app.get(
    "/",
    summary="API Information",
    description="Get basic API information and available endpoints."
)
async def root():
    return {
        "name": "ApiAlly API",
        "version": VERSION,
        "documentation": {
            "swagger": "/docs",
            "redoc": "/redoc",
            "openapi": "/openapi.json"
        },
        "endpoints": {
            "data_receiver": "POST /api/v1/data-receiver",
            "device_schema": "PUT /api/v1/schema",
            "data": {
                "list": "GET /api/data",
                "flat": "GET /api/data/flat",
                "export": "GET /api/data/export?format=csv|json&flat=false",
                "get": "GET /api/data/{id}",
                "delete": "DELETE /api/data/{id}",
                "clear": "DELETE /api/data"
            },
            "sources": {
                "list": "GET /api/sources",
                "add": "POST /api/sources",
                "stats": "GET /api/sources/stats",
                "regenerate_key": "POST /api/sources/{id}/regenerate-key",
                "schema": "GET|PUT /api/sources/{id}/schema",
                "increment_counter": "POST /api/sources/{id}/increment-counter"
            },
            "schema": {
                "get": "GET /api/schema",
                "save": "POST /api/schema",
                "validate": "PUT /api/schema/validate",
                "infer": "POST /api/schema/infer"
            },
            "analytics": {
                "usage_by_day": "GET /api/analytics/usage-by-day",
                "usage_by_source": "GET /api/analytics/usage-by-source",
                "historical": "GET /api/analytics/historical",
                "metrics": "GET /api/analytics/metrics",
                "readings": "GET /api/analytics/readings"
            },
            "dropbox": {
                "configs": "GET|POST /api/dropbox/configs",
                "test_connection": "POST /api/dropbox/test-connection",
                "backup": "POST /api/dropbox/backup",
                "scheduled_backup": "POST /api/dropbox/backup/scheduled",
                "oauth_authorize_url": "GET /api/dropbox/oauth/authorize-url",
                "oauth_exchange": "POST /api/dropbox/oauth/exchange"
            },
            "backup_logs": "GET /api/backup-logs",
            "exports": {
                "list": "GET /api/exports",
                "add": "POST /api/exports",
                "process": "POST /api/exports/process",
                "run": "POST /api/exports/{id}/run"
            },
            "email": {
                "test": "POST /api/email/test",
                "export": "POST /api/email/export"
            },
            "logs": "GET /api/logs",
            "status": "GET /api/status"
        }
    }


@app.get(
    "/health",
    summary="Health Check",
    description="Check if the backend is running."
)
async def health():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "backup_hour_utc": Config.BACKUP_HOUR_UTC,
        "export_check_interval": Config.EXPORT_CHECK_INTERVAL,
    }


@app.get("/api/status", summary="API Status")
async def status():
    return {
        "status": "ok",
        "version": VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
