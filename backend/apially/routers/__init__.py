"""
Routers Package
===============

Routers are like the reception desk - they direct incoming requests
to the right place.
"""

from .dependencies import set_services, get_services
from .ingest import router as ingest_router
from .data import router as data_router
from .sources import router as sources_router
from .schema import router as schema_router
from .analytics import router as analytics_router
from .dropbox import (
    router as dropbox_router,
    oauth_callback_router,
    logs_router as backup_logs_router,
)
from .exports import router as exports_router
from .email import router as email_router
from .logs import router as logs_router

__all__ = [
    "set_services",
    "get_services",
    "ingest_router",
    "data_router",
    "sources_router",
    "schema_router",
    "analytics_router",
    "dropbox_router",
    "oauth_callback_router",
    "backup_logs_router",
    "exports_router",
    "email_router",
    "logs_router",
]
