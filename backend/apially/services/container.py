"""
Service Container
=================

Builds every service once and hands the bundle to the routers.

    store ──┬── SourcesService
            ├── SchemaService
            ├── DataService ──────── AnalyticsService
            ├── ExportService ─┐
            └── BackupManager ─┴── DropboxService, EmailService

Author: ApiAlly Team
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import httpx

from apially.services.analytics_service import AnalyticsService
from apially.services.backup_manager import BackupManager
from apially.services.data_service import DataService
from apially.services.dropbox_service import DropboxService
from apially.services.email_service import EmailService
from apially.services.export_service import ExportService
from apially.services.rate_limiter import RateLimiter
from apially.services.request_log import RequestLogService
from apially.services.schema_service import SchemaService
from apially.services.sources_service import SourcesService
from apially.services.store import JsonStore


DB_FILE_NAME = "apially_db.json"
PAYLOAD_DIR_NAME = "source-data"


@dataclass
class AppServices:
    store: JsonStore
    sources: SourcesService
    schema: SchemaService
    data: DataService
    analytics: AnalyticsService
    dropbox: DropboxService
    email: EmailService
    exports: ExportService
    backups: BackupManager
    rate_limiter: RateLimiter
    request_log: RequestLogService
    dashboard_api_key: str = ""
    frontend_url: str = "http://localhost:5173"


def build_services(
    data_dir: Path,
    dashboard_api_key: str = "",
    frontend_url: str = "http://localhost:5173",
    backup_hour: int = 2,
    export_check_interval: int = 300,
    rate_limit_max_requests: int = 5,
    rate_limit_window_seconds: int = 3600,
    rate_limit_block_seconds: int = 3600,
    dropbox_app_key: str = "",
    dropbox_app_secret: str = "",
    dropbox_redirect_uri: str = "",
    email_service: Optional[EmailService] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> AppServices:
    """
    Wire up the whole backend.

    Args:
        data_dir: Where the JSON database and raw payload files live
        email_service: Pre-built email service (tests pass one with fake settings)
        http_client: Client for Dropbox calls (tests pass one with a MockTransport)
        The rest mirror the environment variables read in main.Config.
    """
    data_dir = Path(data_dir)
    store = JsonStore(data_dir / DB_FILE_NAME)

    sources = SourcesService(store)
    schema = SchemaService(store)
    data = DataService(store, sources, schema, storage_dir=data_dir / PAYLOAD_DIR_NAME)
    analytics = AnalyticsService(data, sources)
    dropbox = DropboxService(http_client=http_client)
    email = email_service or EmailService()
    exports = ExportService(store, data, sources, email)
    backups = BackupManager(
        store=store,
        data_service=data,
        sources_service=sources,
        dropbox_service=dropbox,
        email_service=email,
        export_service=exports,
        backup_hour=backup_hour,
        export_check_interval=export_check_interval,
        default_app_key=dropbox_app_key,
        default_app_secret=dropbox_app_secret,
        redirect_uri=dropbox_redirect_uri,
    )

    return AppServices(
        store=store,
        sources=sources,
        schema=schema,
        data=data,
        analytics=analytics,
        dropbox=dropbox,
        email=email,
        exports=exports,
        backups=backups,
        rate_limiter=RateLimiter(
            max_requests=rate_limit_max_requests,
            window_seconds=rate_limit_window_seconds,
            block_seconds=rate_limit_block_seconds,
        ),
        request_log=RequestLogService(),
        dashboard_api_key=dashboard_api_key,
        frontend_url=frontend_url,
    )
