"""
Services Package
================

These are the "workers" that do the actual work.

- JsonStore: The JSON file database
- SourcesService / SchemaService / DataService: Sources, schemas and telemetry
- AnalyticsService: Usage and historical charts
- DropboxService / EmailService: Talk to Dropbox and the SMTP relay
- ExportService: Scheduled exports
- BackupManager: The boss of backups and the job scheduler
- RateLimiter / RequestLogService: Request throttling and the API log
"""

from .store import JsonStore
from .sources_service import SourcesService
from .schema_service import SchemaService
from .data_service import DataService, PayloadValidationError, DuplicateEntryError
from .analytics_service import AnalyticsService
from .dropbox_service import DropboxService
from .email_service import EmailService
from .export_service import ExportService
from .backup_manager import BackupManager
from .rate_limiter import RateLimiter
from .request_log import RequestLogService
from .container import AppServices, build_services

__all__ = [
    "JsonStore",
    "SourcesService",
    "SchemaService",
    "DataService",
    "PayloadValidationError",
    "DuplicateEntryError",
    "AnalyticsService",
    "DropboxService",
    "EmailService",
    "ExportService",
    "BackupManager",
    "RateLimiter",
    "RequestLogService",
    "AppServices",
    "build_services",
]
