"""
Models Package
==============

This is where all our data models live.
Import from here instead of the individual files.

Example:
    from apially.models import Source, DataEntry, DataSchema
"""

from .schema import (
    FieldType,
    DataSchema,
    SchemaResponse,
    ValidateDataRequest,
    ValidationResult,
    InferSchemaResponse,
)
from .source import (
    Source,
    CreateSourceRequest,
    UpdateSourceRequest,
    SourceStats,
    SourceListResponse,
    CounterResponse,
)
from .data import (
    DataEntry,
    DataListResponse,
    IngestReceipt,
    IngestResponse,
    ClearDataResponse,
)
from .backup import (
    # Enums
    ExportFormat,
    BackupType,
    BackupStatus,
    ExportFrequency,
    ExportDelivery,

    # Dropbox
    DropboxConfig,
    DropboxConfigResponse,
    CreateDropboxConfigRequest,
    UpdateDropboxConfigRequest,
    ConnectionTestRequest,
    BackupRequest,
    OAuthExchangeRequest,
    DropboxTokenResponse,
    BackupLog,

    # Scheduled exports
    ScheduledExport,
    CreateScheduledExportRequest,
    UpdateScheduledExportRequest,

    # Email
    SmtpTestRequest,
    ExportEmailConfig,
    ExportEmailRequest,
)
from .analytics import (
    TimeRange,
    Aggregation,
    DailyUsage,
    SourceUsage,
    HistoricalPoint,
    HistoricalResponse,
)
from .logs import LogStatus, ApiLog, ApiLogListResponse

__all__ = [
    "FieldType",
    "DataSchema",
    "SchemaResponse",
    "ValidateDataRequest",
    "ValidationResult",
    "InferSchemaResponse",
    "Source",
    "CreateSourceRequest",
    "UpdateSourceRequest",
    "SourceStats",
    "SourceListResponse",
    "CounterResponse",
    "DataEntry",
    "DataListResponse",
    "IngestReceipt",
    "IngestResponse",
    "ClearDataResponse",
    "ExportFormat",
    "BackupType",
    "BackupStatus",
    "ExportFrequency",
    "ExportDelivery",
    "DropboxConfig",
    "DropboxConfigResponse",
    "CreateDropboxConfigRequest",
    "UpdateDropboxConfigRequest",
    "ConnectionTestRequest",
    "BackupRequest",
    "OAuthExchangeRequest",
    "DropboxTokenResponse",
    "BackupLog",
    "ScheduledExport",
    "CreateScheduledExportRequest",
    "UpdateScheduledExportRequest",
    "SmtpTestRequest",
    "ExportEmailConfig",
    "ExportEmailRequest",
    "TimeRange",
    "Aggregation",
    "DailyUsage",
    "SourceUsage",
    "HistoricalPoint",
    "HistoricalResponse",
    "LogStatus",
    "ApiLog",
    "ApiLogListResponse",
]
