"""
Backup Models
=============
Pydantic models for Dropbox backups and scheduled exports.

DROPBOX CONFIG:
    Where to put backups (folder path) and how to authenticate (an access
    token, optionally kept fresh by an OAuth refresh token).

BACKUP LOG:
    One row per backup attempt, manual or scheduled.

SCHEDULED EXPORT:
    A recurring CSV/JSON export, either emailed or left for download.

Author: ApiAlly Team
"""

from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime
from enum import Enum


# =============================================================================
# ENUMS
# =============================================================================

class ExportFormat(str, Enum):
    CSV = "csv"
    JSON = "json"


class BackupType(str, Enum):
    MANUAL = "manual"
    SCHEDULED = "scheduled"


class BackupStatus(str, Enum):
    """
    Status Flow:
    - PROCESSING: Upload in flight
    - COMPLETED: File is in Dropbox
    - FAILED: Upload (or token refresh) failed, see error_message
    """
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class ExportFrequency(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class ExportDelivery(str, Enum):
    EMAIL = "email"
    DOWNLOAD = "download"


# =============================================================================
# DROPBOX CONFIG
# =============================================================================

class DropboxConfig(BaseModel):
    """A Dropbox destination for backups."""
    id: str
    dropbox_path: str = Field(..., description="Folder in Dropbox, must start with /")
    dropbox_token: Optional[str] = Field(None, description="Current access token")
    refresh_token: Optional[str] = Field(None, description="OAuth refresh token (offline access)")
    app_key: Optional[str] = None
    app_secret: Optional[str] = None
    access_token_expires_at: Optional[datetime] = None
    is_active: bool = True
    daily_backup_enabled: bool = False
    created_at: datetime
    updated_at: Optional[datetime] = None


class DropboxConfigResponse(BaseModel):
    """DropboxConfig minus the secrets."""
    id: str
    dropbox_path: str
    has_token: bool
    has_refresh_token: bool
    app_key: Optional[str] = None
    access_token_expires_at: Optional[datetime] = None
    is_active: bool
    daily_backup_enabled: bool
    created_at: datetime
    updated_at: Optional[datetime] = None

    @classmethod
    def from_config(cls, config: DropboxConfig) -> "DropboxConfigResponse":
        return cls(
            id=config.id,
            dropbox_path=config.dropbox_path,
            has_token=bool(config.dropbox_token),
            has_refresh_token=bool(config.refresh_token),
            app_key=config.app_key,
            access_token_expires_at=config.access_token_expires_at,
            is_active=config.is_active,
            daily_backup_enabled=config.daily_backup_enabled,
            created_at=config.created_at,
            updated_at=config.updated_at,
        )


class CreateDropboxConfigRequest(BaseModel):
    """
    Example Request:
        POST /api/dropbox/configs
        {
            "dropbox_path": "/ApiAlly/backups",
            "dropbox_token": "sl.B...",
            "daily_backup_enabled": true
        }
    """
    dropbox_path: str = Field(..., min_length=1, examples=["/ApiAlly/backups"])
    dropbox_token: Optional[str] = None
    refresh_token: Optional[str] = None
    app_key: Optional[str] = None
    app_secret: Optional[str] = None
    is_active: bool = True
    daily_backup_enabled: bool = False


class UpdateDropboxConfigRequest(BaseModel):
    dropbox_path: Optional[str] = None
    dropbox_token: Optional[str] = None
    refresh_token: Optional[str] = None
    app_key: Optional[str] = None
    app_secret: Optional[str] = None
    is_active: Optional[bool] = None
    daily_backup_enabled: Optional[bool] = None


class ConnectionTestRequest(BaseModel):
    """Either point at a saved config or pass the path+token directly."""
    config_id: Optional[str] = None
    dropbox_path: Optional[str] = None
    dropbox_token: Optional[str] = None


class BackupRequest(BaseModel):
    config_id: Optional[str] = Field(None, description="Saved config to use (default: first active)")
    dropbox_path: Optional[str] = None
    dropbox_token: Optional[str] = None
    format: ExportFormat = ExportFormat.CSV


class OAuthExchangeRequest(BaseModel):
    config_id: str
    code: str
    redirect_uri: Optional[str] = None


class DropboxTokenResponse(BaseModel):
    """Token endpoint reply from Dropbox (the fields we use)."""
    access_token: str
    token_type: str = "bearer"
    expires_in: Optional[int] = None
    refresh_token: Optional[str] = None
    account_id: Optional[str] = None
    scope: Optional[str] = None


# =============================================================================
# BACKUP LOGS
# =============================================================================

class BackupLog(BaseModel):
    id: str
    config_id: Optional[str] = None
    file_name: str
    file_path: str
    dropbox_url: Optional[str] = None
    file_size: int = 0
    record_count: int = 0
    backup_type: BackupType = BackupType.MANUAL
    format: ExportFormat = ExportFormat.CSV
    status: BackupStatus = BackupStatus.PROCESSING
    error_message: Optional[str] = None
    created_at: datetime
    completed_at: Optional[datetime] = None


# =============================================================================
# SCHEDULED EXPORTS
# =============================================================================

class ScheduledExport(BaseModel):
    id: str
    name: str
    frequency: ExportFrequency
    format: ExportFormat = ExportFormat.CSV
    delivery: ExportDelivery = ExportDelivery.DOWNLOAD
    email: Optional[str] = None
    active: bool = True
    last_export: Optional[datetime] = None
    next_export: Optional[datetime] = None
    created_at: datetime


class CreateScheduledExportRequest(BaseModel):
    """
    Example Request:
        POST /api/exports
        {
            "name": "Weekly greenhouse",
            "frequency": "weekly",
            "format": "csv",
            "delivery": "email",
            "email": "me@example.com"
        }
    """
    name: str = Field(..., min_length=1, max_length=100)
    frequency: ExportFrequency
    format: ExportFormat = ExportFormat.CSV
    delivery: ExportDelivery = ExportDelivery.DOWNLOAD
    email: Optional[str] = None
    active: bool = True


class UpdateScheduledExportRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    frequency: Optional[ExportFrequency] = None
    format: Optional[ExportFormat] = None
    delivery: Optional[ExportDelivery] = None
    email: Optional[str] = None
    active: Optional[bool] = None


# =============================================================================
# EMAIL
# =============================================================================

class SmtpTestRequest(BaseModel):
    test_email: Optional[str] = Field(None, alias="testEmail")

    model_config = {"populate_by_name": True}


class ExportEmailConfig(BaseModel):
    name: str
    email: Optional[str] = None
    format: ExportFormat = ExportFormat.CSV
    frequency: ExportFrequency = ExportFrequency.DAILY


class ExportEmailRequest(BaseModel):
    """Body for POST /api/email/export (send an export someone built elsewhere)."""
    export_config: ExportEmailConfig = Field(..., alias="exportConfig")
    export_content: str = Field(..., alias="exportContent")
    record_count: int = Field(0, alias="recordCount")

    model_config = {"populate_by_name": True}
