"""
Backup Manager
==============

This is the BRAIN of the backup side of ApiAlly!

WHAT IT DOES:
------------
1. Keeps track of Dropbox configs (persisted in the JSON store)
2. Runs backups: builds the Data Explorer CSV/JSON and uploads it to Dropbox
3. Writes a backup log for every attempt (processing -> completed/failed)
4. Keeps OAuth access tokens fresh using refresh tokens
5. Schedules the recurring jobs:
   - Daily Dropbox backup for every config with daily_backup_enabled
   - Scheduled-export sweep every few minutes

SCHEDULED BACKUP FLOW (per config):
----------------------------------
    [Config active + daily_backup_enabled]
            |
            v
    [Refresh token if it expires within 60s]
            |
            v
    [Connection test: upload + delete connection_test.txt]
            |
            v
    [Upload backup_YYYY-MM-DD.csv]  ---> failure? email ALERT_EMAIL

Author: ApiAlly Team
"""

import asyncio
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

import httpx
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from apially.models import (
    BackupLog,
    BackupStatus,
    BackupType,
    CreateDropboxConfigRequest,
    DropboxConfig,
    ExportFormat,
    UpdateDropboxConfigRequest,
)
from apially.services.data_service import DataService
from apially.services.dropbox_service import DropboxService
from apially.services.email_service import EmailService
from apially.services.export_service import ExportService
from apially.services.sources_service import SourcesService
from apially.services.store import JsonStore
from apially.utils.csv_export import backup_filename, data_explorer_csv, data_explorer_json
from apially.utils.validation import validate_dropbox_path

logger = logging.getLogger(__name__)


class BackupManager:
    """
    The central manager for Dropbox backups and the job scheduler.
    """

    CONFIGS = "dropbox_configs"
    LOGS = "backup_logs"

    # Refresh access tokens that expire within this window
    TOKEN_REFRESH_MARGIN = timedelta(seconds=60)

    BACKUP_JOB_ID = "daily_dropbox_backup"
    EXPORT_JOB_ID = "scheduled_exports"

    def __init__(
        self,
        store: JsonStore,
        data_service: DataService,
        sources_service: SourcesService,
        dropbox_service: DropboxService,
        email_service: EmailService,
        export_service: ExportService,
        backup_hour: int = 2,
        export_check_interval: int = 300,
        default_app_key: str = "",
        default_app_secret: str = "",
        redirect_uri: str = "",
    ):
        """
        Set up the manager.

        Args:
            store: The JSON store
            data_service / sources_service: Where backup content comes from
            dropbox_service: Dropbox HTTP client
            email_service: For backup failure alerts
            export_service: Swept by the export job
            backup_hour: UTC hour of the daily backup job
            export_check_interval: Seconds between scheduled-export sweeps
            default_app_key / default_app_secret: Dropbox app used when a config has none
            redirect_uri: OAuth redirect registered with the Dropbox app
        """
        self.store = store
        self.data_service = data_service
        self.sources_service = sources_service
        self.dropbox_service = dropbox_service
        self.email_service = email_service
        self.export_service = export_service
        self.backup_hour = backup_hour
        self.export_check_interval = export_check_interval
        self.default_app_key = default_app_key
        self.default_app_secret = default_app_secret
        self.redirect_uri = redirect_uri

        self.scheduler: Optional[AsyncIOScheduler] = None

    # =========================================================================
    # SCHEDULER
    # =========================================================================

    def start(self):
        """Start the recurring jobs. Needs a running event loop."""
        self.scheduler = AsyncIOScheduler(timezone=timezone.utc)
        self.scheduler.add_job(
            self.process_scheduled_backups,
            trigger=CronTrigger(hour=self.backup_hour, minute=0, timezone=timezone.utc),
            id=self.BACKUP_JOB_ID,
            replace_existing=True,
        )
        self.scheduler.add_job(
            self.export_service.process_due_exports,
            trigger=IntervalTrigger(seconds=self.export_check_interval),
            id=self.EXPORT_JOB_ID,
            replace_existing=True,
        )
        self.scheduler.start()
        logger.info(
            f"Scheduler started: daily backup at {self.backup_hour:02d}:00 UTC, "
            f"export sweep every {self.export_check_interval}s"
        )

    # =========================================================================
    # DROPBOX CONFIGS
    # =========================================================================

    def list_configs(self) -> list[DropboxConfig]:
        configs = [DropboxConfig.model_validate(row) for row in self.store.all(self.CONFIGS)]
        return sorted(configs, key=lambda c: c.created_at)

    def get_config(self, config_id: str) -> Optional[DropboxConfig]:
        row = self.store.get(self.CONFIGS, config_id)
        return DropboxConfig.model_validate(row) if row else None

    def first_active_config(self) -> Optional[DropboxConfig]:
        return next((c for c in self.list_configs() if c.is_active), None)

    def _save_config(self, config: DropboxConfig) -> DropboxConfig:
        config.updated_at = datetime.now(timezone.utc)
        self.store.update(self.CONFIGS, config.id, **config.model_dump(mode="json"))
        return config

    def create_config(self, request: CreateDropboxConfigRequest) -> DropboxConfig:
        if not validate_dropbox_path(request.dropbox_path):
            raise ValueError("Dropbox path must start with '/'")

        config = DropboxConfig(
            id=str(uuid.uuid4()),
            created_at=datetime.now(timezone.utc),
            **request.model_dump(),
        )
        self.store.insert(self.CONFIGS, config.model_dump(mode="json"))
        logger.info(f"Dropbox config created for {config.dropbox_path}")
        return config

    def update_config(self, config_id: str, request: UpdateDropboxConfigRequest) -> Optional[DropboxConfig]:
        config = self.get_config(config_id)
        if not config:
            return None

        updates = request.model_dump(exclude_unset=True)
        if "dropbox_path" in updates and not validate_dropbox_path(updates["dropbox_path"] or ""):
            raise ValueError("Dropbox path must start with '/'")

        for key, value in updates.items():
            if value is not None:
                setattr(config, key, value)
        if "dropbox_token" in updates:
            # A hand-pasted token has no known expiry
            config.access_token_expires_at = None

        return self._save_config(config)

    def delete_config(self, config_id: str) -> bool:
        return self.store.delete(self.CONFIGS, config_id)

    # =========================================================================
    # OAUTH
    # =========================================================================

    def _app_credentials(self, config: DropboxConfig) -> tuple[str, str]:
        return (config.app_key or self.default_app_key, config.app_secret or self.default_app_secret)

    def authorize_url(self, config_id: str, redirect_uri: Optional[str] = None) -> Optional[str]:
        """Dropbox consent URL; the config ID rides along as OAuth state."""
        config = self.get_config(config_id)
        if not config:
            return None
        app_key, _ = self._app_credentials(config)
        if not app_key:
            raise ValueError("No Dropbox app key configured")
        return self.dropbox_service.generate_auth_url(app_key, redirect_uri or self.redirect_uri, state=config.id)

    async def complete_oauth(
        self,
        config_id: str,
        code: str,
        redirect_uri: Optional[str] = None,
    ) -> Optional[DropboxConfig]:
        """
        Exchange an authorization code and store the tokens on the config.

        Returns None if the config doesn't exist.
        Raises ValueError if Dropbox rejects the code.
        """
        config = self.get_config(config_id)
        if not config:
            return None

        app_key, app_secret = self._app_credentials(config)
        if not app_key or not app_secret:
            raise ValueError("No Dropbox app key/secret configured")

        tokens = await self.dropbox_service.exchange_code_for_tokens(
            app_key, app_secret, code, redirect_uri or self.redirect_uri
        )
        if tokens is None:
            raise ValueError("Dropbox rejected the authorization code")

        self._apply_tokens(config, tokens.access_token, tokens.refresh_token, tokens.expires_in)
        logger.info(f"Dropbox OAuth completed for {config.dropbox_path}")
        return self._save_config(config)

    @staticmethod
    def _apply_tokens(
        config: DropboxConfig,
        access_token: str,
        refresh_token: Optional[str],
        expires_in: Optional[int],
    ):
        config.dropbox_token = access_token
        if refresh_token:
            config.refresh_token = refresh_token
        config.access_token_expires_at = (
            datetime.now(timezone.utc) + timedelta(seconds=expires_in) if expires_in else None
        )

    def _needs_refresh(self, config: DropboxConfig, now: datetime) -> bool:
        app_key, app_secret = self._app_credentials(config)
        if not (config.refresh_token and app_key and app_secret):
            return False
        if not config.dropbox_token or config.access_token_expires_at is None:
            return True
        return config.access_token_expires_at <= now + self.TOKEN_REFRESH_MARGIN

    async def ensure_fresh_token(self, config: DropboxConfig) -> Optional[str]:
        """
        The access token to use for this config, refreshed first if needed.

        Returns None when there is no usable token.
        """
        now = datetime.now(timezone.utc)
        if self._needs_refresh(config, now):
            app_key, app_secret = self._app_credentials(config)
            logger.info(f"Refreshing Dropbox access token for {config.dropbox_path}")
            tokens = await self.dropbox_service.refresh_access_token(app_key, app_secret, config.refresh_token)
            if tokens is None:
                logger.error(f"Token refresh failed for {config.dropbox_path}")
                return None
            self._apply_tokens(config, tokens.access_token, tokens.refresh_token, tokens.expires_in)
            self._save_config(config)
        return config.dropbox_token

    # =========================================================================
    # BACKUP LOGS
    # =========================================================================

    def list_logs(self, limit: Optional[int] = 100) -> list[BackupLog]:
        logs = sorted(
            (BackupLog.model_validate(row) for row in self.store.all(self.LOGS)),
            key=lambda log: log.created_at,
            reverse=True,
        )
        return logs[:limit] if limit else logs

    def delete_log(self, log_id: str) -> bool:
        return self.store.delete(self.LOGS, log_id)

    def _finish_log(self, log: BackupLog, status: BackupStatus, error_message: Optional[str] = None):
        log.status = status
        log.error_message = error_message
        log.completed_at = datetime.now(timezone.utc)
        self.store.update(self.LOGS, log.id, **log.model_dump(mode="json"))

    # =========================================================================
    # BACKUPS
    # =========================================================================

    async def run_backup(
        self,
        config_id: Optional[str] = None,
        dropbox_path: Optional[str] = None,
        dropbox_token: Optional[str] = None,
        export_format: ExportFormat = ExportFormat.CSV,
        backup_type: BackupType = BackupType.MANUAL,
    ) -> dict:
        """
        Upload a full backup to Dropbox.

        Uses the given config, or an explicit path+token, or the first
        active config, in that order.

        Returns:
            {"status": "success", "file_name": ..., "path": ..., "record_count": ..., "log_id": ...}
            or
            {"status": "error", "error_type": ..., "error_message": ...}
        """
        config: Optional[DropboxConfig] = None
        if config_id:
            config = self.get_config(config_id)
            if not config:
                return {"status": "error", "error_type": "not_found", "error_message": "Dropbox configuration not found"}
        elif not (dropbox_path and dropbox_token):
            config = self.first_active_config()
            if not config:
                return {
                    "status": "error",
                    "error_type": "not_configured",
                    "error_message": "No active Dropbox configuration found",
                }

        if config:
            dropbox_path = config.dropbox_path
            dropbox_token = await self.ensure_fresh_token(config)
            if not dropbox_token:
                return {"status": "error", "error_type": "auth_error", "error_message": "No valid Dropbox access token"}

        if not validate_dropbox_path(dropbox_path):
            return {"status": "error", "error_type": "invalid_config", "error_message": "Dropbox path must start with '/'"}

        now = datetime.now(timezone.utc)
        entries = self.data_service.all_entries()
        sources = self.sources_service.list_sources()
        if export_format == ExportFormat.CSV:
            content = data_explorer_csv(entries, sources)
        else:
            content = data_explorer_json(entries, sources)
        file_name = backup_filename(export_format.value, now.date())
        file_path = self.dropbox_service.join_path(dropbox_path, file_name)

        log = BackupLog(
            id=str(uuid.uuid4()),
            config_id=config.id if config else None,
            file_name=file_name,
            file_path=file_path,
            file_size=len(content.encode("utf-8")),
            record_count=len(entries),
            backup_type=backup_type,
            format=export_format,
            status=BackupStatus.PROCESSING,
            created_at=now,
        )
        self.store.insert(self.LOGS, log.model_dump(mode="json"))

        try:
            result = await self.dropbox_service.upload_file(dropbox_token, dropbox_path, file_name, content)
        except httpx.HTTPStatusError as e:
            error_msg = f"Dropbox upload failed: HTTP {e.response.status_code}"
            self._finish_log(log, BackupStatus.FAILED, error_msg)
            return {"status": "error", "error_type": "http_error", "error_message": error_msg, "log_id": log.id}
        except httpx.TimeoutException:
            error_msg = "Dropbox upload timed out"
            self._finish_log(log, BackupStatus.FAILED, error_msg)
            return {"status": "error", "error_type": "timeout", "error_message": error_msg, "log_id": log.id}
        except httpx.RequestError as e:
            error_msg = f"Cannot reach Dropbox: {e}"
            self._finish_log(log, BackupStatus.FAILED, error_msg)
            return {"status": "error", "error_type": "connection_error", "error_message": error_msg, "log_id": log.id}
        except Exception as e:
            error_msg = f"Dropbox upload failed: {type(e).__name__}: {e}"
            logger.error(error_msg, exc_info=True)
            self._finish_log(log, BackupStatus.FAILED, error_msg)
            return {"status": "error", "error_type": "unknown_error", "error_message": error_msg, "log_id": log.id}

        log.dropbox_url = result.get("path_display") if isinstance(result, dict) else None
        self._finish_log(log, BackupStatus.COMPLETED)
        self.data_service.mark_backed_up_dropbox([entry.id for entry in entries], now)

        logger.info(f"Backup uploaded: {file_path} ({len(entries)} records)")
        return {
            "status": "success",
            "file_name": file_name,
            "path": file_path,
            "record_count": len(entries),
            "log_id": log.id,
        }

    async def test_connection(
        self,
        config_id: Optional[str] = None,
        dropbox_path: Optional[str] = None,
        dropbox_token: Optional[str] = None,
    ) -> dict:
        """Connection test for a saved config or an explicit path+token."""
        if config_id:
            config = self.get_config(config_id)
            if not config:
                return {"status": "error", "error_type": "not_found", "error_message": "Dropbox configuration not found"}
            dropbox_path = config.dropbox_path
            dropbox_token = await self.ensure_fresh_token(config)

        if not dropbox_path or not dropbox_token:
            return {"status": "error", "error_type": "invalid_config", "error_message": "Dropbox path and token are required"}
        if not validate_dropbox_path(dropbox_path):
            return {"status": "error", "error_type": "invalid_config", "error_message": "Dropbox path must start with '/'"}

        if await self.dropbox_service.test_connection(dropbox_path, dropbox_token):
            return {"status": "success", "message": "Dropbox connection successful"}
        return {"status": "error", "error_type": "connection_failed", "error_message": "Dropbox connection failed"}

    async def process_scheduled_backups(self) -> dict:
        """
        Back up every active config with daily backups enabled.

        Each config is tested first; a failed test or upload is recorded
        in the results (and emailed to ALERT_EMAIL) without stopping the rest.
        """
        configs = [c for c in self.list_configs() if c.is_active and c.daily_backup_enabled]
        logger.info(f"Processing scheduled backups for {len(configs)} configs")

        results = []
        for config in configs:
            connection = await self.test_connection(config_id=config.id)
            if connection["status"] != "success":
                result = {
                    "config_id": config.id,
                    "status": "error",
                    "error_message": f"Connection test failed: {connection['error_message']}",
                }
            else:
                backup = await self.run_backup(config_id=config.id, backup_type=BackupType.SCHEDULED)
                result = {"config_id": config.id, **backup}

            if result["status"] != "success":
                logger.error(f"Scheduled backup failed for {config.dropbox_path}: {result['error_message']}")
                await asyncio.to_thread(
                    self.email_service.send_backup_failure_alert,
                    config.id,
                    config.dropbox_path,
                    result["error_message"],
                )
            results.append(result)

        success_count = sum(1 for r in results if r["status"] == "success")
        return {
            "success": True,
            "message": f"Processed {len(results)} scheduled backups",
            "processed_count": len(results),
            "success_count": success_count,
            "error_count": len(results) - success_count,
            "results": results,
        }

    # =========================================================================
    # CLEANUP
    # =========================================================================

    async def shutdown(self):
        """Clean up when the server is shutting down."""
        if self.scheduler is not None:
            try:
                self.scheduler.shutdown(wait=False)
            except Exception as e:
                logger.error(f"Error shutting down scheduler: {e}", exc_info=True)

        try:
            await self.dropbox_service.close()
        except Exception as e:
            logger.error(f"Error closing dropbox service: {e}", exc_info=True)
