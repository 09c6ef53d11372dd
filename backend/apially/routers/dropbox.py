"""
Dropbox & Backups Router
========================

Everything on the Backups page.

ALL ENDPOINTS:
-------------
GET    /api/dropbox/configs                 - List Dropbox configs (no secrets)
POST   /api/dropbox/configs                 - Add a config
GET    /api/dropbox/configs/{id}            - Get one config
PATCH  /api/dropbox/configs/{id}            - Change a config
DELETE /api/dropbox/configs/{id}            - Delete a config

POST   /api/dropbox/test-connection         - Upload+delete a test file (rate limited)
POST   /api/dropbox/backup                  - Back up everything right now
POST   /api/dropbox/backup/scheduled        - Run the daily backup job right now

GET    /api/dropbox/oauth/authorize-url     - Where to send the user to connect Dropbox
POST   /api/dropbox/oauth/exchange          - Trade an authorization code for tokens
GET    /api/dropbox/oauth/callback          - Dropbox redirects here (no dashboard auth)

GET    /api/backup-logs                     - Backup history, newest first
DELETE /api/backup-logs/{id}                - Delete a history row

Backup and connection-test results use the usual shape:
    {"status": "success", ...} or {"status": "error", "error_type": ..., "error_message": ...}

Author: ApiAlly Team
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import RedirectResponse

from apially.models import (
    BackupLog,
    BackupRequest,
    ConnectionTestRequest,
    CreateDropboxConfigRequest,
    DropboxConfigResponse,
    OAuthExchangeRequest,
    UpdateDropboxConfigRequest,
)
from apially.routers.dependencies import get_services, rate_limited, verify_dashboard_token
from apially.services import AppServices

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/dropbox",
    tags=["dropbox"],
    dependencies=[Depends(verify_dashboard_token)],
)

# Dropbox's browser redirect can't carry our dashboard token
oauth_callback_router = APIRouter(prefix="/api/dropbox/oauth", tags=["dropbox"])

logs_router = APIRouter(
    prefix="/api/backup-logs",
    tags=["backups"],
    dependencies=[Depends(verify_dashboard_token)],
)


def _raise_if_not_found(result: dict):
    if result.get("status") == "error" and result.get("error_type") == "not_found":
        raise HTTPException(status_code=404, detail=result["error_message"])


# =============================================================================
# CONFIGS
# =============================================================================

@router.get("/configs", response_model=list[DropboxConfigResponse])
async def list_configs(services: AppServices = Depends(get_services)):
    return [DropboxConfigResponse.from_config(c) for c in services.backups.list_configs()]


@router.post("/configs", response_model=DropboxConfigResponse, status_code=201)
async def create_config(request: CreateDropboxConfigRequest, services: AppServices = Depends(get_services)):
    """
    Add a Dropbox destination.

    Send us:
    - dropbox_path: Folder to put backups in (must start with "/")
    - dropbox_token: An access token, or leave it out and connect with OAuth
    - daily_backup_enabled: Include this config in the daily backup job
    """
    try:
        config = services.backups.create_config(request)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return DropboxConfigResponse.from_config(config)


@router.get("/configs/{config_id}", response_model=DropboxConfigResponse)
async def get_config(config_id: str, services: AppServices = Depends(get_services)):
    config = services.backups.get_config(config_id)
    if not config:
        raise HTTPException(status_code=404, detail="Dropbox configuration not found")
    return DropboxConfigResponse.from_config(config)


@router.patch("/configs/{config_id}", response_model=DropboxConfigResponse)
async def update_config(
    config_id: str,
    request: UpdateDropboxConfigRequest,
    services: AppServices = Depends(get_services),
):
    try:
        config = services.backups.update_config(config_id, request)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if not config:
        raise HTTPException(status_code=404, detail="Dropbox configuration not found")
    return DropboxConfigResponse.from_config(config)


@router.delete("/configs/{config_id}")
async def delete_config(config_id: str, services: AppServices = Depends(get_services)):
    if not services.backups.delete_config(config_id):
        raise HTTPException(status_code=404, detail="Dropbox configuration not found")
    return {"success": True, "message": "Dropbox configuration deleted"}


# =============================================================================
# BACKUPS
# =============================================================================

@router.post("/test-connection", dependencies=[Depends(rate_limited("dropbox_test"))])
async def test_connection(request: ConnectionTestRequest, services: AppServices = Depends(get_services)):
    result = await services.backups.test_connection(
        config_id=request.config_id,
        dropbox_path=request.dropbox_path,
        dropbox_token=request.dropbox_token,
    )
    _raise_if_not_found(result)
    return result


@router.post("/backup")
async def run_backup(request: BackupRequest, services: AppServices = Depends(get_services)):
    """
    Upload backup_YYYY-MM-DD.csv (or .json) with every entry to Dropbox.

    Uses config_id if given, else dropbox_path+dropbox_token, else the
    first active config.
    """
    result = await services.backups.run_backup(
        config_id=request.config_id,
        dropbox_path=request.dropbox_path,
        dropbox_token=request.dropbox_token,
        export_format=request.format,
    )
    _raise_if_not_found(result)
    return result


@router.post("/backup/scheduled")
async def run_scheduled_backups(services: AppServices = Depends(get_services)):
    return await services.backups.process_scheduled_backups()


# =============================================================================
# OAUTH
# =============================================================================

@router.get("/oauth/authorize-url")
async def get_authorize_url(
    config_id: str,
    redirect_uri: Optional[str] = None,
    services: AppServices = Depends(get_services),
):
    try:
        url = services.backups.authorize_url(config_id, redirect_uri)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if url is None:
        raise HTTPException(status_code=404, detail="Dropbox configuration not found")
    return {"authorize_url": url}


@router.post("/oauth/exchange", response_model=DropboxConfigResponse)
async def exchange_code(request: OAuthExchangeRequest, services: AppServices = Depends(get_services)):
    try:
        config = await services.backups.complete_oauth(request.config_id, request.code, request.redirect_uri)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if not config:
        raise HTTPException(status_code=404, detail="Dropbox configuration not found")
    return DropboxConfigResponse.from_config(config)


@oauth_callback_router.get("/callback")
async def oauth_callback(
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    services: AppServices = Depends(get_services),
):
    """
    Dropbox sends the browser here after the user approves (or refuses).

    `state` carries the config ID. We store the tokens and bounce the user
    back to the dashboard with ?dropbox=connected or ?dropbox=error.
    """
    frontend = services.frontend_url.rstrip("/")
    if error or not code or not state:
        logger.warning(f"Dropbox OAuth callback without a code (error: {error})")
        return RedirectResponse(f"{frontend}/?dropbox=error")

    try:
        config = await services.backups.complete_oauth(state, code)
    except ValueError as e:
        logger.error(f"Dropbox OAuth callback failed: {e}")
        return RedirectResponse(f"{frontend}/?dropbox=error")

    if not config:
        return RedirectResponse(f"{frontend}/?dropbox=error")
    return RedirectResponse(f"{frontend}/?dropbox=connected")


# =============================================================================
# BACKUP LOGS
# =============================================================================

@logs_router.get("", response_model=list[BackupLog])
async def list_backup_logs(
    limit: int = Query(100, ge=1, le=1000),
    services: AppServices = Depends(get_services),
):
    return services.backups.list_logs(limit)


@logs_router.delete("/{log_id}")
async def delete_backup_log(log_id: str, services: AppServices = Depends(get_services)):
    if not services.backups.delete_log(log_id):
        raise HTTPException(status_code=404, detail="Backup log not found")
    return {"success": True, "message": "Backup log deleted"}
