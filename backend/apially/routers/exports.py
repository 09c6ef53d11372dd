"""
Scheduled Exports Router
========================

GET    /api/exports            - List scheduled exports
POST   /api/exports            - Create one
GET    /api/exports/{id}       - Get one
PATCH  /api/exports/{id}       - Change one
DELETE /api/exports/{id}       - Delete one
POST   /api/exports/process    - Run every export that is due (what the scheduler does)
POST   /api/exports/{id}/run   - Run one export right now

Author: ApiAlly Team
"""

import logging
import smtplib

from fastapi import APIRouter, Depends, HTTPException

from apially.models import (
    CreateScheduledExportRequest,
    ScheduledExport,
    UpdateScheduledExportRequest,
)
from apially.routers.dependencies import get_services, verify_dashboard_token
from apially.services import AppServices

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/exports",
    tags=["exports"],
    dependencies=[Depends(verify_dashboard_token)],
)


@router.get("", response_model=list[ScheduledExport])
async def list_exports(services: AppServices = Depends(get_services)):
    return services.exports.list_exports()


@router.post("", response_model=ScheduledExport, status_code=201)
async def create_export(request: CreateScheduledExportRequest, services: AppServices = Depends(get_services)):
    """
    Create a scheduled export.

    The first run is scheduled for 08:00 UTC one period from now.
    delivery="email" needs an email address.
    """
    try:
        return services.exports.create_export(request)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/process")
async def process_exports(services: AppServices = Depends(get_services)):
    return await services.exports.process_due_exports()


@router.get("/{export_id}", response_model=ScheduledExport)
async def get_export(export_id: str, services: AppServices = Depends(get_services)):
    export = services.exports.get_export(export_id)
    if not export:
        raise HTTPException(status_code=404, detail="Scheduled export not found")
    return export


@router.patch("/{export_id}", response_model=ScheduledExport)
async def update_export(
    export_id: str,
    request: UpdateScheduledExportRequest,
    services: AppServices = Depends(get_services),
):
    try:
        export = services.exports.update_export(export_id, request)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if not export:
        raise HTTPException(status_code=404, detail="Scheduled export not found")
    return export


@router.delete("/{export_id}")
async def delete_export(export_id: str, services: AppServices = Depends(get_services)):
    if not services.exports.delete_export(export_id):
        raise HTTPException(status_code=404, detail="Scheduled export not found")
    return {"success": True, "message": "Scheduled export deleted"}


@router.post("/{export_id}/run", response_model=ScheduledExport)
async def run_export(export_id: str, services: AppServices = Depends(get_services)):
    try:
        export = await services.exports.run_export(export_id)
    except (smtplib.SMTPException, OSError) as e:
        logger.error(f"Export {export_id} could not be emailed: {type(e).__name__}: {e}")
        raise HTTPException(status_code=502, detail=f"Failed to send export email: {e}")
    if not export:
        raise HTTPException(status_code=404, detail="Scheduled export not found")
    return export
