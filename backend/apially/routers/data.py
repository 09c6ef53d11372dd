"""
Data Router
===========

The Data Explorer endpoints.

ALL ENDPOINTS:
-------------
GET    /api/data                  - List entries (newest first, ?limit=&source_id=)
GET    /api/data/flat              - Entries as flat rows (entry fields + metadata)
GET    /api/data/export?format=   - Download everything as CSV or JSON (?flat=true for flat rows)
GET    /api/data/{id}             - Get one entry
DELETE /api/data/{id}             - Delete one entry
DELETE /api/data                  - Delete ALL entries

Author: ApiAlly Team
"""

import json
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import Response

from apially.models import ClearDataResponse, DataEntry, DataListResponse, ExportFormat
from apially.routers.dependencies import get_services, verify_dashboard_token
from apially.services import AppServices
from apially.utils.csv_export import convert_to_csv, data_explorer_csv, data_explorer_json, download_filename


router = APIRouter(
    prefix="/api/data",
    tags=["data"],
    dependencies=[Depends(verify_dashboard_token)],
)


@router.get("", response_model=DataListResponse)
async def list_data(
    limit: int = Query(1000, ge=1, le=10000),
    source_id: Optional[str] = None,
    services: AppServices = Depends(get_services),
):
    entries = services.data.list_entries(limit=limit, source_id=source_id)
    return DataListResponse(entries=entries, total=len(entries))


@router.get("/flat")
async def list_flat_data(
    limit: int = Query(1000, ge=1, le=10000),
    source_id: Optional[str] = None,
    services: AppServices = Depends(get_services),
):
    """Entries as the flat rows the Data Explorer table shows."""
    entries = services.data.list_entries(limit=limit, source_id=source_id)
    return {"rows": [entry.flatten() for entry in entries], "total": len(entries)}


@router.get("/export")
async def export_data(
    format: ExportFormat = ExportFormat.CSV,
    flat: bool = False,
    services: AppServices = Depends(get_services),
):
    """
    Download every entry as a file.

    Same columns as the Dropbox backups: Source, Sensor ID, File Name, then
    the metadata fields. With flat=true the rows are the raw flattened entries.
    """
    entries = services.data.all_entries()
    sources = services.sources.list_sources()

    if flat:
        rows = [entry.flatten() for entry in entries]
        if format == ExportFormat.CSV:
            content = convert_to_csv(rows)
            media_type = "text/csv"
        else:
            content = json.dumps(rows, indent=2, ensure_ascii=False)
            media_type = "application/json"
    elif format == ExportFormat.CSV:
        content = data_explorer_csv(entries, sources)
        media_type = "text/csv"
    else:
        content = data_explorer_json(entries, sources)
        media_type = "application/json"

    file_name = download_filename(format.value, datetime.now(timezone.utc).date())
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{file_name}"'},
    )


@router.get("/{entry_id}", response_model=DataEntry)
async def get_data_entry(entry_id: str, services: AppServices = Depends(get_services)):
    entry = services.data.get_entry(entry_id)
    if not entry:
        raise HTTPException(status_code=404, detail="Data entry not found")
    return entry


@router.delete("/{entry_id}")
async def delete_data_entry(entry_id: str, services: AppServices = Depends(get_services)):
    if not services.data.delete_entry(entry_id):
        raise HTTPException(status_code=404, detail="Data entry not found")
    return {"success": True, "message": "Data entry deleted"}


@router.delete("", response_model=ClearDataResponse)
async def clear_data(services: AppServices = Depends(get_services)):
    return ClearDataResponse(deleted=services.data.clear())
