"""
Sources API Router
==================

A "source" is a device (or script) that sends us data. Each one gets its
own API key.

ALL ENDPOINTS:
-------------
GET    /api/sources                        - List all sources
POST   /api/sources                        - Register a source (gets a new API key)
GET    /api/sources/stats                  - Totals for the Sources page header
GET    /api/sources/{id}                   - Get one source
PATCH  /api/sources/{id}                   - Rename / change URL / enable / disable
DELETE /api/sources/{id}                   - Delete a source (its data is kept)
POST   /api/sources/{id}/regenerate-key    - Issue a new API key (old one stops working)
GET    /api/sources/{id}/schema            - The source's own schema
PUT    /api/sources/{id}/schema            - Set (or clear) the source's schema
POST   /api/sources/{id}/increment-counter - Bump data_count / last_active by hand

Author: ApiAlly Team
"""

import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException

from apially.models import (
    CounterResponse,
    CreateSourceRequest,
    DataSchema,
    SchemaResponse,
    Source,
    SourceListResponse,
    SourceStats,
    UpdateSourceRequest,
)
from apially.routers.dependencies import get_services, verify_dashboard_token
from apially.services import AppServices

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/sources",
    tags=["sources"],
    dependencies=[Depends(verify_dashboard_token)],
)


def _get_source_or_404(services: AppServices, source_id: str) -> Source:
    source = services.sources.get_source(source_id)
    if not source:
        raise HTTPException(status_code=404, detail="Source not found")
    return source


@router.get("", response_model=SourceListResponse)
async def list_sources(services: AppServices = Depends(get_services)):
    sources = services.sources.list_sources()
    return SourceListResponse(sources=sources, total=len(sources))


@router.post("", response_model=Source, status_code=201)
async def create_source(request: CreateSourceRequest, services: AppServices = Depends(get_services)):
    """
    Register a new source.

    Send us:
    - name: What you want to call it (like "Greenhouse ESP32")
    - url: Optional link to the device or its docs

    The response includes the API key the device must send as X-API-Key.
    """
    if not request.name.strip():
        raise HTTPException(status_code=400, detail="Source name cannot be blank")
    return services.sources.create_source(request)


@router.get("/stats", response_model=SourceStats)
async def get_source_stats(services: AppServices = Depends(get_services)):
    return services.sources.get_stats()


@router.get("/{source_id}", response_model=Source)
async def get_source(source_id: str, services: AppServices = Depends(get_services)):
    return _get_source_or_404(services, source_id)


@router.patch("/{source_id}", response_model=Source)
async def update_source(
    source_id: str,
    request: UpdateSourceRequest,
    services: AppServices = Depends(get_services),
):
    source = services.sources.update_source(source_id, request)
    if not source:
        raise HTTPException(status_code=404, detail="Source not found")
    return source


@router.delete("/{source_id}")
async def delete_source(source_id: str, services: AppServices = Depends(get_services)):
    if not services.sources.delete_source(source_id):
        raise HTTPException(status_code=404, detail="Source not found")
    return {"success": True, "message": "Source deleted"}


@router.post("/{source_id}/regenerate-key", response_model=Source)
async def regenerate_api_key(source_id: str, services: AppServices = Depends(get_services)):
    source = services.sources.regenerate_api_key(source_id)
    if not source:
        raise HTTPException(status_code=404, detail="Source not found")
    return source


@router.get("/{source_id}/schema", response_model=SchemaResponse)
async def get_source_schema(source_id: str, services: AppServices = Depends(get_services)):
    source = _get_source_or_404(services, source_id)
    return SchemaResponse(schema_=source.data_schema or DataSchema())


@router.put("/{source_id}/schema", response_model=Source)
async def set_source_schema(
    source_id: str,
    schema: Optional[DataSchema] = Body(None),
    services: AppServices = Depends(get_services),
):
    """Send a schema to attach it, or an empty body / null to clear it."""
    try:
        source = services.sources.set_schema(source_id, schema)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if not source:
        raise HTTPException(status_code=404, detail="Source not found")
    return source


@router.post("/{source_id}/increment-counter", response_model=CounterResponse)
async def increment_counter(source_id: str, services: AppServices = Depends(get_services)):
    source = services.sources.record_activity(source_id)
    if not source:
        raise HTTPException(status_code=404, detail="Source not found")
    return CounterResponse(data_count=source.data_count)
