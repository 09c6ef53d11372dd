"""
Schema Router
=============

GET  /api/schema                       - The global schema
POST /api/schema                       - Replace the global schema
PUT  /api/schema/validate              - Check a sample payload against it
POST /api/schema/infer?source_id=&apply= - Guess a schema from stored data

Author: ApiAlly Team
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from apially.models import (
    DataSchema,
    InferSchemaResponse,
    SchemaResponse,
    ValidateDataRequest,
    ValidationResult,
)
from apially.routers.dependencies import get_services, verify_dashboard_token
from apially.services import AppServices
from apially.services.schema_service import infer_schema

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/schema",
    tags=["schema"],
    dependencies=[Depends(verify_dashboard_token)],
)


@router.get("", response_model=SchemaResponse)
async def get_schema(services: AppServices = Depends(get_services)):
    return SchemaResponse(schema_=services.schema.get_schema())


@router.post("", response_model=SchemaResponse)
async def save_schema(schema: DataSchema, services: AppServices = Depends(get_services)):
    try:
        saved = services.schema.save_schema(schema)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return SchemaResponse(schema_=saved)


@router.put("/validate", response_model=ValidationResult)
async def validate_data(request: ValidateDataRequest, services: AppServices = Depends(get_services)):
    return services.schema.validate(request.data)


@router.post("/infer", response_model=InferSchemaResponse)
async def infer_from_data(
    source_id: Optional[str] = None,
    apply: bool = False,
    services: AppServices = Depends(get_services),
):
    """
    Infer a schema from the stored entries (optionally just one source's).

    With apply=true the result is saved: on the source if source_id was
    given, otherwise as the global schema.
    """
    if source_id and not services.sources.get_source(source_id):
        raise HTTPException(status_code=404, detail="Source not found")

    entries = services.data.list_entries(limit=None, source_id=source_id)
    if not entries:
        raise HTTPException(status_code=400, detail="No data available to infer a schema from")

    schema = infer_schema(entries)

    if apply:
        if source_id:
            services.sources.set_schema(source_id, schema)
        else:
            services.schema.save_schema(schema)
        logger.info(f"Inferred schema applied to {source_id or 'global schema'} ({len(entries)} entries)")

    return InferSchemaResponse(schema_=schema, sample_size=len(entries), applied=apply)
