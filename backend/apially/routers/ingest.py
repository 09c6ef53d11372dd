"""
Data Receiver Router
====================

The endpoints devices talk to. PUT /api/v1/schema (same key) lets a
device publish the schema of its own source.

    POST /api/v1/data-receiver
    X-API-Key: <source api key>          (or Authorization: Bearer <key>)
    Content-Type: application/json

    {"sensorId": "greenhouse-1", "temperature": 21.4, "humidity": 55}

WHAT HAPPENS:
------------
1. Find the ACTIVE source behind the API key (401 no key, 403 bad key)
2. Make sure the body is a JSON object (400)
3. Validate it: source schema -> global schema -> "has a sensorId" (400)
4. Store it and bump the source's counter
5. Send back a receipt

Errors here use flat JSON bodies ({"error": ..., "message": ...}) because
the callers are small devices and scripts, not the dashboard.

Author: ApiAlly Team
"""

import json
import logging
from typing import Any, Optional, Union

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from apially.models import DataSchema, IngestReceipt, IngestResponse, SchemaResponse, Source
from apially.routers.dependencies import client_ip, get_services
from apially.services import AppServices, DuplicateEntryError, PayloadValidationError
from apially.services.schema_service import validate_schema_structure
from apially.utils.validation import validate_api_key

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["ingest"])


def _error(status_code: int, error: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": error, **extra})


def extract_api_key(x_api_key: Optional[str], authorization: Optional[str]) -> Optional[str]:
    """X-API-Key wins; otherwise Authorization with any "Bearer " prefix removed."""
    if x_api_key and x_api_key.strip():
        return x_api_key.strip()
    if authorization and authorization.strip():
        token = authorization.strip()
        if token.lower().startswith("bearer "):
            token = token[len("bearer "):].strip()
        return token or None
    return None


def _authenticate(
    services: AppServices,
    x_api_key: Optional[str],
    authorization: Optional[str],
    endpoint: str,
) -> Union[Source, JSONResponse]:
    """The active source behind the request's key, or the 401/403 response to send."""
    api_key = extract_api_key(x_api_key, authorization)
    if not api_key:
        logger.warning(f"{endpoint}: missing API key")
        return _error(
            401,
            "API key is required",
            message="Please provide an API key in the X-API-Key header",
            help="Get your API key from the Sources page of the dashboard",
        )

    source = services.sources.get_active_by_api_key(api_key) if validate_api_key(api_key) else None
    if not source:
        logger.warning(f"{endpoint}: invalid or inactive API key")
        return _error(403, "Invalid or inactive API key")
    return source


async def _json_object(request: Request) -> Union[dict[str, Any], JSONResponse]:
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return _error(400, "Invalid JSON format")
    if not isinstance(body, dict):
        return _error(400, "Invalid JSON format", message="Request body must be a JSON object")
    return body


@router.post(
    "/data-receiver",
    response_model=IngestResponse,
    summary="Receive telemetry",
    description="Accepts one JSON object from a device authenticated by its source API key.",
)
async def receive_data(
    request: Request,
    x_api_key: Optional[str] = Header(None, alias="X-API-Key"),
    authorization: Optional[str] = Header(None),
    services: AppServices = Depends(get_services),
):
    source = _authenticate(services, x_api_key, authorization, "Data receiver")
    if isinstance(source, JSONResponse):
        return source

    body = await _json_object(request)
    if isinstance(body, JSONResponse):
        return body

    try:
        services.data.validate_payload(source, body)
    except PayloadValidationError as e:
        return _error(400, e.message, details=e.details)

    try:
        entry = services.data.ingest(source, body, client_ip=client_ip(request))
    except DuplicateEntryError as e:
        return _error(409, "Duplicate entry", message=str(e))
    except ValueError as e:
        return _error(400, "Invalid data", message=str(e))

    return IngestResponse(
        receipt=IngestReceipt(id=entry.id, timestamp=entry.timestamp, source=source.name),
    )


@router.put(
    "/schema",
    response_model=SchemaResponse,
    summary="Publish a device schema",
    description="Lets a device set the schema of its own source, authenticated by the source API key.",
)
async def publish_schema(
    request: Request,
    x_api_key: Optional[str] = Header(None, alias="X-API-Key"),
    authorization: Optional[str] = Header(None),
    services: AppServices = Depends(get_services),
):
    source = _authenticate(services, x_api_key, authorization, "Schema publish")
    if isinstance(source, JSONResponse):
        return source

    body = await _json_object(request)
    if isinstance(body, JSONResponse):
        return body

    try:
        schema = DataSchema.model_validate(body)
    except ValidationError as e:
        return _error(400, "Invalid schema", details=[error["msg"] for error in e.errors()])
    problems = validate_schema_structure(schema)
    if problems:
        return _error(400, "Invalid schema", details=problems)

    updated = services.sources.set_schema_by_api_key(source.api_key, schema)
    logger.info(f"[{source.name}] Device published a schema ({len(schema.field_types)} fields)")
    return SchemaResponse(schema_=updated.data_schema)
