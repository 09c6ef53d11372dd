"""
Data Source Models
==================
Pydantic models for data sources (the things that POST telemetry to us).

A "source" is anything that owns an API key: an ESP32, a Raspberry Pi,
a cron job on someone's laptop. Every data entry we receive is tagged with
the source that sent it.

- Request models: What the dashboard sends to create/update a source
- Response models: What we send back (includes the API key, the dashboard shows it)
- Stats: The numbers on the Sources page header

Author: ApiAlly Team
"""

from pydantic import BaseModel, ConfigDict, Field
from typing import Optional
from datetime import datetime

from .schema import DataSchema


# =============================================================================
# STORED / RESPONSE MODEL
# =============================================================================

class Source(BaseModel):
    """
    A registered data source.

    Fields:
        id: Unique identifier (UUID)
        name: Human-readable name (e.g., "Greenhouse ESP32")
        url: Where the device lives or its docs page (optional)
        api_key: 32-char hex key the device sends as X-API-Key
        active: Inactive sources get 403 on ingest
        data_count: How many entries this source has sent
        last_active: When the source last sent data
        created_at: When the source was registered
        data_schema: Optional per-source schema (serialized as "schema")
    """
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., description="Unique identifier (UUID)")
    name: str = Field(..., description="Human-readable name")
    url: Optional[str] = Field(None, description="Device or documentation URL")
    api_key: str = Field(..., description="API key used by the device")
    active: bool = Field(default=True, description="Whether ingest is allowed")
    data_count: int = Field(default=0, description="Entries received from this source")
    last_active: Optional[datetime] = Field(None, description="Last time data arrived")
    created_at: datetime = Field(..., description="Registration timestamp")
    data_schema: Optional[DataSchema] = Field(
        None,
        alias="schema",
        description="Per-source schema used to validate incoming data"
    )


# =============================================================================
# REQUEST MODELS
# =============================================================================

class CreateSourceRequest(BaseModel):
    """
    Request body for registering a new source.

    Example Request:
        POST /api/sources
        {
            "name": "Greenhouse ESP32",
            "url": "http://greenhouse.local"
        }
    """
    name: str = Field(
        ...,
        description="Human-readable name for the source",
        min_length=1,
        max_length=100,
        examples=["Greenhouse ESP32", "Rooftop Weather Pi"]
    )
    url: Optional[str] = Field(
        None,
        description="Device or documentation URL",
        max_length=500
    )


class UpdateSourceRequest(BaseModel):
    """
    Request body for updating a source.

    All fields are optional - only provided fields will be updated.
    """
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    url: Optional[str] = Field(None, max_length=500)
    active: Optional[bool] = Field(None, description="Enable or disable ingest")


# =============================================================================
# STATS
# =============================================================================

class SourceStats(BaseModel):
    """Totals shown on the Sources page."""
    total_sources: int = Field(..., alias="totalSources")
    active_sources: int = Field(..., alias="activeSources")
    total_data_points: int = Field(..., alias="totalDataPoints")

    model_config = ConfigDict(populate_by_name=True)


class SourceListResponse(BaseModel):
    sources: list[Source]
    total: int


class CounterResponse(BaseModel):
    """Response from the increment-counter endpoint."""
    success: bool = True
    message: str = "Counter incremented successfully"
    data_count: int
