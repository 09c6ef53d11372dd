"""
Analytics Router
================

GET /api/analytics/usage-by-day?days=30&fill=true
GET /api/analytics/usage-by-source
GET /api/analytics/historical?metric=temperature&time_range=24h&aggregation=hourly&source_id=
GET /api/analytics/metrics?source_id=
GET /api/analytics/readings?days=7

Author: ApiAlly Team
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from apially.models import (
    Aggregation,
    DailyUsage,
    HistoricalResponse,
    SourceUsage,
    TimeRange,
)
from apially.routers.dependencies import get_services, verify_dashboard_token
from apially.services import AppServices


router = APIRouter(
    prefix="/api/analytics",
    tags=["analytics"],
    dependencies=[Depends(verify_dashboard_token)],
)


@router.get("/usage-by-day", response_model=list[DailyUsage])
async def usage_by_day(
    days: int = Query(30, ge=1, le=366),
    fill: bool = True,
    services: AppServices = Depends(get_services),
):
    """Entries received per UTC day, oldest first."""
    return services.analytics.usage_by_day(days=days, fill_missing=fill)


@router.get("/usage-by-source", response_model=list[SourceUsage])
async def usage_by_source(services: AppServices = Depends(get_services)):
    return services.analytics.usage_by_source()


@router.get("/historical", response_model=HistoricalResponse)
async def historical(
    metric: str = Query(..., min_length=1),
    time_range: TimeRange = TimeRange.LAST_24H,
    aggregation: Aggregation = Aggregation.HOURLY,
    source_id: Optional[str] = None,
    services: AppServices = Depends(get_services),
):
    points = services.analytics.historical(
        metric,
        time_range=time_range,
        aggregation=aggregation,
        source_id=source_id,
    )
    return HistoricalResponse(
        metric=metric,
        time_range=time_range,
        aggregation=aggregation,
        source_id=source_id,
        points=points,
    )


@router.get("/metrics")
async def metric_names(source_id: Optional[str] = None, services: AppServices = Depends(get_services)):
    """Numeric fields that can be charted."""
    return {"metrics": services.analytics.metric_names(source_id)}


@router.get("/readings")
async def readings(days: int = Query(7, ge=1, le=366), services: AppServices = Depends(get_services)):
    """Readings per day and per source, by reading timestamp."""
    return services.analytics.readings_window(days=days)
