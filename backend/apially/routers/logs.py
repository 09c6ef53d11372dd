"""
API Logs Router
===============

GET /api/logs?limit=100 - The most recent requests, newest first
"""

from fastapi import APIRouter, Depends, Query

from apially.models import ApiLogListResponse
from apially.routers.dependencies import get_services, verify_dashboard_token
from apially.services import AppServices


router = APIRouter(
    prefix="/api/logs",
    tags=["logs"],
    dependencies=[Depends(verify_dashboard_token)],
)


@router.get("", response_model=ApiLogListResponse)
async def list_logs(
    limit: int = Query(100, ge=1, le=1000),
    services: AppServices = Depends(get_services),
):
    logs = services.request_log.recent(limit)
    return ApiLogListResponse(logs=logs, total=len(services.request_log))
