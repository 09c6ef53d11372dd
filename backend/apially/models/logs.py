"""
API Request Log Models
======================
"""

from pydantic import BaseModel
from datetime import datetime
from enum import Enum


class LogStatus(str, Enum):
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class ApiLog(BaseModel):
    """One HTTP request as seen by the logging middleware."""
    id: str
    timestamp: datetime
    method: str
    endpoint: str
    status_code: int
    status: LogStatus
    message: str
    response_time_ms: float
    ip: str
    user_agent: str
    source: str


class ApiLogListResponse(BaseModel):
    logs: list[ApiLog]
    total: int
