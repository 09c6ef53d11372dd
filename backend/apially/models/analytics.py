"""
Analytics Models
================
Response shapes for the Analytics and Historical Data pages.
"""

from pydantic import BaseModel, Field
from typing import Optional
from datetime import date
from enum import Enum


class TimeRange(str, Enum):
    LAST_24H = "24h"
    LAST_7D = "7d"
    LAST_30D = "30d"
    LAST_90D = "90d"
    ALL = "all"


class Aggregation(str, Enum):
    NONE = "none"
    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class DailyUsage(BaseModel):
    date: date
    count: int


class SourceUsage(BaseModel):
    source_id: str
    name: str
    count: int
    percentage: int = Field(..., description="Share of all entries, rounded half-up")


class HistoricalPoint(BaseModel):
    """
    One chart point.

    Raw points (aggregation=none) fill `value`; aggregated buckets fill
    average/min/max/count instead.
    """
    name: str
    timestamp: Optional[str] = None
    value: Optional[float] = None
    average: Optional[float] = None
    min: Optional[float] = None
    max: Optional[float] = None
    count: Optional[int] = None


class HistoricalResponse(BaseModel):
    metric: str
    time_range: TimeRange
    aggregation: Aggregation
    source_id: Optional[str] = None
    points: list[HistoricalPoint]
