"""
Analytics Service
=================

The numbers behind the Analytics and Historical Data pages.

WHAT IT COMPUTES:
----------------
1. usage_by_day()      - Entries received per UTC day (zero-filled for charts)
2. usage_by_source()   - Entries per source with a rounded percentage share
3. historical()        - One metric over time, raw or bucketed (hourly/daily/weekly/monthly)
4. metric_names()      - Which numeric fields can be charted
5. readings_window()   - Readings per day and per source over the last N days

BUCKETS:
-------
    hourly   key 2026-01-06-03   label "01/06 03:00"
    daily    key 2026-01-06      label "01/06"
    weekly   key 2026-W02        label "Week 02"   (ISO weeks)
    monthly  key 2026-01         label "Jan 2026"

Author: ApiAlly Team
"""

import logging
from collections import defaultdict
from datetime import date, datetime, timedelta, timezone
from typing import Any, Optional

from apially.models import (
    Aggregation,
    DailyUsage,
    DataEntry,
    HistoricalPoint,
    SourceUsage,
    TimeRange,
)
from apially.services.data_service import DataService
from apially.services.sources_service import SourcesService

logger = logging.getLogger(__name__)


TIME_RANGE_DELTAS = {
    TimeRange.LAST_24H: timedelta(hours=24),
    TimeRange.LAST_7D: timedelta(days=7),
    TimeRange.LAST_30D: timedelta(days=30),
    TimeRange.LAST_90D: timedelta(days=90),
}

# Fields that are ours, not device measurements
NON_METRIC_FIELDS = {
    "id",
    "source_id",
    "sensor_id",
    "timestamp",
    "file_name",
    "file_path",
    "created_at",
    "backed_up_dropbox",
    "last_dropbox_backup",
    "backed_up_email",
    "last_email_backup",
    "receivedAt",
    "clientIp",
}


# =============================================================================
# PURE HELPERS
# =============================================================================

def is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def percentage(count: int, total: int) -> int:
    """count/total as a whole percent, halves rounded up (12.5 -> 13)."""
    if total <= 0:
        return 0
    return int(count * 100 / total + 0.5)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def bucket_key(moment: datetime, aggregation: Aggregation) -> tuple[str, str]:
    """(sort/group key, display label) for a timestamp."""
    moment = _as_utc(moment)
    if aggregation == Aggregation.HOURLY:
        return moment.strftime("%Y-%m-%d-%H"), moment.strftime("%m/%d %H:00")
    if aggregation == Aggregation.DAILY:
        return moment.strftime("%Y-%m-%d"), moment.strftime("%m/%d")
    if aggregation == Aggregation.WEEKLY:
        iso_year, iso_week, _ = moment.isocalendar()
        return f"{iso_year}-W{iso_week:02d}", f"Week {iso_week:02d}"
    if aggregation == Aggregation.MONTHLY:
        return moment.strftime("%Y-%m"), moment.strftime("%b %Y")
    return moment.isoformat(), moment.strftime("%m/%d %H:%M")


def group_by_date(entries: list[DataEntry]) -> dict[date, list[DataEntry]]:
    """Entries grouped by the UTC date of their reading timestamp."""
    grouped: dict[date, list[DataEntry]] = defaultdict(list)
    for entry in entries:
        grouped[_as_utc(entry.timestamp).date()].append(entry)
    return dict(grouped)


def count_by_source(
    entries: list[DataEntry],
    start: datetime,
    end: datetime,
) -> dict[str, int]:
    """How many readings each source sent between start and end (inclusive)."""
    counts: dict[str, int] = defaultdict(int)
    start, end = _as_utc(start), _as_utc(end)
    for entry in entries:
        if start <= _as_utc(entry.timestamp) <= end:
            counts[entry.source_id or "unknown"] += 1
    return dict(counts)


def aggregate_points(
    entries: list[DataEntry],
    metric: str,
    aggregation: Aggregation,
) -> list[HistoricalPoint]:
    """
    Chart points for one metric.

    Returns [] when no entry carries a numeric value for the metric.
    """
    rows = sorted(
        ((entry, entry.flatten().get(metric)) for entry in entries),
        key=lambda pair: _as_utc(pair[0].timestamp),
    )
    if not any(is_number(value) for _, value in rows):
        return []

    if aggregation == Aggregation.NONE:
        return [
            HistoricalPoint(
                name=bucket_key(entry.timestamp, Aggregation.NONE)[1],
                timestamp=_as_utc(entry.timestamp).isoformat(),
                value=value if is_number(value) else 0,
            )
            for entry, value in rows
        ]

    buckets: dict[str, dict[str, Any]] = {}
    for entry, value in rows:
        key, label = bucket_key(entry.timestamp, aggregation)
        bucket = buckets.setdefault(key, {"name": label, "values": []})
        if is_number(value):
            bucket["values"].append(value)

    points = []
    for bucket in buckets.values():
        values = bucket["values"]
        points.append(HistoricalPoint(
            name=bucket["name"],
            average=sum(values) / len(values) if values else 0,
            min=min(values) if values else 0,
            max=max(values) if values else 0,
            count=len(values),
        ))
    return points


# =============================================================================
# SERVICE
# =============================================================================

class AnalyticsService:
    """Analytics over the stored entries and sources."""

    def __init__(self, data_service: DataService, sources_service: SourcesService):
        self.data_service = data_service
        self.sources_service = sources_service

    def usage_by_day(
        self,
        days: int = 30,
        now: Optional[datetime] = None,
        fill_missing: bool = True,
    ) -> list[DailyUsage]:
        """
        Entries per UTC day over the last `days` days, oldest first.

        With fill_missing the result has exactly `days` rows ending today.
        """
        now = _as_utc(now or datetime.now(timezone.utc))
        start = now - timedelta(days=days)

        counts: dict[date, int] = defaultdict(int)
        for entry in self.data_service.all_entries():
            created = _as_utc(entry.created_at)
            if start <= created <= now:
                counts[created.date()] += 1

        if fill_missing:
            today = now.date()
            for offset in range(days):
                counts.setdefault(today - timedelta(days=offset), 0)
            cutoff = today - timedelta(days=days - 1)
            counts = {day: count for day, count in counts.items() if day >= cutoff}

        return [DailyUsage(date=day, count=counts[day]) for day in sorted(counts)]

    def usage_by_source(self) -> list[SourceUsage]:
        counts: dict[str, int] = defaultdict(int)
        for entry in self.data_service.all_entries():
            if entry.source_id:
                counts[entry.source_id] += 1

        total = sum(counts.values())
        names = self.sources_service.name_lookup()
        usage = [
            SourceUsage(
                source_id=source_id,
                name=names.get(source_id, "Unknown"),
                count=count,
                percentage=percentage(count, total),
            )
            for source_id, count in counts.items()
        ]
        return sorted(usage, key=lambda u: u.count, reverse=True)

    def historical(
        self,
        metric: str,
        time_range: TimeRange = TimeRange.LAST_24H,
        aggregation: Aggregation = Aggregation.HOURLY,
        source_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> list[HistoricalPoint]:
        entries = self.data_service.all_entries()
        if source_id:
            entries = [e for e in entries if e.source_id == source_id]

        if time_range != TimeRange.ALL:
            cutoff = _as_utc(now or datetime.now(timezone.utc)) - TIME_RANGE_DELTAS[time_range]
            entries = [e for e in entries if _as_utc(e.timestamp) >= cutoff]

        return aggregate_points(entries, metric, aggregation)

    def metric_names(self, source_id: Optional[str] = None) -> list[str]:
        names: set[str] = set()
        for entry in self.data_service.all_entries():
            if source_id and entry.source_id != source_id:
                continue
            for key, value in entry.metadata.items():
                if key not in NON_METRIC_FIELDS and is_number(value):
                    names.add(key)
        return sorted(names)

    def readings_window(self, days: int = 7, now: Optional[datetime] = None) -> dict[str, Any]:
        """
        Readings whose own timestamp falls in the last `days` days, counted
        per UTC day (oldest first) and per source (busiest first).
        """
        end = _as_utc(now or datetime.now(timezone.utc))
        start = end - timedelta(days=days)
        entries = self.data_service.all_entries()

        in_window = [e for e in entries if start <= _as_utc(e.timestamp) <= end]
        by_date = group_by_date(in_window)
        by_source = count_by_source(entries, start, end)
        names = self.sources_service.name_lookup()

        return {
            "start": start.isoformat(),
            "end": end.isoformat(),
            "total": len(in_window),
            "by_date": [
                {"date": day.isoformat(), "count": len(group)}
                for day, group in sorted(by_date.items())
            ],
            "by_source": [
                {"source_id": source_id, "name": names.get(source_id, "Unknown"), "count": count}
                for source_id, count in sorted(by_source.items(), key=lambda item: item[1], reverse=True)
            ],
        }
