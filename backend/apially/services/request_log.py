"""
Request Log Service
===================

Remembers the last 1000 HTTP requests for the API Logs page.

Nothing is written to disk; a restart starts with an empty log.

Author: ApiAlly Team
"""

import uuid
from collections import deque
from datetime import datetime, timezone
from threading import Lock
from typing import Optional

from apially.models import ApiLog, LogStatus


MAX_LOG_ENTRIES = 1000

# First matching prefix wins
SOURCE_LABELS = [
    ("/api/v1/data-receiver", "API Client"),
    ("/api/data", "API Client"),
    ("/api/status", "System Check"),
    ("/health", "System Check"),
    ("/api/sources", "Sources Manager"),
    ("/api/schema", "Schema Manager"),
    ("/api/dropbox", "Backups"),
    ("/api/backup-logs", "Backups"),
    ("/api/exports", "Exports"),
    ("/api/email", "Email"),
]


def source_label(path: str) -> str:
    for prefix, label in SOURCE_LABELS:
        if path.startswith(prefix):
            return label
    return "Dashboard"


def status_for_code(status_code: int) -> LogStatus:
    if status_code >= 500:
        return LogStatus.ERROR
    if status_code >= 400:
        return LogStatus.WARNING
    return LogStatus.SUCCESS


class RequestLogService:
    """Bounded, newest-last buffer of ApiLog rows."""

    def __init__(self, max_entries: int = MAX_LOG_ENTRIES):
        self._logs: deque[ApiLog] = deque(maxlen=max_entries)
        self._lock = Lock()

    def record(
        self,
        method: str,
        endpoint: str,
        status_code: int,
        response_time_ms: float,
        ip: str = "unknown",
        user_agent: str = "",
        message: Optional[str] = None,
    ) -> ApiLog:
        log = ApiLog(
            id=str(uuid.uuid4()),
            timestamp=datetime.now(timezone.utc),
            method=method,
            endpoint=endpoint,
            status_code=status_code,
            status=status_for_code(status_code),
            message=message or f"{method} {endpoint} -> {status_code}",
            response_time_ms=round(response_time_ms, 2),
            ip=ip,
            user_agent=user_agent,
            source=source_label(endpoint),
        )
        with self._lock:
            self._logs.append(log)
        return log

    def recent(self, limit: int = 100) -> list[ApiLog]:
        """Most recent first."""
        with self._lock:
            logs = list(self._logs)
        logs.reverse()
        return logs[:limit]

    def __len__(self) -> int:
        return len(self._logs)
