"""
CSV / JSON Export Helpers
=========================

Every file that leaves ApiAlly is built here:

1. convert_to_csv()        - Plain CSV of flattened rows (GET /api/data/export?flat=true)
2. data_explorer_csv()     - Backup CSV, same columns the Data Explorer shows
3. data_explorer_json()    - Backup JSON, same transform as the CSV
4. scheduled_export_csv()  - Scheduled export CSV (Source, Created At, metadata...)

FILE NAMES:
----------
    backup_2026-01-06.csv          <- backup_filename()
    Weekly_greenhouse_2026-01-06.csv  <- export_filename()
    data-export-2026-01-06.csv     <- download_filename()

All output uses "\\n" line endings with no trailing newline.

Author: ApiAlly Team
"""

import csv
import io
import json
import re
from datetime import date, datetime
from typing import Any, Iterable, Mapping, Optional

from apially.models import DataEntry, Source


NO_DATA = "No data available"

# Metadata keys we add ourselves at ingest; exports leave them out
HIDDEN_METADATA_KEYS = {"clientIp", "receivedAt"}

PRIORITY_COLUMNS = ["timestamp", "id", "source_id", "sensor_id", "file_name"]

DISPLAY_NAMES = {
    "source_id": "Source",
    "sensor_id": "Sensor ID",
    "file_name": "File Name",
}


# =============================================================================
# CELL FORMATTING
# =============================================================================

def _cell(value: Any) -> str:
    """Stringify a value the way a JavaScript dashboard would show it."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value, separators=(",", ":"))
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def _to_text(buffer: io.StringIO) -> str:
    return buffer.getvalue().rstrip("\n")


def source_display_name(source_id: Optional[str], sources: Mapping[str, Source]) -> str:
    """Source name, or "Unknown (abcd1234...)" when the source is gone."""
    if not source_id:
        return "Unknown"
    source = sources.get(source_id)
    return source.name if source else f"Unknown ({source_id[:8]}...)"


def _index_sources(sources: Iterable[Source]) -> dict[str, Source]:
    return {source.id: source for source in sources}


def _metadata_keys(entries: list[DataEntry]) -> list[str]:
    """Metadata keys in first-seen order, minus the ones we add ourselves."""
    keys: dict[str, None] = {}
    for entry in entries:
        for key in entry.metadata:
            if key not in HIDDEN_METADATA_KEYS:
                keys.setdefault(key, None)
    return list(keys)


# =============================================================================
# PLAIN CSV
# =============================================================================

def _header_sort_key(key: str):
    if key == "timestamp":
        return (0, "")
    if key == "id":
        return (1, "")
    return (2, key.lower(), key)


def convert_to_csv(rows: list[dict[str, Any]]) -> str:
    """
    Convert a list of flat dicts to CSV.

    Header is the union of all keys: "timestamp" first, then "id", then
    the rest alphabetically. Missing and None values become empty cells.
    """
    if not rows:
        return ""

    keys: set[str] = set()
    for row in rows:
        keys.update(row.keys())
    headers = sorted(keys, key=_header_sort_key)

    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(headers)
    for row in rows:
        writer.writerow([_cell(row.get(header)) for header in headers])
    return _to_text(buffer)


# =============================================================================
# DATA EXPLORER FORMAT (BACKUPS)
# =============================================================================

def _explorer_columns(entries: list[DataEntry]) -> list[str]:
    columns = list(PRIORITY_COLUMNS)
    for entry in entries:
        for key in entry.model_dump(exclude={"metadata"}):
            if key not in columns:
                columns.append(key)
    columns.extend(f"metadata.{key}" for key in _metadata_keys(entries))
    return columns


def data_explorer_csv(entries: list[DataEntry], sources: Iterable[Source]) -> str:
    """
    Backup CSV in the Data Explorer layout.

    Every data cell is quoted; empty values are written as "".
    Source IDs are replaced with source names.
    """
    if not entries:
        return NO_DATA

    source_index = _index_sources(sources)
    columns = _explorer_columns(entries)

    buffer = io.StringIO()
    csv.writer(buffer, lineterminator="\n").writerow(
        [DISPLAY_NAMES.get(column, column) for column in columns]
    )
    writer = csv.writer(buffer, lineterminator="\n", quoting=csv.QUOTE_ALL)

    for entry in entries:
        row = entry.model_dump(mode="json", exclude={"metadata"})
        cells = []
        for column in columns:
            if column.startswith("metadata."):
                value = entry.metadata.get(column[len("metadata."):])
            else:
                value = row.get(column)
            if column == "source_id" and value is not None:
                value = source_display_name(value, source_index)
            cells.append(_cell(value))
        writer.writerow(cells)

    return _to_text(buffer)


def data_explorer_json(entries: list[DataEntry], sources: Iterable[Source]) -> str:
    """Backup JSON: entries with display-name keys and metadata flattened in."""
    source_index = _index_sources(sources)
    transformed = []
    for entry in entries:
        item: dict[str, Any] = {}
        for key, value in entry.model_dump(mode="json", exclude={"metadata"}).items():
            if key == "source_id":
                item["Source"] = source_display_name(value, source_index)
            else:
                item[DISPLAY_NAMES.get(key, key)] = value
        for key, value in entry.metadata.items():
            if key not in HIDDEN_METADATA_KEYS:
                item[key] = value
        transformed.append(item)
    return json.dumps(transformed, indent=2)


# =============================================================================
# SCHEDULED EXPORT FORMAT
# =============================================================================

def scheduled_export_csv(entries: list[DataEntry], sources: Iterable[Source]) -> str:
    """Source, Created At, then one column per metadata key. All cells quoted."""
    if not entries:
        return NO_DATA

    source_index = _index_sources(sources)
    metadata_keys = _metadata_keys(entries)

    buffer = io.StringIO()
    csv.writer(buffer, lineterminator="\n").writerow(["Source", "Created At", *metadata_keys])
    writer = csv.writer(buffer, lineterminator="\n", quoting=csv.QUOTE_ALL)

    for entry in entries:
        source = source_index.get(entry.source_id) if entry.source_id else None
        source_name = source.name if source else (entry.source_id or "Unknown")
        writer.writerow([
            source_name,
            entry.created_at.strftime("%Y-%m-%d %H:%M:%S"),
            *(_cell(entry.metadata.get(key)) for key in metadata_keys),
        ])

    return _to_text(buffer)


def entries_to_json(entries: list[DataEntry]) -> str:
    return json.dumps([entry.model_dump(mode="json") for entry in entries], indent=2)


# =============================================================================
# FILE NAMES
# =============================================================================

def backup_filename(extension: str, today: date) -> str:
    return f"backup_{today.isoformat()}.{extension}"


def export_filename(name: str, extension: str, today: date) -> str:
    safe_name = re.sub(r"\s+", "_", name)
    return f"{safe_name}_{today.isoformat()}.{extension}"


def download_filename(extension: str, today: date) -> str:
    return f"data-export-{today.isoformat()}.{extension}"
