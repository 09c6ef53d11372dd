"""
Data Service
============

Everything that happens to telemetry after a device is authenticated.

THE INGEST FLOW:
---------------
    Device POSTs JSON (with X-API-Key)
            |
            v
    [Router finds the active source behind the key]
            |
            v
    [validate_payload: source schema -> global schema -> sensorId check]
            |
            v
    [ingest: build DataEntry, write raw JSON file, store entry, bump counter]
            |
            v
    Receipt {id, timestamp, source}

RAW PAYLOAD FILES:
-----------------
Every accepted payload is also written as-is (plus the fields we add) to

    <storage_dir>/<source_id>/<2026-01-06T03-00-00-000000+00-00>_<id>.json

If that write fails we log it and keep going - the database entry is
what matters.

Author: ApiAlly Team
"""

import json
import logging
import re
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from pydantic import TypeAdapter, ValidationError

from apially.models import DataEntry, DataSchema, Source
from apially.services.schema_service import SchemaService, validate_data_against_schema
from apially.services.sources_service import SourcesService
from apially.services.store import JsonStore

logger = logging.getLogger(__name__)


# Payload keys we lift into entry columns (everything else goes to metadata)
LIFTED_KEYS = {
    "id",
    "sourceId",
    "source_id",
    "sensorId",
    "sensor_id",
    "timestamp",
    "userId",
    "user_id",
}

_datetime_adapter = TypeAdapter(datetime)

# Entry IDs end up in file names
UNSAFE_ID_PATTERN = re.compile(r"[/\\]|\.\.")


class PayloadValidationError(ValueError):
    """The payload did not pass schema (or sensorId) validation."""

    def __init__(self, message: str, details: Optional[list[str]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or []


class DuplicateEntryError(ValueError):
    """An entry with this ID already exists."""


def parse_timestamp(value: Any) -> datetime:
    """
    Parse a payload timestamp (ISO-8601 string or epoch seconds).

    Naive timestamps are taken as UTC. Raises ValueError if unparseable.
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid timestamp: {value!r}")
    try:
        parsed = _datetime_adapter.validate_python(value)
    except ValidationError as e:
        raise ValueError(f"Invalid timestamp: {value!r}") from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def payload_filename(received_at: datetime, entry_id: str) -> str:
    safe_time = received_at.isoformat().replace(":", "-").replace(".", "-")
    return f"{safe_time}_{entry_id}.json"


class DataService:
    """
    Stores and serves telemetry entries.

    HOW TO USE:
    ----------
    service = DataService(store, sources_service, schema_service, storage_dir)
    service.validate_payload(source, body)      # raises PayloadValidationError
    entry = service.ingest(source, body, client_ip="10.0.0.5")
    """

    COLLECTION = "data_entries"

    def __init__(
        self,
        store: JsonStore,
        sources_service: SourcesService,
        schema_service: SchemaService,
        storage_dir: Optional[Path] = None,
    ):
        self.store = store
        self.sources_service = sources_service
        self.schema_service = schema_service
        self.storage_dir = Path(storage_dir) if storage_dir else None

    # =========================================================================
    # INGEST
    # =========================================================================

    def effective_schema(self, source: Source) -> Optional[DataSchema]:
        """The schema this source's payloads are checked against, if any."""
        if source.data_schema and not source.data_schema.is_empty():
            return source.data_schema
        global_schema = self.schema_service.get_schema()
        if not global_schema.is_empty():
            return global_schema
        return None

    def validate_payload(self, source: Source, body: dict[str, Any]):
        schema = self.effective_schema(source)
        if schema is not None:
            result = validate_data_against_schema(body, schema)
            if not result.valid:
                logger.warning(f"[{source.name}] Schema validation failed: {result.errors}")
                raise PayloadValidationError("Data validation failed", result.errors)
            return

        if not body.get("sensorId") and not body.get("sensor_id"):
            raise PayloadValidationError("Missing required field: sensorId or sensor_id")

    def ingest(
        self,
        source: Source,
        body: dict[str, Any],
        client_ip: str = "unknown",
        now: Optional[datetime] = None,
    ) -> DataEntry:
        """
        Turn a validated payload into a stored DataEntry.

        Raises:
            ValueError: If the payload timestamp can't be parsed or the id
                could escape the storage folder
            DuplicateEntryError: If the payload's id is already stored
        """
        received_at = now or datetime.now(timezone.utc)

        entry_id = str(body["id"]) if body.get("id") else str(uuid.uuid4())
        if UNSAFE_ID_PATTERN.search(entry_id):
            raise ValueError(f"Invalid id: {entry_id!r} (no '/', '\\' or '..' allowed)")
        raw_timestamp = body.get("timestamp")
        timestamp = parse_timestamp(raw_timestamp) if raw_timestamp else received_at
        sensor_id = body.get("sensorId") or body.get("sensor_id")

        metadata = {key: value for key, value in body.items() if key not in LIFTED_KEYS}
        metadata["receivedAt"] = received_at.isoformat()
        metadata["clientIp"] = client_ip

        file_name = payload_filename(received_at, entry_id)
        entry = DataEntry(
            id=entry_id,
            source_id=source.id,
            sensor_id=str(sensor_id) if sensor_id is not None else None,
            timestamp=timestamp,
            file_name=file_name,
            file_path=f"{source.id}/{file_name}",
            metadata=metadata,
            created_at=received_at,
        )

        if self.store.get(self.COLLECTION, entry_id):
            raise DuplicateEntryError(f"Data entry {entry_id} already exists")

        self._write_payload_file(entry, body)

        try:
            self.store.insert(self.COLLECTION, entry.model_dump(mode="json"))
        except KeyError as e:
            raise DuplicateEntryError(f"Data entry {entry_id} already exists") from e

        self.sources_service.record_activity(source.id)
        logger.info(f"[{source.name}] Stored entry {entry_id} (sensor: {entry.sensor_id})")
        return entry

    def _write_payload_file(self, entry: DataEntry, body: dict[str, Any]):
        if self.storage_dir is None:
            return

        enhanced = {
            **body,
            "id": entry.id,
            "sourceId": entry.source_id,
            "source_id": entry.source_id,
            "timestamp": entry.timestamp.isoformat(),
            "receivedAt": entry.metadata["receivedAt"],
            "clientIp": entry.metadata["clientIp"],
        }
        root = self.storage_dir.resolve()
        path = (root / entry.file_path).resolve()
        if not path.is_relative_to(root):
            logger.error(f"Refusing to write payload file outside {root}: {path}")
            return
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, 'w', encoding='utf-8') as f:
                json.dump(enhanced, f, indent=2, ensure_ascii=False, default=str)
        except OSError as e:
            logger.error(f"Error storing payload file {path}: {e}")

    # =========================================================================
    # READING / DELETING
    # =========================================================================

    def list_entries(
        self,
        limit: Optional[int] = 1000,
        source_id: Optional[str] = None,
    ) -> list[DataEntry]:
        """Entries newest-first by created_at."""
        rows = self.store.find(self.COLLECTION, source_id=source_id) if source_id else self.store.all(self.COLLECTION)
        entries = sorted(
            (DataEntry.model_validate(row) for row in rows),
            key=lambda e: e.created_at,
            reverse=True,
        )
        return entries[:limit] if limit else entries

    def all_entries(self) -> list[DataEntry]:
        return self.list_entries(limit=None)

    def get_entry(self, entry_id: str) -> Optional[DataEntry]:
        row = self.store.get(self.COLLECTION, entry_id)
        return DataEntry.model_validate(row) if row else None

    def delete_entry(self, entry_id: str) -> bool:
        deleted = self.store.delete(self.COLLECTION, entry_id)
        if deleted:
            logger.info(f"Deleted data entry {entry_id}")
        return deleted

    def clear(self) -> int:
        removed = self.store.clear(self.COLLECTION)
        logger.warning(f"Cleared all data entries ({removed} removed)")
        return removed

    def count(self) -> int:
        return self.store.count(self.COLLECTION)

    # =========================================================================
    # BACKUP TRACKING
    # =========================================================================

    def mark_backed_up_dropbox(self, entry_ids: list[str], when: datetime) -> int:
        return self.store.update_many(
            self.COLLECTION,
            entry_ids,
            backed_up_dropbox=True,
            last_dropbox_backup=when.isoformat(),
        )

    def mark_backed_up_email(self, entry_ids: list[str], when: datetime) -> int:
        return self.store.update_many(
            self.COLLECTION,
            entry_ids,
            backed_up_email=True,
            last_email_backup=when.isoformat(),
        )
