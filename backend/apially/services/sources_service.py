"""
Sources Service
===============

Keeps track of every data source (device) that is allowed to send us data.

WHAT IT DOES:
------------
1. Registers sources and hands out their API keys
2. Looks up the ACTIVE source behind an API key (used by the data receiver)
3. Counts how much data each source has sent (data_count / last_active)
4. Stores an optional per-source schema

API KEYS:
--------
Keys are 32 lowercase hex characters from secrets.token_hex(16).
Regenerating a key invalidates the old one immediately.

Author: ApiAlly Team
"""

import logging
import secrets
import uuid
from datetime import datetime, timezone
from typing import Optional

from apially.models import (
    CreateSourceRequest,
    DataSchema,
    Source,
    SourceStats,
    UpdateSourceRequest,
)
from apially.services.schema_service import validate_schema_structure
from apially.services.store import JsonStore

logger = logging.getLogger(__name__)


def generate_api_key() -> str:
    return secrets.token_hex(16)


class SourcesService:
    """CRUD and bookkeeping for data sources."""

    COLLECTION = "sources"

    def __init__(self, store: JsonStore):
        self.store = store

    def _save(self, source: Source) -> Source:
        self.store.update(self.COLLECTION, source.id, **source.model_dump(mode="json", by_alias=True))
        return source

    # =========================================================================
    # GETTING SOURCES
    # =========================================================================

    def list_sources(self) -> list[Source]:
        """All sources, ordered by name."""
        sources = [Source.model_validate(row) for row in self.store.all(self.COLLECTION)]
        return sorted(sources, key=lambda s: s.name.lower())

    def get_source(self, source_id: str) -> Optional[Source]:
        row = self.store.get(self.COLLECTION, source_id)
        return Source.model_validate(row) if row else None

    def get_active_by_api_key(self, api_key: str) -> Optional[Source]:
        """The active source that owns this key, or None."""
        if not api_key:
            return None
        row = self.store.find_one(self.COLLECTION, api_key=api_key, active=True)
        return Source.model_validate(row) if row else None

    def name_lookup(self) -> dict[str, str]:
        return {source.id: source.name for source in self.list_sources()}

    # =========================================================================
    # ADDING / CHANGING SOURCES
    # =========================================================================

    def create_source(self, request: CreateSourceRequest) -> Source:
        source = Source(
            id=str(uuid.uuid4()),
            name=request.name.strip(),
            url=request.url,
            api_key=generate_api_key(),
            active=True,
            data_count=0,
            created_at=datetime.now(timezone.utc),
        )
        self.store.insert(self.COLLECTION, source.model_dump(mode="json", by_alias=True))
        logger.info(f"Source created: {source.name} ({source.id})")
        return source

    def update_source(self, source_id: str, request: UpdateSourceRequest) -> Optional[Source]:
        source = self.get_source(source_id)
        if not source:
            return None

        updates = request.model_dump(exclude_unset=True)
        for key, value in updates.items():
            if value is not None:
                setattr(source, key, value.strip() if key == "name" else value)

        return self._save(source)

    def delete_source(self, source_id: str) -> bool:
        """
        Delete a source. Its data entries stay put and show up as
        "Unknown (xxxxxxxx...)" in exports.
        """
        deleted = self.store.delete(self.COLLECTION, source_id)
        if deleted:
            logger.info(f"Source deleted: {source_id}")
        return deleted

    def regenerate_api_key(self, source_id: str) -> Optional[Source]:
        source = self.get_source(source_id)
        if not source:
            return None
        source.api_key = generate_api_key()
        logger.info(f"API key regenerated for source {source.name}")
        return self._save(source)

    def record_activity(self, source_id: str, count: int = 1) -> Optional[Source]:
        """Bump data_count and stamp last_active. Called once per accepted entry."""
        source = self.get_source(source_id)
        if not source:
            return None
        source.data_count += count
        source.last_active = datetime.now(timezone.utc)
        return self._save(source)

    # =========================================================================
    # SCHEMAS
    # =========================================================================

    def set_schema(self, source_id: str, schema: Optional[DataSchema]) -> Optional[Source]:
        """Attach a schema to a source (None clears it)."""
        if schema is not None:
            errors = validate_schema_structure(schema)
            if errors:
                raise ValueError("; ".join(errors))

        source = self.get_source(source_id)
        if not source:
            return None
        source.data_schema = schema
        return self._save(source)

    def set_schema_by_api_key(self, api_key: str, schema: DataSchema) -> Optional[Source]:
        """Let a device (which only knows its key) publish its own schema."""
        source = self.get_active_by_api_key(api_key)
        if not source:
            return None
        return self.set_schema(source.id, schema)

    # =========================================================================
    # STATS
    # =========================================================================

    def get_stats(self) -> SourceStats:
        sources = self.list_sources()
        return SourceStats(
            total_sources=len(sources),
            active_sources=sum(1 for s in sources if s.active),
            total_data_points=sum(s.data_count for s in sources),
        )
