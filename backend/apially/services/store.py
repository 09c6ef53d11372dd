"""
JSON Document Store
===================

All of ApiAlly's state lives in ONE JSON file (apially_db.json):

    {
        "sources": {"<id>": {...}, ...},
        "data_entries": {"<id>": {...}, ...},
        "dropbox_configs": {...},
        "backup_logs": {...},
        "scheduled_exports": {...},
        "settings": {"schema": {...}}
    }

Every collection is a dict keyed by row ID. Rows are plain JSON dicts
(services dump pydantic models with mode="json" before handing them over).

PERSISTENCE RULES:
-----------------
- Every mutation is written straight to disk
- Writes are atomic: write to a temp file, then rename over the real one
- A corrupt file is copied to *.json.backup and we start empty
- Missing collections are created on load, so old files keep working

Author: ApiAlly Team
"""

import copy
import json
import logging
import shutil
import threading
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger(__name__)


class JsonStore:
    """
    A tiny table store on top of a JSON file.

    HOW TO USE:
    ----------
    store = JsonStore(Path("data/apially_db.json"))
    store.insert("sources", {"id": "abc", "name": "Lab Pi"})
    store.update("sources", "abc", name="Lab Pi 2")
    rows = store.find("sources", active=True)
    """

    COLLECTIONS = (
        "sources",
        "data_entries",
        "dropbox_configs",
        "backup_logs",
        "scheduled_exports",
        "settings",
    )

    def __init__(self, db_file: Path):
        self.db_file = Path(db_file)
        self._lock = threading.RLock()
        self._data: dict[str, dict[str, Any]] = {name: {} for name in self.COLLECTIONS}
        self._load_from_file()

    # =========================================================================
    # DATABASE PERSISTENCE
    # =========================================================================

    def _load_from_file(self):
        """Load all collections from the JSON file."""
        if not self.db_file.exists():
            logger.info(f"No existing database found at {self.db_file}")
            return

        try:
            with open(self.db_file, 'r', encoding='utf-8') as f:
                data = json.load(f)

            if not isinstance(data, dict):
                raise json.JSONDecodeError("Top level must be an object", "", 0)

            for name in self.COLLECTIONS:
                collection = data.get(name, {})
                if isinstance(collection, dict):
                    self._data[name] = collection
                else:
                    logger.error(f"Collection '{name}' is not an object, starting it empty")

            counts = ", ".join(f"{name}={len(self._data[name])}" for name in self.COLLECTIONS)
            logger.info(f"Loaded database from {self.db_file} ({counts})")
        except json.JSONDecodeError as e:
            logger.error(f"Error parsing database JSON: {e}")
            # Backup corrupted file
            backup_path = self.db_file.with_suffix('.json.backup')
            try:
                shutil.copy2(self.db_file, backup_path)
                logger.warning(f"Corrupted database backed up to {backup_path}")
            except OSError as backup_err:
                logger.error(f"Failed to backup corrupted database: {backup_err}")

    def _save_to_file(self):
        """Save all collections to the JSON file (atomic write)."""
        self.db_file.parent.mkdir(parents=True, exist_ok=True)
        temp_file = self.db_file.with_suffix('.json.tmp')
        try:
            with open(temp_file, 'w', encoding='utf-8') as f:
                json.dump(self._data, f, indent=2, ensure_ascii=False)
            temp_file.replace(self.db_file)
        except OSError as e:
            logger.error(f"OS error saving database: {e}")
            raise

    # =========================================================================
    # READS
    # =========================================================================

    def all(self, collection: str) -> list[dict]:
        """Every row in a collection (copies, safe to mutate)."""
        with self._lock:
            return [copy.deepcopy(row) for row in self._table(collection).values()]

    def get(self, collection: str, row_id: str) -> Optional[dict]:
        with self._lock:
            row = self._table(collection).get(row_id)
            return copy.deepcopy(row) if row is not None else None

    def find(self, collection: str, **equals) -> list[dict]:
        """Rows whose fields equal every keyword given."""
        return [
            row for row in self.all(collection)
            if all(row.get(key) == value for key, value in equals.items())
        ]

    def find_one(self, collection: str, **equals) -> Optional[dict]:
        rows = self.find(collection, **equals)
        return rows[0] if rows else None

    def count(self, collection: str) -> int:
        with self._lock:
            return len(self._table(collection))

    # =========================================================================
    # WRITES
    # =========================================================================

    def insert(self, collection: str, row: dict) -> dict:
        """Insert a row. Raises KeyError if the ID is already taken."""
        row_id = row["id"]
        with self._lock:
            table = self._table(collection)
            if row_id in table:
                raise KeyError(f"{collection} already has a row with id {row_id}")
            table[row_id] = copy.deepcopy(row)
            self._save_to_file()
        return copy.deepcopy(row)

    def update(self, collection: str, row_id: str, **fields) -> Optional[dict]:
        """Merge fields into a row. Returns the updated row, or None if missing."""
        with self._lock:
            table = self._table(collection)
            if row_id not in table:
                return None
            table[row_id].update(copy.deepcopy(fields))
            self._save_to_file()
            return copy.deepcopy(table[row_id])

    def update_many(self, collection: str, row_ids: list[str], **fields) -> int:
        """Apply the same fields to several rows with a single write."""
        with self._lock:
            table = self._table(collection)
            updated = 0
            for row_id in row_ids:
                if row_id in table:
                    table[row_id].update(copy.deepcopy(fields))
                    updated += 1
            if updated:
                self._save_to_file()
            return updated

    def delete(self, collection: str, row_id: str) -> bool:
        with self._lock:
            table = self._table(collection)
            if row_id not in table:
                return False
            del table[row_id]
            self._save_to_file()
            return True

    def clear(self, collection: str) -> int:
        """Remove every row in a collection. Returns how many were removed."""
        with self._lock:
            table = self._table(collection)
            removed = len(table)
            table.clear()
            self._save_to_file()
            return removed

    # =========================================================================
    # SETTINGS
    # =========================================================================

    def get_setting(self, key: str, default: Any = None) -> Any:
        with self._lock:
            value = self._data["settings"].get(key, default)
            return copy.deepcopy(value)

    def set_setting(self, key: str, value: Any):
        with self._lock:
            self._data["settings"][key] = copy.deepcopy(value)
            self._save_to_file()

    def _table(self, collection: str) -> dict[str, Any]:
        if collection not in self._data:
            raise KeyError(f"Unknown collection: {collection}")
        return self._data[collection]
