"""
Schema Service
==============

Checks incoming payloads against a DataSchema, and works out a schema
from data we already have.

TYPE NAMES:
----------
We use JSON type names, since that's what devices send:

    True / False        -> "boolean"   (checked BEFORE number, bool is an int in Python)
    1, 2.5              -> "number"
    "abc"               -> "string"
    [1, 2]              -> "array"
    {"a": 1}            -> "object"
    anything else       -> "unknown"

WHERE SCHEMAS COME FROM:
-----------------------
- Global schema: stored in the settings collection under "schema"
- Per-source schema: stored on the source itself
The data receiver prefers the source's schema and falls back to the global one.

Author: ApiAlly Team
"""

import logging
from collections import Counter
from typing import Any, Optional

from apially.models import DataEntry, DataSchema, FieldType, ValidationResult
from apially.services.store import JsonStore

logger = logging.getLogger(__name__)


SCHEMA_SETTING_KEY = "schema"

# Metadata keys the data receiver adds itself
SYSTEM_FIELDS = {"receivedAt", "clientIp"}


def get_data_type(value: Any) -> str:
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "array"
    if isinstance(value, dict):
        return "object"
    return "unknown"


def _is_empty(value: Any) -> bool:
    return value is None or value == ""


def validate_data_against_schema(data: dict[str, Any], schema: DataSchema) -> ValidationResult:
    """
    Check a payload against a schema.

    - Required fields must be present, not None and not ""
    - Typed fields are only checked when they have a value
    """
    errors = []

    for field in schema.required_fields:
        if _is_empty(data.get(field)):
            errors.append(f"Missing required field: {field}")

    for field, expected in schema.field_types.items():
        value = data.get(field)
        if _is_empty(value):
            continue
        actual = get_data_type(value)
        if actual != expected.value:
            errors.append(f"Field {field} should be type {expected.value}, got {actual}")

    return ValidationResult(valid=not errors, errors=errors)


def validate_schema_structure(schema: DataSchema) -> list[str]:
    """
    Sanity-check a schema before saving it.

    Types are already enforced by the FieldType enum, so the only thing
    left is that every required field has a declared type.
    """
    return [
        f"Required field '{field}' has no type in fieldTypes"
        for field in schema.required_fields
        if field not in schema.field_types
    ]


def infer_schema(entries: list[DataEntry]) -> DataSchema:
    """
    Guess a schema from stored entries.

    Only the device's own fields (entry metadata) are looked at. Entry
    columns are left out because an applied schema is checked against raw
    payloads, where sensorId may be camelCase and timestamp is optional.

    - A field's type is its most common known type (ties: first seen wins)
    - A field is required when every entry has a non-empty value for it
    - Field order follows first appearance
    """
    type_counts: dict[str, Counter] = {}
    present_counts: Counter = Counter()

    for entry in entries:
        for field, value in entry.metadata.items():
            if field in SYSTEM_FIELDS:
                continue
            counter = type_counts.setdefault(field, Counter())
            if _is_empty(value):
                continue
            present_counts[field] += 1
            data_type = get_data_type(value)
            if data_type != "unknown":
                counter[data_type] += 1

    field_types: dict[str, FieldType] = {}
    for field, counter in type_counts.items():
        if counter:
            # Counter.most_common keeps insertion order for ties
            field_types[field] = FieldType(counter.most_common(1)[0][0])

    required = [
        field for field in field_types
        if entries and present_counts[field] == len(entries)
    ]

    return DataSchema(field_types=field_types, required_fields=required)


# =============================================================================
# GLOBAL SCHEMA STORAGE
# =============================================================================

class SchemaService:
    """Reads and writes the global schema."""

    def __init__(self, store: JsonStore):
        self.store = store

    def get_schema(self) -> DataSchema:
        raw = self.store.get_setting(SCHEMA_SETTING_KEY)
        if not raw:
            return DataSchema()
        return DataSchema.model_validate(raw)

    def save_schema(self, schema: DataSchema) -> DataSchema:
        """Replace the global schema. Raises ValueError if it is inconsistent."""
        errors = validate_schema_structure(schema)
        if errors:
            raise ValueError("; ".join(errors))
        self.store.set_setting(SCHEMA_SETTING_KEY, schema.model_dump(mode="json", by_alias=True))
        logger.info(
            f"Global schema saved ({len(schema.field_types)} fields, "
            f"{len(schema.required_fields)} required)"
        )
        return schema

    def validate(self, data: dict[str, Any], schema: Optional[DataSchema] = None) -> ValidationResult:
        return validate_data_against_schema(data, schema or self.get_schema())
