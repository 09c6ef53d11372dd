"""
Schema Models
=============
The data schema describes what a telemetry payload should look like:
which fields exist, what JSON type each one is, and which are required.

On the wire it keeps the dashboard's camelCase shape:

    {
        "fieldTypes": {"sensorId": "string", "temperature": "number"},
        "requiredFields": ["sensorId"]
    }
"""

from pydantic import BaseModel, ConfigDict, Field
from typing import Any
from enum import Enum


class FieldType(str, Enum):
    """JSON types a schema field can declare."""
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    OBJECT = "object"
    ARRAY = "array"


class DataSchema(BaseModel):
    """
    A field-type map plus the list of required fields.

    An empty schema (no types, no required fields) means "not configured".
    """
    model_config = ConfigDict(populate_by_name=True)

    field_types: dict[str, FieldType] = Field(
        default_factory=dict,
        alias="fieldTypes",
        description="Field name -> expected JSON type"
    )
    required_fields: list[str] = Field(
        default_factory=list,
        alias="requiredFields",
        description="Fields that must be present and non-empty"
    )

    def is_empty(self) -> bool:
        return not self.field_types and not self.required_fields


class SchemaResponse(BaseModel):
    schema_: DataSchema = Field(..., alias="schema")

    model_config = ConfigDict(populate_by_name=True)


class ValidateDataRequest(BaseModel):
    """Body for PUT /api/schema/validate."""
    data: dict[str, Any] = Field(..., description="A sample payload to check")


class ValidationResult(BaseModel):
    valid: bool
    errors: list[str] = Field(default_factory=list)


class InferSchemaResponse(BaseModel):
    schema_: DataSchema = Field(..., alias="schema")
    sample_size: int = Field(..., description="Number of entries the schema was inferred from")
    applied: bool = Field(default=False, description="Whether the schema was saved")

    model_config = ConfigDict(populate_by_name=True)
