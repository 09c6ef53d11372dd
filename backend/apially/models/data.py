"""
Data Entry Models
=================
Pydantic models for the telemetry entries we store.

Every accepted POST to the data receiver becomes one DataEntry. The
well-known keys (id, sensorId, timestamp) are lifted into columns and
everything else the device sent lands in `metadata`.

Author: ApiAlly Team
"""

from pydantic import BaseModel, Field
from typing import Any, Optional
from datetime import datetime


class DataEntry(BaseModel):
    """
    A single piece of telemetry.

    Fields:
        id: Entry ID (the payload's own "id", or a generated UUID)
        source_id: Source that sent it (None if the source was deleted)
        sensor_id: Device-reported sensor identifier
        timestamp: Reading time (payload "timestamp", or receive time)
        file_name: Name of the raw payload file in storage
        file_path: "<source_id>/<file_name>"
        metadata: All other payload fields, plus receivedAt and clientIp
        created_at: When we stored it
        backed_up_dropbox / last_dropbox_backup: Dropbox backup tracking
        backed_up_email / last_email_backup: Email export tracking
    """
    id: str
    source_id: Optional[str] = None
    sensor_id: Optional[str] = None
    timestamp: datetime
    file_name: Optional[str] = None
    file_path: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    backed_up_dropbox: bool = False
    last_dropbox_backup: Optional[datetime] = None
    backed_up_email: bool = False
    last_email_backup: Optional[datetime] = None

    def flatten(self) -> dict[str, Any]:
        """
        Entry columns merged with metadata, the shape the Data Explorer
        table and the CSV download use.
        """
        row = self.model_dump(mode="json", exclude={"metadata"})
        for key, value in self.metadata.items():
            row.setdefault(key, value)
        return row


class DataListResponse(BaseModel):
    entries: list[DataEntry]
    total: int


class IngestReceipt(BaseModel):
    id: str
    timestamp: datetime
    source: str


class IngestResponse(BaseModel):
    """What the data receiver returns on success."""
    success: bool = True
    message: str = "Data received and processed successfully"
    receipt: IngestReceipt


class ClearDataResponse(BaseModel):
    success: bool = True
    deleted: int
