"""
Scheduled Export Service
========================

Recurring exports of all stored data, as CSV or JSON.

HOW A SCHEDULED EXPORT RUNS:
---------------------------
Every few minutes the BackupManager asks us to process_due_exports():

    1. Find active exports whose next_export is in the past
    2. Build the file (CSV: Source, Created At, metadata... / JSON: raw entries)
    3. delivery == "email"? Send it as an attachment
    4. Stamp last_export = now, next_export = calculate_next_export(...)

If step 3 blows up, the export is NOT rescheduled, so the next sweep
tries again. If SMTP simply isn't configured we log it and move on.

NEXT EXPORT TIME:
----------------
    daily    -> tomorrow        at 08:00 UTC
    weekly   -> in 7 days       at 08:00 UTC
    monthly  -> same day next month (clamped, Jan 31 -> Feb 28) at 08:00 UTC

Author: ApiAlly Team
"""

import asyncio
import calendar
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from apially.models import (
    CreateScheduledExportRequest,
    DataEntry,
    ExportDelivery,
    ExportFormat,
    ExportFrequency,
    ScheduledExport,
    Source,
    UpdateScheduledExportRequest,
)
from apially.services.data_service import DataService
from apially.services.email_service import EmailService
from apially.services.sources_service import SourcesService
from apially.services.store import JsonStore
from apially.utils.csv_export import entries_to_json, scheduled_export_csv
from apially.utils.validation import validate_email

logger = logging.getLogger(__name__)


EXPORT_HOUR = 8


def add_months(moment: datetime, months: int) -> datetime:
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def calculate_next_export(frequency: ExportFrequency, from_time: datetime) -> datetime:
    """When an export should run next, counted from from_time."""
    if frequency == ExportFrequency.DAILY:
        next_time = from_time + timedelta(days=1)
    elif frequency == ExportFrequency.WEEKLY:
        next_time = from_time + timedelta(days=7)
    else:
        next_time = add_months(from_time, 1)
    return next_time.replace(hour=EXPORT_HOUR, minute=0, second=0, microsecond=0)


def build_export_content(
    export_format: ExportFormat,
    entries: list[DataEntry],
    sources: list[Source],
) -> str:
    if export_format == ExportFormat.CSV:
        return scheduled_export_csv(entries, sources)
    return entries_to_json(entries)


class ExportService:
    """CRUD and processing for scheduled exports."""

    COLLECTION = "scheduled_exports"

    def __init__(
        self,
        store: JsonStore,
        data_service: DataService,
        sources_service: SourcesService,
        email_service: EmailService,
    ):
        self.store = store
        self.data_service = data_service
        self.sources_service = sources_service
        self.email_service = email_service

    # =========================================================================
    # CRUD
    # =========================================================================

    def list_exports(self) -> list[ScheduledExport]:
        exports = [ScheduledExport.model_validate(row) for row in self.store.all(self.COLLECTION)]
        return sorted(exports, key=lambda e: e.created_at, reverse=True)

    def get_export(self, export_id: str) -> Optional[ScheduledExport]:
        row = self.store.get(self.COLLECTION, export_id)
        return ScheduledExport.model_validate(row) if row else None

    @staticmethod
    def _check_delivery(export: ScheduledExport):
        if export.delivery == ExportDelivery.EMAIL and not validate_email(export.email or ""):
            raise ValueError("A valid email address is required for email delivery")

    def create_export(
        self,
        request: CreateScheduledExportRequest,
        now: Optional[datetime] = None,
    ) -> ScheduledExport:
        now = now or datetime.now(timezone.utc)
        export = ScheduledExport(
            id=str(uuid.uuid4()),
            name=request.name.strip(),
            frequency=request.frequency,
            format=request.format,
            delivery=request.delivery,
            email=request.email,
            active=request.active,
            next_export=calculate_next_export(request.frequency, now),
            created_at=now,
        )
        self._check_delivery(export)
        self.store.insert(self.COLLECTION, export.model_dump(mode="json"))
        logger.info(f"Scheduled export created: {export.name} ({export.frequency.value}, next {export.next_export})")
        return export

    def update_export(self, export_id: str, request: UpdateScheduledExportRequest) -> Optional[ScheduledExport]:
        export = self.get_export(export_id)
        if not export:
            return None

        updates = request.model_dump(exclude_unset=True)
        for key, value in updates.items():
            if value is not None or key == "email":
                setattr(export, key, value)

        if "frequency" in updates and updates["frequency"] is not None:
            export.next_export = calculate_next_export(export.frequency, datetime.now(timezone.utc))

        self._check_delivery(export)
        self.store.update(self.COLLECTION, export.id, **export.model_dump(mode="json"))
        return export

    def delete_export(self, export_id: str) -> bool:
        return self.store.delete(self.COLLECTION, export_id)

    # =========================================================================
    # PROCESSING
    # =========================================================================

    def due_exports(self, now: datetime) -> list[ScheduledExport]:
        return [
            export for export in self.list_exports()
            if export.active and export.next_export is not None and export.next_export <= now
        ]

    async def _run(self, export: ScheduledExport, now: datetime) -> ScheduledExport:
        """Generate, deliver and reschedule one export. Raises if delivery fails."""
        entries = self.data_service.all_entries()
        sources = self.sources_service.list_sources()
        content = build_export_content(export.format, entries, sources)

        emailed = False
        if export.delivery == ExportDelivery.EMAIL and export.email:
            emailed = await asyncio.to_thread(
                self.email_service.send_export_email,
                to_email=export.email,
                export_name=export.name,
                export_format=export.format.value,
                frequency=export.frequency.value,
                record_count=len(entries),
                content=content,
            )
            if not emailed:
                logger.warning(f"[{export.name}] SMTP not configured, export generated but not emailed")

        if emailed:
            self.data_service.mark_backed_up_email([entry.id for entry in entries], now)

        export.last_export = now
        export.next_export = calculate_next_export(export.frequency, now)
        self.store.update(
            self.COLLECTION,
            export.id,
            last_export=export.last_export.isoformat(),
            next_export=export.next_export.isoformat(),
        )
        logger.info(f"[{export.name}] Export processed ({len(entries)} records, next {export.next_export})")
        return export

    async def process_due_exports(self, now: Optional[datetime] = None) -> dict:
        """
        Run every export that is due.

        Returns:
            {"message": "Processed 2 exports", "processed": ["Daily", "Weekly"]}
        """
        now = now or datetime.now(timezone.utc)
        due = self.due_exports(now)
        if not due:
            return {"message": "No exports due", "processed": []}

        logger.info(f"Found {len(due)} due exports")
        processed = []
        for export in due:
            try:
                await self._run(export, now)
                processed.append(export.name)
            except Exception as e:
                logger.error(f"Error processing export {export.name}: {type(e).__name__}: {e}", exc_info=True)

        return {"message": f"Processed {len(processed)} exports", "processed": processed}

    async def run_export(self, export_id: str, now: Optional[datetime] = None) -> Optional[ScheduledExport]:
        """Run one export right now, due or not. Delivery errors propagate."""
        export = self.get_export(export_id)
        if not export:
            return None
        return await self._run(export, now or datetime.now(timezone.utc))
