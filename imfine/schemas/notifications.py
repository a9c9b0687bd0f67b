"""Schemas for dispatch reports, notification history and monitor scans."""

from datetime import datetime
from typing import Any
from uuid import UUID

from ..models import ContactChannel, DeliveryStatus, NotificationType
from .base import SafetyBaseModel


class DeliveryEntryResponse(SafetyBaseModel):
    recipient: str
    destination: str | None
    channel: ContactChannel | None
    status: DeliveryStatus
    error: str | None = None
    delivered_at: datetime | None = None


class DeliveryReportResponse(SafetyBaseModel):
    """Per-recipient outcome of one dispatch."""

    event_id: UUID
    type: NotificationType
    sent_count: int
    failed_count: int
    skipped_count: int
    entries: list[DeliveryEntryResponse]

    @classmethod
    def from_report(cls, report) -> "DeliveryReportResponse":
        return cls(
            event_id=report.event_id,
            type=report.type,
            sent_count=report.sent_count,
            failed_count=report.failed_count,
            skipped_count=report.skipped_count,
            entries=[DeliveryEntryResponse.model_validate(e) for e in report.entries],
        )


class HistoryEntryResponse(SafetyBaseModel):
    """One row of the notification history."""

    delivery_id: UUID
    event_id: UUID
    type: NotificationType
    channel: ContactChannel | None
    destination: str | None
    status: DeliveryStatus
    error: str | None
    recipient: str | None
    delivered_at: datetime | None
    created_at: datetime


class ScanResponse(SafetyBaseModel):
    """Counts from one monitor scan."""

    scanned: int
    to_grace: int
    to_escalated: int
    transitioned: int
    dispatch_failures: int
    errors: list[Any] = []
