"""Read-only notification history for a subject."""

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import get_settings
from ..models import (
    ContactChannel,
    DeliveryStatus,
    NotificationDelivery,
    NotificationEvent,
    NotificationType,
)


@dataclass
class HistoryEntry:
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


async def get_notification_history(
    session: AsyncSession,
    subject_id: UUID,
    limit: int | None = None,
) -> list[HistoryEntry]:
    """Deliveries of the subject's own events, newest first."""
    limit = limit or get_settings().notification_history_limit
    result = await session.execute(
        select(NotificationDelivery, NotificationEvent.type)
        .join(NotificationEvent, NotificationDelivery.event_id == NotificationEvent.id)
        .where(NotificationEvent.subject_id == subject_id)
        .order_by(NotificationDelivery.created_at.desc(), NotificationEvent.created_at.desc())
        .limit(limit)
    )
    return [
        HistoryEntry(
            delivery_id=delivery.id,
            event_id=delivery.event_id,
            type=event_type,
            channel=delivery.channel,
            destination=delivery.destination,
            status=delivery.status,
            error=delivery.error,
            recipient=(delivery.payload or {}).get("recipient"),
            delivered_at=delivery.delivered_at,
            created_at=delivery.created_at,
        )
        for delivery, event_type in result.all()
    ]
