"""SQLAlchemy ORM Models for ImFine."""

from .base import Base, TimestampMixin, UUIDMixin, as_utc, utcnow
from .models import (
    # Enums
    ContactChannel,
    ContactStatus,
    DeliveryStatus,
    NotificationType,
    SubjectState,
    # Subjects & contacts
    Contact,
    Subject,
    # Audit
    NotificationDelivery,
    NotificationEvent,
    StateEvent,
)

__all__ = [
    # Base
    "Base",
    "UUIDMixin",
    "TimestampMixin",
    "as_utc",
    "utcnow",
    # Enums
    "SubjectState",
    "ContactChannel",
    "ContactStatus",
    "NotificationType",
    "DeliveryStatus",
    # Subjects & contacts
    "Subject",
    "Contact",
    # Audit
    "NotificationEvent",
    "NotificationDelivery",
    "StateEvent",
]
