"""SQLAlchemy ORM Models for the check-in service.

Subjects are the monitored users; Contacts are the people they trust.
NotificationEvent/NotificationDelivery and StateEvent are append-only
audit tables.
"""

from datetime import datetime, timedelta
from enum import Enum as PyEnum
from typing import Any
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, JSONType, TimestampMixin, UUIDMixin, as_utc, utcnow


# =============================================================================
# ENUMS
# =============================================================================


class SubjectState(str, PyEnum):
    ONBOARDING = "ONBOARDING"
    ACTIVE = "ACTIVE"
    GRACE = "GRACE"
    ESCALATED = "ESCALATED"


class ContactChannel(str, PyEnum):
    PUSH = "PUSH"
    EMAIL = "EMAIL"
    SMS = "SMS"


class ContactStatus(str, PyEnum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"


class NotificationType(str, PyEnum):
    ESCALATION_ALERT = "ESCALATION_ALERT"
    RESOLUTION_ALERT = "RESOLUTION_ALERT"
    TEST_ALERT = "TEST_ALERT"
    CONTACT_REQUEST = "CONTACT_REQUEST"
    ACKNOWLEDGMENT = "ACKNOWLEDGMENT"


class DeliveryStatus(str, PyEnum):
    SENT = "SENT"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"


def _enum(enum_cls: type[PyEnum], name: str) -> Enum:
    return Enum(enum_cls, name=name, values_callable=lambda x: [e.value for e in x])


# =============================================================================
# SUBJECT
# =============================================================================


class Subject(Base, UUIDMixin, TimestampMixin):
    """The monitored user."""

    __tablename__ = "subjects"

    auth_user_id: Mapped[str] = mapped_column(
        String(255), unique=True, nullable=False,
        comment="Identity provider user id (token subject)",
    )
    email: Mapped[str | None] = mapped_column(String(255))
    phone: Mapped[str | None] = mapped_column(String(50))
    display_name: Mapped[str | None] = mapped_column(String(255))
    push_token: Mapped[str | None] = mapped_column(
        String(255), comment="Registered Expo push token"
    )

    state: Mapped[SubjectState] = mapped_column(
        _enum(SubjectState, "subject_state"),
        default=SubjectState.ONBOARDING,
        nullable=False,
    )
    last_confirmed_at: Mapped[datetime | None] = mapped_column()
    first_checkin_completed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    checkin_interval_minutes: Mapped[int] = mapped_column(Integer, default=24 * 60, nullable=False)
    grace_period_minutes: Mapped[int] = mapped_column(Integer, default=60, nullable=False)
    vacation_mode: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    reminder_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    reminder_offset_minutes: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    sound_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    sound_selection: Mapped[str] = mapped_column(String(50), default="default", nullable=False)
    sound_volume: Mapped[float] = mapped_column(Float, default=1.0, nullable=False)
    timezone: Mapped[str | None] = mapped_column(String(64))

    # Relationships
    contacts: Mapped[list["Contact"]] = relationship(
        back_populates="owner",
        foreign_keys="Contact.owner_id",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    state_events: Mapped[list["StateEvent"]] = relationship(
        back_populates="subject",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    notification_events: Mapped[list["NotificationEvent"]] = relationship(
        back_populates="subject",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        CheckConstraint("checkin_interval_minutes > 0", name="interval_positive"),
        CheckConstraint("grace_period_minutes >= 0", name="grace_non_negative"),
        CheckConstraint("sound_volume >= 0 AND sound_volume <= 1", name="volume_range"),
        Index("idx_subjects_state", "state"),
        Index("idx_subjects_email", "email"),
        Index("idx_subjects_phone", "phone"),
    )

    @property
    def checkin_interval(self) -> timedelta:
        return timedelta(minutes=self.checkin_interval_minutes)

    @property
    def grace_period(self) -> timedelta:
        return timedelta(minutes=self.grace_period_minutes)

    @property
    def due_at(self) -> datetime | None:
        if self.last_confirmed_at is None:
            return None
        return as_utc(self.last_confirmed_at) + self.checkin_interval

    @property
    def grace_ends_at(self) -> datetime | None:
        due_at = self.due_at
        if due_at is None:
            return None
        return due_at + self.grace_period

    def next_reminder_at(self, now: datetime | None = None) -> datetime | None:
        """When the client should fire its local check-in reminder."""
        due_at = self.due_at
        if not self.reminder_enabled or due_at is None:
            return None
        reminder_at = due_at - timedelta(minutes=self.reminder_offset_minutes)
        if reminder_at <= (now or utcnow()):
            return None
        return reminder_at

    @property
    def label(self) -> str:
        """Name used in notification text."""
        return self.display_name or self.email or self.phone or "Your contact"


# =============================================================================
# CONTACTS
# =============================================================================


class Contact(Base, UUIDMixin, TimestampMixin):
    """A trusted recipient configured by a subject.

    status is NULL until the first invite succeeds.
    """

    __tablename__ = "contacts"

    owner_id: Mapped[UUID] = mapped_column(
        ForeignKey("subjects.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    channel: Mapped[ContactChannel] = mapped_column(
        _enum(ContactChannel, "contact_channel"), nullable=False
    )
    destination: Mapped[str] = mapped_column(
        String(255), nullable=False,
        comment="Push token, email address or phone number",
    )
    status: Mapped[ContactStatus | None] = mapped_column(
        _enum(ContactStatus, "contact_status"), nullable=True
    )
    linked_subject_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("subjects.id", ondelete="SET NULL"), nullable=True
    )
    invite_sent_at: Mapped[datetime | None] = mapped_column()
    confirmed_at: Mapped[datetime | None] = mapped_column()

    # Relationships
    owner: Mapped["Subject"] = relationship(
        back_populates="contacts", foreign_keys=[owner_id]
    )
    linked_subject: Mapped["Subject | None"] = relationship(
        foreign_keys=[linked_subject_id]
    )

    __table_args__ = (
        Index("idx_contacts_owner", "owner_id"),
        Index("idx_contacts_destination", "destination"),
        Index("idx_contacts_linked", "linked_subject_id", "status"),
    )


# =============================================================================
# NOTIFICATIONS
# =============================================================================


class NotificationEvent(Base, UUIDMixin):
    """One dispatch call. Append-only."""

    __tablename__ = "notification_events"

    subject_id: Mapped[UUID] = mapped_column(
        ForeignKey("subjects.id", ondelete="CASCADE"), nullable=False
    )
    type: Mapped[NotificationType] = mapped_column(
        _enum(NotificationType, "notification_type"), nullable=False
    )
    meta: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )

    # Relationships
    subject: Mapped["Subject"] = relationship(back_populates="notification_events")
    deliveries: Mapped[list["NotificationDelivery"]] = relationship(
        back_populates="event",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        Index("idx_notification_events_subject", "subject_id", "created_at"),
    )


class NotificationDelivery(Base, UUIDMixin):
    """Outcome of one (event, recipient) pair. Append-only."""

    __tablename__ = "notification_deliveries"

    event_id: Mapped[UUID] = mapped_column(
        ForeignKey("notification_events.id", ondelete="CASCADE"), nullable=False
    )
    channel: Mapped[ContactChannel | None] = mapped_column(
        _enum(ContactChannel, "contact_channel"), nullable=True
    )
    destination: Mapped[str | None] = mapped_column(String(255))
    status: Mapped[DeliveryStatus] = mapped_column(
        _enum(DeliveryStatus, "delivery_status"), nullable=False
    )
    error: Mapped[str | None] = mapped_column(Text)
    delivered_at: Mapped[datetime | None] = mapped_column()
    recipient_subject_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("subjects.id", ondelete="SET NULL"), nullable=True
    )
    # Not a foreign key: the audit trail outlives the contact row.
    contact_id: Mapped[UUID | None] = mapped_column()
    payload: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )

    # Relationships
    event: Mapped["NotificationEvent"] = relationship(back_populates="deliveries")

    __table_args__ = (
        Index("idx_notification_deliveries_destination", "destination", "created_at"),
        Index("idx_notification_deliveries_event", "event_id"),
    )


# =============================================================================
# STATE AUDIT
# =============================================================================


class StateEvent(Base, UUIDMixin):
    """One subject state transition. Append-only."""

    __tablename__ = "state_events"

    subject_id: Mapped[UUID] = mapped_column(
        ForeignKey("subjects.id", ondelete="CASCADE"), nullable=False
    )
    from_state: Mapped[SubjectState | None] = mapped_column(
        _enum(SubjectState, "subject_state"), nullable=True
    )
    to_state: Mapped[SubjectState] = mapped_column(
        _enum(SubjectState, "subject_state"), nullable=False
    )
    reason: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )

    subject: Mapped["Subject"] = relationship(back_populates="state_events")

    __table_args__ = (
        Index("idx_state_events_subject", "subject_id", "created_at"),
    )
