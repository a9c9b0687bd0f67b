"""
Notification Dispatch Engine.

Resolves who should hear about an event, picks a channel per recipient with
fallback, suppresses repeats inside the cooldown window and records one
NotificationDelivery per recipient under a fresh NotificationEvent.

Partial failure is normal: the engine always finishes the recipient list and
reports per-recipient outcomes. Only an unknown subject or a failed event
write aborts a dispatch.
"""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..core.config import Settings, get_settings
from ..core.errors import DispatchError, InvalidOperationError, NotFoundError
from ..models import (
    Contact,
    ContactChannel,
    ContactStatus,
    DeliveryStatus,
    NotificationDelivery,
    NotificationEvent,
    NotificationType,
    Subject,
    utcnow,
)
from .channels import ChannelRegistry, DeliveryResult
from .recipients import ContactRecipient, DirectedRecipient, Recipient
from .templates import Actor, RenderedMessage, render_message

logger = logging.getLogger(__name__)


# =============================================================================
# CONFIGURATION
# =============================================================================

REASON_NO_CHANNEL = "no valid channel configured"
REASON_COOLDOWN = "cooldown active"

# Cooldown only suppresses repeats within the same class. A test alert must
# never swallow a real escalation.
SEVERITY_CLASSES: dict[NotificationType, str] = {
    NotificationType.ESCALATION_ALERT: "urgent",
    NotificationType.RESOLUTION_ALERT: "resolution",
    NotificationType.TEST_ALERT: "test",
    NotificationType.CONTACT_REQUEST: "notice",
    NotificationType.ACKNOWLEDGMENT: "notice",
}


def severity_class(notification_type: NotificationType) -> str:
    return SEVERITY_CLASSES[notification_type]


def same_class_types(notification_type: NotificationType) -> list[NotificationType]:
    wanted = severity_class(notification_type)
    return [t for t, cls in SEVERITY_CLASSES.items() if cls == wanted]


@dataclass
class DispatchConfig:
    """Configuration for dispatch behavior."""

    cooldown_minutes: int = 5
    test_alert_bypasses_cooldown: bool = False

    # Per-send time bound so one hanging provider cannot stall the list
    channel_timeout_seconds: float = 5.0

    # Recipients processed concurrently within one dispatch
    concurrency: int = 5

    @classmethod
    def from_settings(cls, settings: Settings) -> "DispatchConfig":
        return cls(
            cooldown_minutes=settings.notification_cooldown_minutes,
            test_alert_bypasses_cooldown=settings.test_alert_bypasses_cooldown,
            channel_timeout_seconds=settings.channel_timeout_seconds,
            concurrency=settings.dispatch_concurrency,
        )

    def bypasses_cooldown(self, notification_type: NotificationType) -> bool:
        if notification_type == NotificationType.RESOLUTION_ALERT:
            return True
        if notification_type == NotificationType.TEST_ALERT:
            return self.test_alert_bypasses_cooldown
        return False


# =============================================================================
# DATA TRANSFER OBJECTS
# =============================================================================


@dataclass
class ChannelAttempt:
    """One adapter call (or a channel that could not be tried)."""
    channel: ContactChannel
    destination: str
    success: bool
    error: str | None = None
    attempted: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "channel": self.channel.value,
            "destination": self.destination,
            "success": self.success,
            "error": self.error,
            "attempted": self.attempted,
        }


@dataclass
class DeliveryReportEntry:
    """Outcome for one recipient."""
    recipient: str
    destination: str | None
    channel: ContactChannel | None
    status: DeliveryStatus
    error: str | None = None
    delivered_at: datetime | None = None
    contact_id: UUID | None = None
    recipient_subject_id: UUID | None = None
    attempts: list[ChannelAttempt] = field(default_factory=list)


@dataclass
class DeliveryReport:
    """Result of one dispatch call."""
    event_id: UUID
    subject_id: UUID
    type: NotificationType
    entries: list[DeliveryReportEntry]

    @property
    def sent_count(self) -> int:
        return sum(1 for e in self.entries if e.status == DeliveryStatus.SENT)

    @property
    def failed_count(self) -> int:
        return sum(1 for e in self.entries if e.status == DeliveryStatus.FAILED)

    @property
    def skipped_count(self) -> int:
        return sum(1 for e in self.entries if e.status == DeliveryStatus.SKIPPED)


# =============================================================================
# DISPATCH ENGINE
# =============================================================================


class DispatchEngine:
    """
    Engine that delivers one notification event to all resolved recipients.

    The engine flushes its writes but never commits; the caller owns the
    transaction.
    """

    def __init__(
        self,
        session: AsyncSession,
        channels: ChannelRegistry,
        config: DispatchConfig | None = None,
        clock: Callable[[], datetime] = utcnow,
        settings: Settings | None = None,
    ):
        self._session = session
        self._channels = channels
        self._config = config or DispatchConfig.from_settings(settings or get_settings())
        self._clock = clock

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    async def dispatch(
        self,
        subject_id: UUID,
        notification_type: NotificationType,
        target_subject_id: UUID | None = None,
        context: dict[str, Any] | None = None,
    ) -> DeliveryReport:
        """
        Notify everyone who should hear about `notification_type` for a subject.

        Default recipients are the subject's CONFIRMED contacts. An
        ACKNOWLEDGMENT with a target goes to that single subject instead.
        """
        subject = await self._session.get(Subject, subject_id)
        if subject is None:
            raise NotFoundError(f"Subject {subject_id} not found")

        meta: dict[str, Any] = {}
        if target_subject_id is not None:
            if notification_type != NotificationType.ACKNOWLEDGMENT:
                raise InvalidOperationError(
                    f"{notification_type.value} cannot be directed at a single subject"
                )
            target = await self._session.get(Subject, target_subject_id)
            if target is None:
                raise NotFoundError(f"Subject {target_subject_id} not found")
            recipients: list[Recipient] = [DirectedRecipient(target)]
            meta["target_subject_id"] = str(target_subject_id)
        else:
            recipients = await self._confirmed_contacts(subject_id)

        return await self.deliver(subject, notification_type, recipients, meta=meta, context=context)

    async def deliver(
        self,
        subject: Subject,
        notification_type: NotificationType,
        recipients: list[Recipient],
        meta: dict[str, Any] | None = None,
        context: dict[str, Any] | None = None,
    ) -> DeliveryReport:
        """Deliver to an explicit recipient list under a new NotificationEvent."""
        now = self._clock()
        event = NotificationEvent(
            subject_id=subject.id,
            type=notification_type,
            meta={
                "sender_name": subject.display_name,
                "sender_email": subject.email,
                **(meta or {}),
            },
            created_at=now,
        )
        try:
            self._session.add(event)
            await self._session.flush()
        except SQLAlchemyError as e:
            logger.error(f"Failed to write {notification_type.value} event for {subject.id}: {e}")
            raise DispatchError(f"Could not record notification event: {e}") from e

        message = render_message(
            notification_type,
            Actor(name=subject.display_name, email=subject.email),
            {"user_id": str(subject.id), **(context or {})},
        )

        bypass = self._config.bypasses_cooldown(notification_type)
        cooling: set[str] = set()
        if not bypass:
            destinations = {d for r in recipients for d in r.destinations}
            cooling = await self._recently_sent(destinations, notification_type, now)

        entries = await self._send_all(recipients, message, cooling, bypass)

        for entry in entries:
            self._session.add(self._delivery_row(event, entry, message))
        try:
            await self._session.flush()
        except SQLAlchemyError as e:
            logger.error(f"Failed to record deliveries for event {event.id}: {e}")
            raise DispatchError(f"Could not record deliveries: {e}") from e

        report = DeliveryReport(
            event_id=event.id,
            subject_id=subject.id,
            type=notification_type,
            entries=entries,
        )
        logger.info(
            f"Dispatched {notification_type.value} for subject {subject.id}: "
            f"{report.sent_count} sent, {report.failed_count} failed, {report.skipped_count} skipped"
        )
        return report

    # =========================================================================
    # RECIPIENTS
    # =========================================================================

    async def _confirmed_contacts(self, subject_id: UUID) -> list[Recipient]:
        result = await self._session.execute(
            select(Contact)
            .where(
                Contact.owner_id == subject_id,
                Contact.status == ContactStatus.CONFIRMED,
            )
            .options(selectinload(Contact.linked_subject))
            .order_by(Contact.created_at.asc(), Contact.id.asc())
        )
        return [ContactRecipient.from_contact(c) for c in result.scalars().all()]

    # =========================================================================
    # COOLDOWN
    # =========================================================================

    async def _recently_sent(
        self,
        destinations: set[str],
        notification_type: NotificationType,
        now: datetime,
    ) -> set[str]:
        """Destinations with a SENT delivery of the same class inside the window."""
        if not destinations or self._config.cooldown_minutes <= 0:
            return set()

        cutoff = now - timedelta(minutes=self._config.cooldown_minutes)
        result = await self._session.execute(
            select(NotificationDelivery.destination)
            .join(NotificationEvent, NotificationDelivery.event_id == NotificationEvent.id)
            .where(
                NotificationDelivery.destination.in_(destinations),
                NotificationDelivery.status == DeliveryStatus.SENT,
                NotificationDelivery.created_at >= cutoff,
                NotificationEvent.type.in_(same_class_types(notification_type)),
            )
            .distinct()
        )
        return set(result.scalars().all())

    # =========================================================================
    # SENDING
    # =========================================================================

    async def _send_all(
        self,
        recipients: list[Recipient],
        message: RenderedMessage,
        cooling: set[str],
        bypass: bool,
    ) -> list[DeliveryReportEntry]:
        semaphore = asyncio.Semaphore(self._config.concurrency)
        locks: dict[str, asyncio.Lock] = {}
        sent_now: set[str] = set()

        async def run(recipient: Recipient) -> DeliveryReportEntry:
            # Recipients sharing a destination are serialized so the second
            # one sees the first one's send.
            keys = sorted(set(recipient.destinations))
            async with semaphore:
                held = [locks.setdefault(k, asyncio.Lock()) for k in keys]
                for lock in held:
                    await lock.acquire()
                try:
                    return await self._send_one(recipient, message, cooling, sent_now, bypass)
                finally:
                    for lock in reversed(held):
                        lock.release()

        return list(await asyncio.gather(*(run(r) for r in recipients)))

    async def _send_one(
        self,
        recipient: Recipient,
        message: RenderedMessage,
        cooling: set[str],
        sent_now: set[str],
        bypass: bool,
    ) -> DeliveryReportEntry:
        plan = recipient.channel_plan()
        base = {
            "recipient": recipient.label,
            "contact_id": recipient.contact_id,
            "recipient_subject_id": recipient.recipient_subject_id,
        }

        if not plan:
            return DeliveryReportEntry(
                destination=recipient.destination,
                channel=recipient.preferred_channel,
                status=DeliveryStatus.SKIPPED,
                error=REASON_NO_CHANNEL,
                **base,
            )

        if not bypass:
            for channel, destination in plan:
                if destination in cooling or destination in sent_now:
                    logger.info(f"Skipping {recipient.label}: {REASON_COOLDOWN} for {destination[:40]}")
                    return DeliveryReportEntry(
                        destination=destination,
                        channel=channel,
                        status=DeliveryStatus.SKIPPED,
                        error=REASON_COOLDOWN,
                        **base,
                    )

        attempts: list[ChannelAttempt] = []
        for channel, destination in plan:
            adapter = self._channels.get(channel)
            if adapter is None or not adapter.is_configured:
                attempts.append(ChannelAttempt(
                    channel, destination, False,
                    error=f"{channel.value} provider not configured",
                    attempted=False,
                ))
                continue

            result = await self._timed_send(adapter, channel, destination, message)
            attempts.append(ChannelAttempt(channel, destination, result.success, result.error))
            if result.success:
                sent_now.add(destination)
                return DeliveryReportEntry(
                    destination=destination,
                    channel=channel,
                    status=DeliveryStatus.SENT,
                    delivered_at=self._clock(),
                    attempts=attempts,
                    **base,
                )
            logger.warning(
                f"{channel.value} delivery to {recipient.label} failed: {result.error}; trying next channel"
            )

        tried = [a for a in attempts if a.attempted]
        if not tried:
            return DeliveryReportEntry(
                destination=recipient.destination,
                channel=recipient.preferred_channel,
                status=DeliveryStatus.SKIPPED,
                error=REASON_NO_CHANNEL,
                attempts=attempts,
                **base,
            )

        last = tried[-1]
        return DeliveryReportEntry(
            destination=last.destination,
            channel=last.channel,
            status=DeliveryStatus.FAILED,
            error="; ".join(f"{a.channel.value}: {a.error}" for a in tried),
            attempts=attempts,
            **base,
        )

    async def _timed_send(
        self,
        adapter,
        channel: ContactChannel,
        destination: str,
        message: RenderedMessage,
    ) -> DeliveryResult:
        title, body, metadata = message.for_channel(channel)
        timeout = self._config.channel_timeout_seconds
        try:
            return await asyncio.wait_for(
                adapter.send(destination, title, body, metadata),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"{channel.value} send to {destination[:40]} timed out after {timeout}s")
            return DeliveryResult(channel, destination, False, error=f"timed out after {timeout}s")
        except Exception as e:
            logger.exception(f"{channel.value} adapter raised unexpectedly")
            return DeliveryResult(channel, destination, False, error=str(e))

    def _delivery_row(
        self,
        event: NotificationEvent,
        entry: DeliveryReportEntry,
        message: RenderedMessage,
    ) -> NotificationDelivery:
        payload: dict[str, Any] = {
            "recipient": entry.recipient,
            "attempts": [a.to_dict() for a in entry.attempts],
        }
        if entry.channel is not None:
            title, body, metadata = message.for_channel(entry.channel)
            payload.update(title=title, body=body, metadata=metadata)

        return NotificationDelivery(
            event_id=event.id,
            channel=entry.channel,
            destination=entry.destination,
            status=entry.status,
            error=entry.error,
            delivered_at=entry.delivered_at,
            recipient_subject_id=entry.recipient_subject_id,
            contact_id=entry.contact_id,
            payload=payload,
            created_at=entry.delivered_at or self._clock(),
        )
