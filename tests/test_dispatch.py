"""
Tests for the Notification Dispatch Engine.

These tests verify:
1. RECIPIENTS: confirmed contacts only, or one directed subject
2. CHANNELS: push first for linked subjects, stored channel as fallback
3. COOLDOWN: repeats suppressed per destination and severity class
4. AUDIT: exactly one delivery row per recipient, whatever the outcome
"""

from datetime import timedelta
from uuid import uuid4

import pytest
from sqlalchemy import select

from imfine.core.errors import InvalidOperationError, NotFoundError
from imfine.models import (
    ContactChannel,
    ContactStatus,
    DeliveryStatus,
    NotificationDelivery,
    NotificationEvent,
    NotificationType,
    SubjectState,
)
from imfine.services import DispatchConfig, DispatchEngine


async def deliveries_for(session, event_id) -> list[NotificationDelivery]:
    result = await session.execute(
        select(NotificationDelivery).where(NotificationDelivery.event_id == event_id)
    )
    return list(result.scalars().all())


# =============================================================================
# TEST: RECIPIENTS
# =============================================================================


class TestRecipientResolution:

    async def test_only_confirmed_contacts_receive_alerts(
        self, dispatcher, channels, make_subject, make_contact,
    ):
        subject = await make_subject()
        await make_contact(subject, destination="yes@example.com")
        await make_contact(subject, destination="pending@example.com", status=ContactStatus.PENDING)
        await make_contact(subject, destination="new@example.com", status=None)

        report = await dispatcher.dispatch(subject.id, NotificationType.ESCALATION_ALERT)

        assert [e.destination for e in report.entries] == ["yes@example.com"]
        assert channels.email.destinations == ["yes@example.com"]

    async def test_directed_acknowledgment_bypasses_contacts(
        self, dispatcher, channels, make_subject, make_contact,
    ):
        helper = await make_subject(display_name="Helper")
        owner = await make_subject(email="owner@example.com")
        await make_contact(helper, destination="someone-else@example.com")

        report = await dispatcher.dispatch(
            helper.id, NotificationType.ACKNOWLEDGMENT, target_subject_id=owner.id,
        )

        assert len(report.entries) == 1
        assert report.entries[0].recipient_subject_id == owner.id
        assert channels.email.destinations == ["owner@example.com"]
        assert "Helper" in channels.email.sent[0]["body"]

    async def test_target_only_allowed_for_acknowledgment(self, dispatcher, make_subject):
        subject = await make_subject()
        other = await make_subject()

        with pytest.raises(InvalidOperationError):
            await dispatcher.dispatch(
                subject.id, NotificationType.ESCALATION_ALERT, target_subject_id=other.id,
            )

    async def test_unknown_subject_is_a_hard_error(self, dispatcher):
        with pytest.raises(NotFoundError):
            await dispatcher.dispatch(uuid4(), NotificationType.TEST_ALERT)

    async def test_no_contacts_still_records_event(self, session, dispatcher, make_subject):
        subject = await make_subject()

        report = await dispatcher.dispatch(subject.id, NotificationType.ESCALATION_ALERT)

        assert report.entries == []
        event = await session.get(NotificationEvent, report.event_id)
        assert event.type == NotificationType.ESCALATION_ALERT
        assert event.meta["sender_email"] == subject.email


# =============================================================================
# TEST: CHANNEL SELECTION
# =============================================================================


class TestChannelSelection:

    async def test_linked_subject_with_push_token_gets_push(
        self, dispatcher, channels, make_subject, make_contact,
    ):
        owner = await make_subject()
        helper = await make_subject(push_token="ExponentPushToken[helper]")
        await make_contact(owner, destination=helper.email, linked_subject_id=helper.id)

        report = await dispatcher.dispatch(owner.id, NotificationType.ESCALATION_ALERT)

        entry = report.entries[0]
        assert entry.channel == ContactChannel.PUSH
        assert entry.status == DeliveryStatus.SENT
        assert channels.push.destinations == ["ExponentPushToken[helper]"]
        assert channels.email.sent == []

    async def test_stale_push_token_falls_back_to_stored_channel(
        self, session, dispatcher, channels, make_subject, make_contact,
    ):
        owner = await make_subject()
        helper = await make_subject(push_token="ExponentPushToken[stale]")
        await make_contact(owner, destination=helper.email, linked_subject_id=helper.id)
        channels.push.fail_with = "DeviceNotRegistered"

        report = await dispatcher.dispatch(owner.id, NotificationType.ESCALATION_ALERT)

        entry = report.entries[0]
        assert entry.status == DeliveryStatus.SENT
        assert entry.channel == ContactChannel.EMAIL
        assert [(a.channel, a.success) for a in entry.attempts] == [
            (ContactChannel.PUSH, False),
            (ContactChannel.EMAIL, True),
        ]

        rows = await deliveries_for(session, report.event_id)
        assert len(rows) == 1
        assert rows[0].channel == ContactChannel.EMAIL
        assert len(rows[0].payload["attempts"]) == 2

    async def test_sms_contact_uses_sms(self, dispatcher, channels, make_subject, make_contact):
        owner = await make_subject()
        await make_contact(owner, channel=ContactChannel.SMS, destination="+15550001111")

        report = await dispatcher.dispatch(owner.id, NotificationType.ESCALATION_ALERT)

        assert report.entries[0].channel == ContactChannel.SMS
        assert channels.sms.destinations == ["+15550001111"]

    async def test_no_usable_channel_is_skipped(
        self, session, dispatcher, channels, make_subject, make_contact,
    ):
        owner = await make_subject()
        await make_contact(owner, destination="ana@example.com")
        channels.email.configured = False

        report = await dispatcher.dispatch(owner.id, NotificationType.ESCALATION_ALERT)

        entry = report.entries[0]
        assert entry.status == DeliveryStatus.SKIPPED
        assert entry.error == "no valid channel configured"
        rows = await deliveries_for(session, report.event_id)
        assert [r.status for r in rows] == [DeliveryStatus.SKIPPED]

    async def test_all_channels_failing_is_recorded_not_raised(
        self, session, dispatcher, channels, make_subject, make_contact,
    ):
        owner = await make_subject()
        await make_contact(owner, name="Ana", destination="ana@example.com")
        await make_contact(owner, name="Ben", channel=ContactChannel.SMS, destination="+15550002222")
        channels.email.fail_with = "HTTP 500"

        report = await dispatcher.dispatch(owner.id, NotificationType.ESCALATION_ALERT)

        assert report.failed_count == 1
        assert report.sent_count == 1
        failed = next(e for e in report.entries if e.status == DeliveryStatus.FAILED)
        assert "HTTP 500" in failed.error
        assert len(await deliveries_for(session, report.event_id)) == 2

    async def test_hanging_adapter_is_time_bounded(
        self, dispatcher, channels, make_subject, make_contact,
    ):
        owner = await make_subject()
        await make_contact(owner, name="Slow", destination="slow@example.com")
        await make_contact(owner, name="Fast", channel=ContactChannel.SMS, destination="+15550003333")
        channels.email.hang = True

        report = await dispatcher.dispatch(owner.id, NotificationType.ESCALATION_ALERT)

        by_name = {e.recipient: e for e in report.entries}
        assert by_name["Slow"].status == DeliveryStatus.FAILED
        assert "timed out" in by_name["Slow"].error
        assert by_name["Fast"].status == DeliveryStatus.SENT


# =============================================================================
# TEST: COOLDOWN
# =============================================================================


class TestCooldown:

    async def test_shared_destination_is_sent_once(
        self, session, dispatcher, channels, make_subject, make_contact,
    ):
        """Two contacts with the same destination: one SENT, one SKIPPED."""
        owner = await make_subject()
        await make_contact(owner, name="Mum", destination="family@example.com")
        await make_contact(owner, name="Dad", destination="family@example.com")

        report = await dispatcher.dispatch(owner.id, NotificationType.ESCALATION_ALERT)

        statuses = sorted(e.status.value for e in report.entries)
        assert statuses == ["SENT", "SKIPPED"]
        skipped = next(e for e in report.entries if e.status == DeliveryStatus.SKIPPED)
        assert skipped.error == "cooldown active"
        assert channels.email.destinations == ["family@example.com"]
        assert len(await deliveries_for(session, report.event_id)) == 2

    async def test_repeat_within_window_is_skipped(
        self, dispatcher, clock, channels, make_subject, make_contact,
    ):
        owner = await make_subject()
        await make_contact(owner, destination="ana@example.com")

        await dispatcher.dispatch(owner.id, NotificationType.ESCALATION_ALERT)
        clock.advance(minutes=4)
        report = await dispatcher.dispatch(owner.id, NotificationType.ESCALATION_ALERT)

        assert report.entries[0].status == DeliveryStatus.SKIPPED
        assert report.entries[0].error == "cooldown active"
        assert len(channels.email.sent) == 1

    async def test_repeat_after_window_is_sent(
        self, dispatcher, clock, channels, make_subject, make_contact,
    ):
        owner = await make_subject()
        await make_contact(owner, destination="ana@example.com")

        await dispatcher.dispatch(owner.id, NotificationType.ESCALATION_ALERT)
        clock.advance(minutes=6)
        report = await dispatcher.dispatch(owner.id, NotificationType.ESCALATION_ALERT)

        assert report.entries[0].status == DeliveryStatus.SENT
        assert len(channels.email.sent) == 2

    async def test_failed_send_does_not_start_cooldown(
        self, dispatcher, channels, make_subject, make_contact,
    ):
        owner = await make_subject()
        await make_contact(owner, destination="ana@example.com")

        channels.email.fail_with = "HTTP 503"
        await dispatcher.dispatch(owner.id, NotificationType.ESCALATION_ALERT)
        channels.email.fail_with = None
        report = await dispatcher.dispatch(owner.id, NotificationType.ESCALATION_ALERT)

        assert report.entries[0].status == DeliveryStatus.SENT

    async def test_resolution_is_never_suppressed(
        self, dispatcher, clock, channels, make_subject, make_contact,
    ):
        owner = await make_subject()
        await make_contact(owner, destination="ana@example.com")

        await dispatcher.dispatch(owner.id, NotificationType.ESCALATION_ALERT)
        clock.advance(seconds=1)
        await dispatcher.dispatch(owner.id, NotificationType.RESOLUTION_ALERT)
        clock.advance(seconds=1)
        report = await dispatcher.dispatch(owner.id, NotificationType.RESOLUTION_ALERT)

        assert report.entries[0].status == DeliveryStatus.SENT
        assert len(channels.email.sent) == 3

    async def test_test_alert_does_not_suppress_real_escalation(
        self, dispatcher, clock, make_subject, make_contact,
    ):
        owner = await make_subject()
        await make_contact(owner, destination="ana@example.com")

        await dispatcher.dispatch(owner.id, NotificationType.TEST_ALERT)
        clock.advance(minutes=1)
        report = await dispatcher.dispatch(owner.id, NotificationType.ESCALATION_ALERT)

        assert report.entries[0].status == DeliveryStatus.SENT

    async def test_test_alert_cooldown_is_configurable(
        self, session, channels, clock, make_subject, make_contact,
    ):
        owner = await make_subject()
        await make_contact(owner, destination="ana@example.com")

        strict = DispatchEngine(session, channels.registry, DispatchConfig(), clock=clock)
        await strict.dispatch(owner.id, NotificationType.TEST_ALERT)
        assert (await strict.dispatch(owner.id, NotificationType.TEST_ALERT)).skipped_count == 1

        lenient = DispatchEngine(
            session,
            channels.registry,
            DispatchConfig(test_alert_bypasses_cooldown=True),
            clock=clock,
        )
        assert (await lenient.dispatch(owner.id, NotificationType.TEST_ALERT)).sent_count == 1


# =============================================================================
# TEST: AUDIT TRAIL
# =============================================================================


class TestDeliveryRecords:

    async def test_one_row_per_recipient_with_payload(
        self, session, dispatcher, clock, make_subject, make_contact,
    ):
        owner = await make_subject(display_name="Maya", state=SubjectState.ESCALATED)
        contact = await make_contact(owner, name="Ana", destination="ana@example.com")

        report = await dispatcher.dispatch(owner.id, NotificationType.ESCALATION_ALERT)

        rows = await deliveries_for(session, report.event_id)
        assert len(rows) == 1
        row = rows[0]
        assert row.contact_id == contact.id
        assert row.status == DeliveryStatus.SENT
        assert row.delivered_at is not None
        assert "Maya" in row.payload["body"]
        assert row.payload["recipient"] == "Ana"
