"""Tests for the notification history read model."""

from imfine.models import DeliveryStatus, NotificationType
from imfine.services import get_notification_history


async def test_history_is_newest_first_and_scoped(
    session, dispatcher, clock, make_subject, make_contact,
):
    maya = await make_subject()
    leo = await make_subject()
    await make_contact(maya, name="Ana", destination="ana@example.com")
    await make_contact(leo, name="Ben", destination="ben@example.com")

    await dispatcher.dispatch(maya.id, NotificationType.TEST_ALERT)
    clock.advance(minutes=10)
    await dispatcher.dispatch(maya.id, NotificationType.ESCALATION_ALERT)
    await dispatcher.dispatch(leo.id, NotificationType.ESCALATION_ALERT)

    history = await get_notification_history(session, maya.id)

    assert [h.type for h in history] == [
        NotificationType.ESCALATION_ALERT,
        NotificationType.TEST_ALERT,
    ]
    assert all(h.recipient == "Ana" for h in history)
    assert all(h.status == DeliveryStatus.SENT for h in history)


async def test_history_limit(session, dispatcher, clock, make_subject, make_contact):
    maya = await make_subject()
    await make_contact(maya, destination="ana@example.com")
    for _ in range(3):
        await dispatcher.dispatch(maya.id, NotificationType.RESOLUTION_ALERT)
        clock.advance(seconds=30)

    history = await get_notification_history(session, maya.id, limit=2)

    assert len(history) == 2
