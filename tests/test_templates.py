"""Tests for notification message rendering."""

import pytest

from imfine.models import ContactChannel, NotificationType
from imfine.services import Actor, render_message


@pytest.mark.parametrize("notification_type", list(NotificationType))
def test_every_type_renders_for_every_channel(notification_type):
    message = render_message(notification_type, Actor(name="Maya", email="maya@example.com"))

    for channel in ContactChannel:
        title, body, metadata = message.for_channel(channel)
        assert title
        assert body
        assert "{" not in title + body
    assert message.data["type"] == notification_type.value


def test_rendering_is_deterministic():
    actor = Actor(name="Maya")
    context = {"user_id": "u-1"}

    first = render_message(NotificationType.ESCALATION_ALERT, actor, context)
    second = render_message(NotificationType.ESCALATION_ALERT, actor, context)

    assert first == second


def test_escalation_names_the_actor():
    message = render_message(NotificationType.ESCALATION_ALERT, Actor(name="Maya"))

    assert message.body == "Maya needs help! They missed their check-in."
    assert "Maya" in message.sms_body
    assert "ESCALATED" in message.email_html


def test_actor_falls_back_to_email_then_placeholder():
    by_email = render_message(NotificationType.TEST_ALERT, Actor(email="maya@example.com"))
    anonymous = render_message(NotificationType.TEST_ALERT, Actor())

    assert by_email.body.startswith("maya@example.com")
    assert anonymous.body.startswith("Your contact")


def test_html_is_escaped_in_email_only():
    message = render_message(NotificationType.ESCALATION_ALERT, Actor(name="<b>Eve</b>"))

    assert "&lt;b&gt;Eve&lt;/b&gt;" in message.email_html
    assert "<b>Eve</b>" not in message.email_html
    assert message.body.startswith("<b>Eve</b>")


def test_contact_request_carries_invite_url():
    message = render_message(
        NotificationType.CONTACT_REQUEST,
        Actor(name="Maya", email="maya@example.com"),
        {"invite_url": "https://fine.test/invite/abc", "contact_id": "abc"},
    )

    assert 'href="https://fine.test/invite/abc"' in message.email_html
    assert "https://fine.test/invite/abc" in message.sms_body
    assert message.data == {
        "type": "CONTACT_REQUEST",
        "contact_id": "abc",
        "user_email": "maya@example.com",
    }


def test_channel_metadata_shapes():
    message = render_message(NotificationType.RESOLUTION_ALERT, Actor(name="Maya"))

    push = message.for_channel(ContactChannel.PUSH)
    email = message.for_channel(ContactChannel.EMAIL)
    sms = message.for_channel(ContactChannel.SMS)

    assert push[2]["sound"] == "default"
    assert email[0] == "✅ RESOLVED: User is Safe"
    assert email[2]["html"] == message.email_html
    assert sms[1] == message.sms_body
