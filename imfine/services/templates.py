"""
Message templates for every notification type.

Rendering is a pure function of (type, actor, context) so the exact text a
contact receives can be reproduced in tests and in the delivery history.
"""

import html
from dataclasses import dataclass, field
from typing import Any

from ..models import ContactChannel, NotificationType


@dataclass(frozen=True)
class Actor:
    """The subject on whose behalf a notification is sent."""
    name: str | None = None
    email: str | None = None

    @property
    def label(self) -> str:
        return self.name or self.email or "Your contact"


@dataclass(frozen=True)
class MessageTemplate:
    title: str
    body: str
    email_subject: str
    email_heading: str
    email_lines: tuple[str, ...]
    sms: str


@dataclass(frozen=True)
class RenderedMessage:
    """A message ready to hand to a channel adapter."""
    type: NotificationType
    title: str
    body: str
    email_subject: str
    email_html: str
    sms_body: str
    data: dict[str, Any] = field(default_factory=dict)

    def for_channel(self, channel: ContactChannel) -> tuple[str, str, dict[str, Any]]:
        """(title, body, metadata) in the shape the adapter for `channel` expects."""
        if channel == ContactChannel.PUSH:
            return self.title, self.body, {"data": self.data, "sound": "default"}
        if channel == ContactChannel.EMAIL:
            return self.email_subject, self.body, {"html": self.email_html}
        if channel == ContactChannel.SMS:
            return self.title, self.sms_body, {"sms": self.sms_body}
        raise ValueError(f"Unknown channel: {channel}")


TEMPLATES: dict[NotificationType, MessageTemplate] = {
    NotificationType.ESCALATION_ALERT: MessageTemplate(
        title="🚨 Emergency Alert",
        body="{actor} needs help! They missed their check-in.",
        email_subject="🚨 URGENT: Emergency Alert",
        email_heading="Emergency Alert",
        email_lines=(
            "<strong>{actor}</strong> has missed a check-in or triggered a panic alert.",
            "Please contact them immediately.",
            "Status: <strong>ESCALATED</strong>",
        ),
        sms="🚨 URGENT: {actor} needs help! Missed check-in. Contact them immediately.",
    ),
    NotificationType.RESOLUTION_ALERT: MessageTemplate(
        title="✅ User is Safe",
        body="{actor} has marked themselves as safe. The emergency is resolved.",
        email_subject="✅ RESOLVED: User is Safe",
        email_heading="Emergency Resolved",
        email_lines=(
            "<strong>{actor}</strong> has confirmed they are safe.",
            "You can stand down.",
            "Status: <strong>RESOLVED</strong>",
        ),
        sms="✅ RESOLVED: {actor} is safe. The emergency alert has been cancelled.",
    ),
    NotificationType.TEST_ALERT: MessageTemplate(
        title="🔔 Test Alert",
        body="{actor} is testing their safety alerts. No action is needed.",
        email_subject="🔔 Test Alert from {actor}",
        email_heading="Test Alert",
        email_lines=(
            "<strong>{actor}</strong> sent a test of their emergency alerts.",
            "No action is needed. This is how a real alert would reach you.",
        ),
        sms="🔔 TEST: {actor} is testing their safety alerts. No action needed.",
    ),
    NotificationType.CONTACT_REQUEST: MessageTemplate(
        title="👥 Contact Request",
        body="{actor} wants to add you as a trusted contact.",
        email_subject="You have been invited to ImFine",
        email_heading="Trusted Contact Request",
        email_lines=(
            "<strong>{actor}</strong> has invited you to be a trusted contact.",
            '<a href="{invite_url}">Click here to accept</a>',
        ),
        sms="{actor} invited you to be a trusted contact on ImFine: {invite_url}",
    ),
    NotificationType.ACKNOWLEDGMENT: MessageTemplate(
        title="🤝 Contact Confirmed",
        body="{actor} accepted your invite and is now one of your trusted contacts.",
        email_subject="{actor} is now your trusted contact",
        email_heading="Contact Confirmed",
        email_lines=(
            "<strong>{actor}</strong> accepted your invite.",
            "They will be alerted if you miss a check-in.",
        ),
        sms="ImFine: {actor} accepted your invite and is now your trusted contact.",
    ),
}


def render_message(
    notification_type: NotificationType,
    actor: Actor,
    context: dict[str, Any] | None = None,
) -> RenderedMessage:
    """Render the template for `notification_type` on behalf of `actor`."""
    template = TEMPLATES[notification_type]
    context = context or {}
    params = {"invite_url": context.get("invite_url", ""), "actor": actor.label}
    html_params = {k: html.escape(str(v), quote=True) for k, v in params.items()}

    email_html = "\n".join(
        [f"<h1>{template.email_heading}</h1>"]
        + [f"<p>{line.format(**html_params)}</p>" for line in template.email_lines]
    )

    data = {"type": notification_type.value, **{k: v for k, v in context.items() if k != "invite_url"}}
    if actor.email:
        data["user_email"] = actor.email

    return RenderedMessage(
        type=notification_type,
        title=template.title.format(**params),
        body=template.body.format(**params),
        email_subject=template.email_subject.format(**params),
        email_html=email_html,
        sms_body=template.sms.format(**params),
        data=data,
    )
