"""Domain services for ImFine."""

from .channels import (
    ChannelRegistry,
    DeliveryChannel,
    DeliveryResult,
    EmailChannel,
    PushChannel,
    SmsChannel,
    build_channels,
)
from .checkin_engine import (
    CheckinEngine,
    CheckinResult,
    ScanResult,
    TransitionStep,
    compute_transition,
)
from .contacts import (
    ContactDirectory,
    InviteResult,
    LinkingProtocol,
    TrustedLink,
    TrustedLinks,
    normalize_destination,
)
from .dispatch import (
    ChannelAttempt,
    DeliveryReport,
    DeliveryReportEntry,
    DispatchConfig,
    DispatchEngine,
)
from .history import HistoryEntry, get_notification_history
from .recipients import ContactRecipient, DirectedRecipient, Recipient
from .subjects import ProfileUpdate, SubjectService
from .templates import Actor, RenderedMessage, render_message

__all__ = [
    # Channel adapters
    "DeliveryChannel",
    "DeliveryResult",
    "PushChannel",
    "EmailChannel",
    "SmsChannel",
    "ChannelRegistry",
    "build_channels",
    # Templates & recipients
    "Actor",
    "RenderedMessage",
    "render_message",
    "Recipient",
    "ContactRecipient",
    "DirectedRecipient",
    # Dispatch
    "DispatchEngine",
    "DispatchConfig",
    "DeliveryReport",
    "DeliveryReportEntry",
    "ChannelAttempt",
    # State machine
    "CheckinEngine",
    "CheckinResult",
    "ScanResult",
    "TransitionStep",
    "compute_transition",
    # Contacts
    "ContactDirectory",
    "LinkingProtocol",
    "InviteResult",
    "TrustedLink",
    "TrustedLinks",
    "normalize_destination",
    # Subjects & history
    "SubjectService",
    "ProfileUpdate",
    "HistoryEntry",
    "get_notification_history",
]
