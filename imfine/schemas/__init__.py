"""Pydantic schemas for API request/response validation."""

from .base import ErrorDetail, ErrorResponse, SafetyBaseModel
from .contacts import (
    AllChannelsFailedResponse,
    ChannelFailure,
    ContactResponse,
    CreateContactRequest,
    InviteResponse,
    TrustedLinkResponse,
    TrustedLinksResponse,
    UpdateContactRequest,
)
from .notifications import (
    DeliveryEntryResponse,
    DeliveryReportResponse,
    HistoryEntryResponse,
    ScanResponse,
)
from .subjects import (
    CheckinResponse,
    PushTokenRequest,
    SubjectResponse,
    UpdateProfileRequest,
)

__all__ = [
    # Base
    "SafetyBaseModel",
    "ErrorDetail",
    "ErrorResponse",
    # Subjects
    "SubjectResponse",
    "UpdateProfileRequest",
    "PushTokenRequest",
    "CheckinResponse",
    # Contacts
    "CreateContactRequest",
    "UpdateContactRequest",
    "ContactResponse",
    "InviteResponse",
    "TrustedLinkResponse",
    "TrustedLinksResponse",
    "ChannelFailure",
    "AllChannelsFailedResponse",
    # Notifications
    "DeliveryEntryResponse",
    "DeliveryReportResponse",
    "HistoryEntryResponse",
    "ScanResponse",
]
