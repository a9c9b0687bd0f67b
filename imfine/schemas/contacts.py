"""Schemas for trusted contacts and the linking protocol."""

from datetime import datetime
from uuid import UUID

from pydantic import Field, model_validator

from ..models import ContactChannel, ContactStatus
from .base import SafetyBaseModel
from .notifications import DeliveryEntryResponse


class CreateContactRequest(SafetyBaseModel):
    """Request to add a trusted contact."""

    name: str = Field(..., min_length=1, max_length=255)
    channel: ContactChannel
    destination: str = Field(..., min_length=1, max_length=255)

    @model_validator(mode="after")
    def check_destination(self):
        if self.channel == ContactChannel.EMAIL and "@" not in self.destination:
            raise ValueError("Email contacts need a valid email address")
        return self


class UpdateContactRequest(SafetyBaseModel):
    """Request to edit a contact. Omitted fields are unchanged."""

    name: str | None = Field(default=None, min_length=1, max_length=255)
    channel: ContactChannel | None = None
    destination: str | None = Field(default=None, min_length=1, max_length=255)


class ContactResponse(SafetyBaseModel):
    id: UUID
    name: str
    channel: ContactChannel
    destination: str
    status: ContactStatus | None
    linked_subject_id: UUID | None
    invite_sent_at: datetime | None
    confirmed_at: datetime | None
    created_at: datetime


class InviteResponse(SafetyBaseModel):
    """Result of sending an invite."""

    contact: ContactResponse
    sent: bool
    delivery: DeliveryEntryResponse


class TrustedLinkResponse(SafetyBaseModel):
    contact_id: UUID
    owner_id: UUID
    owner_name: str | None
    owner_email: str | None
    channel: ContactChannel
    destination: str
    status: ContactStatus | None
    invite_sent_at: datetime | None
    confirmed_at: datetime | None


class TrustedLinksResponse(SafetyBaseModel):
    """Subjects the caller is asked to protect, and those it protects."""

    pending: list[TrustedLinkResponse]
    active: list[TrustedLinkResponse]


class ChannelFailure(SafetyBaseModel):
    channel: str
    destination: str | None = None
    error: str | None = None
    attempted: bool = True


class AllChannelsFailedResponse(SafetyBaseModel):
    """Body of a 502 from an invite that reached nobody."""

    error: str = "all_channels_failed"
    message: str
    attempts: list[ChannelFailure]
