"""Recipients of a dispatch: trusted contacts or a directly targeted subject."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from uuid import UUID

from ..models import Contact, ContactChannel, Subject


class Recipient(ABC):
    """Anything the dispatch engine can deliver to."""

    @property
    @abstractmethod
    def destination(self) -> str | None:
        """Destination for the preferred channel."""

    @property
    @abstractmethod
    def preferred_channel(self) -> ContactChannel | None:
        ...

    @property
    @abstractmethod
    def linked_push_token(self) -> str | None:
        """Push token of the registered subject behind this recipient, if any."""

    @property
    @abstractmethod
    def label(self) -> str:
        ...

    recipient_subject_id: UUID | None = None
    contact_id: UUID | None = None

    def channel_plan(self) -> list[tuple[ContactChannel, str]]:
        """Channels to try, in order: linked push first, then the stored channel."""
        plan: list[tuple[ContactChannel, str]] = []
        if self.linked_push_token:
            plan.append((ContactChannel.PUSH, self.linked_push_token))
        if self.preferred_channel and self.destination:
            attempt = (self.preferred_channel, self.destination)
            if attempt not in plan:
                plan.append(attempt)
        return plan

    @property
    def destinations(self) -> list[str]:
        return [destination for _, destination in self.channel_plan()]


@dataclass
class ContactRecipient(Recipient):
    """A Contact row, optionally backed by a linked subject's push token."""

    contact: Contact
    push_token: str | None = None

    @classmethod
    def from_contact(cls, contact: Contact, push_token: str | None = None) -> "ContactRecipient":
        if push_token is None and contact.linked_subject is not None:
            push_token = contact.linked_subject.push_token
        return cls(contact=contact, push_token=push_token)

    @property
    def destination(self) -> str | None:
        return self.contact.destination

    @property
    def preferred_channel(self) -> ContactChannel | None:
        return self.contact.channel

    @property
    def linked_push_token(self) -> str | None:
        return self.push_token

    @property
    def label(self) -> str:
        return self.contact.name

    @property
    def recipient_subject_id(self) -> UUID | None:
        return self.contact.linked_subject_id

    @property
    def contact_id(self) -> UUID | None:
        return self.contact.id


@dataclass
class DirectedRecipient(Recipient):
    """A subject addressed directly, bypassing the contact table."""

    subject: Subject

    @property
    def destination(self) -> str | None:
        return self.subject.email or self.subject.phone

    @property
    def preferred_channel(self) -> ContactChannel | None:
        if self.subject.email:
            return ContactChannel.EMAIL
        if self.subject.phone:
            return ContactChannel.SMS
        return None

    @property
    def linked_push_token(self) -> str | None:
        return self.subject.push_token

    @property
    def label(self) -> str:
        return self.subject.label

    @property
    def recipient_subject_id(self) -> UUID | None:
        return self.subject.id
