"""
Contact Directory and Contact Linking Protocol.

Per contact:

    (none) --invite--> PENDING --confirm--> CONFIRMED
                          |                     |
                       decline               unlink
                          v                     v
                       deleted               deleted

The owner manages its own rows. The invited party acts on a row only when its
authenticated identity owns the row's destination, or when it is already the
linked subject.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..core.config import get_settings
from ..core.errors import (
    AllChannelsFailedError,
    CapacityError,
    IdentityMismatchError,
    InvalidOperationError,
    InviteCooldownError,
    NotFoundError,
)
from ..core.security import VerifiedIdentity
from ..models import (
    Contact,
    ContactChannel,
    ContactStatus,
    DeliveryStatus,
    NotificationType,
    Subject,
    utcnow,
)
from .dispatch import REASON_COOLDOWN, DeliveryReportEntry, DispatchEngine
from .recipients import ContactRecipient

logger = logging.getLogger(__name__)


def normalize_destination(channel: ContactChannel, destination: str) -> str:
    """Trim; emails compare case-insensitively so they are stored lower-cased."""
    value = (destination or "").strip()
    if channel == ContactChannel.EMAIL:
        value = value.lower()
    return value


def _matches(destination: str, candidates: list[str]) -> bool:
    value = destination.strip()
    if "@" in value:
        return value.lower() in {c.lower() for c in candidates}
    return value in candidates


# =============================================================================
# DATA TRANSFER OBJECTS
# =============================================================================


@dataclass
class InviteResult:
    """Outcome of an invite send."""
    contact: Contact
    delivery: DeliveryReportEntry

    @property
    def sent(self) -> bool:
        return self.delivery.status == DeliveryStatus.SENT


@dataclass
class TrustedLink:
    """One subject the caller protects (or is asked to protect)."""
    contact_id: UUID
    owner_id: UUID
    owner_name: str | None
    owner_email: str | None
    channel: ContactChannel
    destination: str
    status: ContactStatus | None
    invite_sent_at: datetime | None
    confirmed_at: datetime | None

    @classmethod
    def from_contact(cls, contact: Contact) -> "TrustedLink":
        return cls(
            contact_id=contact.id,
            owner_id=contact.owner_id,
            owner_name=contact.owner.display_name,
            owner_email=contact.owner.email,
            channel=contact.channel,
            destination=contact.destination,
            status=contact.status,
            invite_sent_at=contact.invite_sent_at,
            confirmed_at=contact.confirmed_at,
        )


@dataclass
class TrustedLinks:
    pending: list[TrustedLink] = field(default_factory=list)
    active: list[TrustedLink] = field(default_factory=list)


# =============================================================================
# CONTACT DIRECTORY
# =============================================================================


class ContactDirectory:
    """Owner-side management of trusted contacts."""

    def __init__(self, session: AsyncSession, max_owners_per_destination: int | None = None):
        self._session = session
        self._max_owners = (
            max_owners_per_destination
            if max_owners_per_destination is not None
            else get_settings().max_owners_per_destination
        )

    async def list_contacts(self, owner_id: UUID) -> list[Contact]:
        result = await self._session.execute(
            select(Contact)
            .where(Contact.owner_id == owner_id)
            .order_by(Contact.created_at.asc(), Contact.id.asc())
        )
        return list(result.scalars().all())

    async def add_contact(
        self,
        owner_id: UUID,
        name: str,
        channel: ContactChannel,
        destination: str,
    ) -> Contact:
        """Add a contact. It stays un-invited (status None) until `invite` succeeds."""
        destination = normalize_destination(channel, destination)
        if not destination:
            raise InvalidOperationError("Destination is required")
        await self._check_capacity(owner_id, destination)

        contact = Contact(
            owner_id=owner_id,
            name=name.strip(),
            channel=channel,
            destination=destination,
            status=None,
        )
        self._session.add(contact)
        await self._session.flush()
        logger.info(f"Subject {owner_id} added {channel.value} contact {contact.id}")
        return contact

    async def update_contact(
        self,
        owner_id: UUID,
        contact_id: UUID,
        name: str | None = None,
        channel: ContactChannel | None = None,
        destination: str | None = None,
    ) -> Contact:
        """
        Edit a contact.

        A new channel or destination is no longer vouched for by whoever
        confirmed the old one, so the link and confirmation are cleared and
        the contact must be invited again.
        """
        contact = await self.get_owned(owner_id, contact_id)

        if name is not None:
            contact.name = name.strip()

        if channel is not None or destination is not None:
            new_channel = channel or contact.channel
            new_destination = normalize_destination(
                new_channel,
                destination if destination is not None else contact.destination,
            )
            if not new_destination:
                raise InvalidOperationError("Destination is required")
            if new_channel != contact.channel or new_destination != contact.destination:
                if new_destination.lower() != contact.destination.lower():
                    await self._check_capacity(owner_id, new_destination)
                if contact.status is not None or contact.linked_subject_id is not None:
                    logger.info(f"Contact {contact_id} channel or destination changed, clearing link")
                contact.channel = new_channel
                contact.destination = new_destination
                contact.status = None
                contact.linked_subject = None
                contact.invite_sent_at = None
                contact.confirmed_at = None

        await self._session.flush()
        return contact

    async def delete_contact(self, owner_id: UUID, contact_id: UUID) -> None:
        contact = await self.get_owned(owner_id, contact_id)
        await self._session.delete(contact)
        await self._session.flush()
        logger.info(f"Subject {owner_id} deleted contact {contact_id}")

    async def get_owned(self, owner_id: UUID, contact_id: UUID) -> Contact:
        """A contact of `owner_id`. Someone else's contact is reported as missing."""
        result = await self._session.execute(
            select(Contact)
            .where(Contact.id == contact_id, Contact.owner_id == owner_id)
            .options(selectinload(Contact.linked_subject))
        )
        contact = result.scalar_one_or_none()
        if contact is None:
            raise NotFoundError(f"Contact {contact_id} not found")
        return contact

    async def _check_capacity(self, owner_id: UUID, destination: str) -> None:
        result = await self._session.execute(
            select(func.count(func.distinct(Contact.owner_id))).where(
                func.lower(Contact.destination) == destination.lower(),
                Contact.owner_id != owner_id,
            )
        )
        owners = result.scalar_one()
        if owners >= self._max_owners:
            logger.warning(f"Destination already used by {owners} owners, refusing for {owner_id}")
            raise CapacityError(destination, self._max_owners)


# =============================================================================
# LINKING PROTOCOL
# =============================================================================


class LinkingProtocol:
    """Invite, confirm, decline and unlink, plus the "who am I protecting" view."""

    def __init__(
        self,
        session: AsyncSession,
        dispatcher: DispatchEngine,
        directory: ContactDirectory | None = None,
        invite_base_url: str | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session = session
        self._dispatcher = dispatcher
        self._directory = directory or ContactDirectory(session)
        self._invite_base_url = (invite_base_url or get_settings().invite_base_url).rstrip("/")
        self._clock = clock

    def invite_url(self, contact_id: UUID) -> str:
        return f"{self._invite_base_url}/invite/{contact_id}"

    # =========================================================================
    # OWNER SIDE
    # =========================================================================

    async def invite(self, owner_id: UUID, contact_id: UUID) -> InviteResult:
        """
        Send a CONTACT_REQUEST and mark the contact PENDING.

        Raises AllChannelsFailedError when nothing could be delivered; the
        contact is then left exactly as it was. A first invite held back by
        the destination's cooldown raises InviteCooldownError instead.
        """
        contact = await self._directory.get_owned(owner_id, contact_id)
        if contact.status == ContactStatus.CONFIRMED:
            raise InvalidOperationError("Contact has already confirmed")

        owner = await self._session.get(Subject, owner_id)
        if owner is None:
            raise NotFoundError(f"Subject {owner_id} not found")

        push_token = await self._resolve_push_token(contact)
        report = await self._dispatcher.deliver(
            owner,
            NotificationType.CONTACT_REQUEST,
            [ContactRecipient(contact=contact, push_token=push_token)],
            meta={"contact_id": str(contact.id)},
            context={"invite_url": self.invite_url(contact.id), "contact_id": str(contact.id)},
        )
        entry = report.entries[0]

        if entry.status == DeliveryStatus.SENT:
            contact.status = ContactStatus.PENDING
            contact.invite_sent_at = self._clock()
            await self._session.flush()
            logger.info(f"Invite for contact {contact.id} sent via {entry.channel.value}")
            return InviteResult(contact=contact, delivery=entry)

        if entry.status == DeliveryStatus.SKIPPED and entry.error == REASON_COOLDOWN:
            logger.info(f"Invite for contact {contact.id} suppressed: {REASON_COOLDOWN}")
            if contact.status == ContactStatus.PENDING:
                # The earlier invite still stands
                return InviteResult(contact=contact, delivery=entry)
            await self._session.commit()
            raise InviteCooldownError()

        # Keep the failed delivery in the audit trail before surfacing the error
        await self._session.commit()
        attempts = [a.to_dict() for a in entry.attempts] or [{
            "channel": contact.channel.value,
            "destination": contact.destination,
            "success": False,
            "error": entry.error,
            "attempted": False,
        }]
        logger.warning(f"Invite for contact {contact.id} failed on every channel")
        raise AllChannelsFailedError(attempts)

    # =========================================================================
    # INVITED SIDE
    # =========================================================================

    async def confirm(
        self,
        caller: Subject,
        identity: VerifiedIdentity,
        contact_id: UUID,
    ) -> Contact:
        """
        Accept an invite as the authenticated caller.

        The owner is then sent an ACKNOWLEDGMENT; a failure there never
        undoes the confirmation.
        """
        contact = await self._get(contact_id)
        if contact.owner_id == caller.id:
            raise InvalidOperationError("You cannot confirm your own contact")
        self._verify_identity(contact, caller, identity, "confirm")

        if contact.status == ContactStatus.CONFIRMED and contact.linked_subject_id == caller.id:
            return contact
        if contact.status is None:
            raise InvalidOperationError("Contact has not been invited yet")

        contact.status = ContactStatus.CONFIRMED
        contact.linked_subject_id = caller.id
        contact.confirmed_at = self._clock()
        await self._session.flush()
        await self._session.commit()
        logger.info(f"Contact {contact.id} confirmed by subject {caller.id}")

        owner_id = contact.owner_id
        try:
            await self._dispatcher.dispatch(
                caller.id,
                NotificationType.ACKNOWLEDGMENT,
                target_subject_id=owner_id,
            )
            await self._session.commit()
        except Exception as e:
            await self._session.rollback()
            logger.error(f"Acknowledgment to subject {owner_id} failed: {e}")

        return await self._get(contact_id)

    async def decline(self, caller: Subject, identity: VerifiedIdentity, contact_id: UUID) -> None:
        """Reject an invite. The row is deleted."""
        contact = await self._get(contact_id)
        self._verify_identity(contact, caller, identity, "decline")
        await self._session.delete(contact)
        await self._session.flush()
        logger.info(f"Contact {contact_id} declined by subject {caller.id}")

    async def unlink(self, caller: Subject, identity: VerifiedIdentity, contact_id: UUID) -> None:
        """Stop protecting the owner. The row is deleted."""
        contact = await self._get(contact_id)
        self._verify_identity(contact, caller, identity, "unlink")
        await self._session.delete(contact)
        await self._session.flush()
        logger.info(f"Contact {contact_id} unlinked by subject {caller.id}")

    async def get_trusted_links(self, caller: Subject, identity: VerifiedIdentity) -> TrustedLinks:
        """Pending invites addressed to the caller and the links it already holds."""
        pending = await self._pending_invites_for(caller, identity)

        result = await self._session.execute(
            select(Contact)
            .where(
                Contact.status == ContactStatus.CONFIRMED,
                Contact.linked_subject_id == caller.id,
            )
            .options(selectinload(Contact.owner))
            .order_by(Contact.confirmed_at.desc())
        )
        active = [TrustedLink.from_contact(c) for c in result.scalars().all()]
        return TrustedLinks(pending=pending, active=active)

    # =========================================================================
    # HELPERS
    # =========================================================================

    async def _pending_invites_for(
        self,
        caller: Subject,
        identity: VerifiedIdentity,
    ) -> list[TrustedLink]:
        # Unscoped: matches PENDING rows of every owner against the caller's
        # own verified destinations.
        destinations = self._caller_destinations(caller, identity)
        if not destinations:
            return []
        result = await self._session.execute(
            select(Contact)
            .where(
                Contact.status == ContactStatus.PENDING,
                func.lower(Contact.destination).in_([d.lower() for d in destinations]),
                Contact.owner_id != caller.id,
            )
            .options(selectinload(Contact.owner))
            .order_by(Contact.invite_sent_at.desc())
        )
        return [TrustedLink.from_contact(c) for c in result.scalars().all()]

    @staticmethod
    def _caller_destinations(caller: Subject, identity: VerifiedIdentity) -> list[str]:
        # Only destinations the identity provider verified
        return list(identity.destinations)

    def _verify_identity(
        self,
        contact: Contact,
        caller: Subject,
        identity: VerifiedIdentity,
        action: str,
    ) -> None:
        if contact.linked_subject_id is not None and contact.linked_subject_id == caller.id:
            return
        if _matches(contact.destination, self._caller_destinations(caller, identity)):
            return
        logger.warning(
            f"[SECURITY] Identity mismatch: subject {caller.id} ({identity.provider}) "
            f"attempted to {action} contact {contact.id}"
        )
        raise IdentityMismatchError()

    async def _resolve_push_token(self, contact: Contact) -> str | None:
        """Push token of the registered subject behind the contact, if any."""
        if contact.linked_subject is not None:
            return contact.linked_subject.push_token

        if contact.channel == ContactChannel.PUSH:
            return None
        column = Subject.email if contact.channel == ContactChannel.EMAIL else Subject.phone
        result = await self._session.execute(
            select(Subject.push_token)
            .where(
                func.lower(column) == contact.destination.lower(),
                Subject.push_token.isnot(None),
                Subject.id != contact.owner_id,
            )
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def _get(self, contact_id: UUID) -> Contact:
        result = await self._session.execute(
            select(Contact)
            .where(Contact.id == contact_id)
            .options(selectinload(Contact.linked_subject))
            .execution_options(populate_existing=True)
        )
        contact = result.scalar_one_or_none()
        if contact is None:
            raise NotFoundError(f"Contact {contact_id} not found")
        return contact
