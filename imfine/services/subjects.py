"""Subject accounts: signup on first sight, profile settings and deletion."""

import logging
import re
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import get_settings
from ..core.errors import InvalidOperationError, NotFoundError
from ..core.security import VerifiedIdentity
from ..models import Contact, Subject, SubjectState

logger = logging.getLogger(__name__)

EXPO_PUSH_TOKEN = re.compile(r"^Expo(nent)?PushToken\[[^\]]+\]$")


@dataclass
class ProfileUpdate:
    """Fields a subject may change on itself. None means unchanged."""
    display_name: str | None = None
    checkin_interval_minutes: int | None = None
    grace_period_minutes: int | None = None
    vacation_mode: bool | None = None
    reminder_enabled: bool | None = None
    reminder_offset_minutes: int | None = None
    sound_enabled: bool | None = None
    sound_selection: str | None = None
    sound_volume: float | None = None
    timezone: str | None = None


class SubjectService:
    """Service for subject accounts."""

    def __init__(self, session: AsyncSession):
        self._session = session
        self._settings = get_settings()

    async def get(self, subject_id: UUID) -> Subject:
        subject = await self._session.get(Subject, subject_id, populate_existing=True)
        if subject is None:
            raise NotFoundError(f"Subject {subject_id} not found")
        return subject

    async def get_or_create(self, identity: VerifiedIdentity) -> Subject:
        """
        Map a verified identity to its Subject, creating it in ONBOARDING.

        Email and phone follow the identity provider.
        """
        subject = await self._by_auth_id(identity.uid)
        if subject is None:
            subject = Subject(
                auth_user_id=identity.uid,
                email=identity.email.strip().lower() if identity.email else None,
                phone=identity.phone.strip() if identity.phone else None,
                display_name=identity.name,
                state=SubjectState.ONBOARDING,
                checkin_interval_minutes=self._settings.default_checkin_interval_minutes,
                grace_period_minutes=self._settings.default_grace_period_minutes,
            )
            try:
                async with self._session.begin_nested():
                    self._session.add(subject)
                logger.info(f"Created subject {subject.id} for {identity.provider} user {identity.uid}")
                return subject
            except IntegrityError:
                # Two first requests raced; the other one created the row
                subject = await self._by_auth_id(identity.uid)
                if subject is None:
                    raise

        changed = False
        if identity.email and subject.email != identity.email.strip().lower():
            subject.email = identity.email.strip().lower()
            changed = True
        if identity.phone and subject.phone != identity.phone.strip():
            subject.phone = identity.phone.strip()
            changed = True
        if identity.name and not subject.display_name:
            subject.display_name = identity.name
            changed = True
        if changed:
            await self._session.flush()
        return subject

    async def update_profile(self, subject: Subject, changes: ProfileUpdate) -> Subject:
        if changes.checkin_interval_minutes is not None and changes.checkin_interval_minutes <= 0:
            raise InvalidOperationError("Check-in interval must be positive")
        if changes.grace_period_minutes is not None and changes.grace_period_minutes < 0:
            raise InvalidOperationError("Grace period cannot be negative")

        # The resulting pair must hold, whichever side changed
        interval = changes.checkin_interval_minutes or subject.checkin_interval_minutes
        offset = (
            changes.reminder_offset_minutes
            if changes.reminder_offset_minutes is not None
            else subject.reminder_offset_minutes
        )
        if not 0 <= offset < interval:
            raise InvalidOperationError("Reminder offset must be shorter than the check-in interval")
        if changes.sound_volume is not None and not 0.0 <= changes.sound_volume <= 1.0:
            raise InvalidOperationError("Volume must be between 0 and 1")

        for name, value in vars(changes).items():
            if value is not None:
                setattr(subject, name, value)

        await self._session.flush()
        logger.info(f"Subject {subject.id} updated settings")
        return subject

    async def set_push_token(self, subject: Subject, token: str | None) -> Subject:
        """Register an Expo push token, or clear it with None."""
        token = token.strip() if token else None
        if token and not EXPO_PUSH_TOKEN.match(token):
            raise InvalidOperationError("Push token must be an Expo push token")
        subject.push_token = token
        await self._session.flush()
        return subject

    async def delete_account(self, subject: Subject) -> None:
        """
        Delete the subject and everything it owns.

        Contacts of other subjects that link to this one keep their row but
        lose the link.
        """
        subject_id = subject.id
        await self._session.execute(
            update(Contact)
            .where(Contact.linked_subject_id == subject_id)
            .values(linked_subject_id=None)
            .execution_options(synchronize_session=False)
        )
        await self._session.delete(subject)
        await self._session.flush()
        logger.info(f"Deleted subject {subject_id} and owned records")

    async def _by_auth_id(self, auth_user_id: str) -> Subject | None:
        result = await self._session.execute(
            select(Subject).where(Subject.auth_user_id == auth_user_id)
        )
        return result.scalar_one_or_none()
