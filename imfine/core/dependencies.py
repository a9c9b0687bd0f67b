"""FastAPI dependencies for authentication and the database session."""

import logging
from typing import Annotated
from uuid import UUID

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from .database import get_session
from .errors import AuthError
from .security import VerifiedIdentity, verify_cron_secret, verify_token
from ..models import Subject
from ..services.subjects import SubjectService

logger = logging.getLogger(__name__)

# Security scheme
bearer_scheme = HTTPBearer(auto_error=False)


class CurrentSubject:
    """The authenticated caller: its Subject row and the identity it proved."""

    def __init__(self, subject: Subject, identity: VerifiedIdentity):
        self.subject = subject
        self.identity = identity

    @property
    def id(self) -> UUID:
        return self.subject.id


async def get_current_subject(
    credentials: Annotated[
        HTTPAuthorizationCredentials | None, Depends(bearer_scheme)
    ],
    session: Annotated[AsyncSession, Depends(get_session)],
) -> CurrentSubject:
    """Dependency to get the current authenticated subject.

    Verifies the bearer token and maps it to a Subject, creating one in
    ONBOARDING on first sight.
    """
    try:
        identity = verify_token(credentials.credentials if credentials else None)
    except AuthError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e),
            headers={"WWW-Authenticate": "Bearer"},
        )

    subject = await SubjectService(session).get_or_create(identity)
    return CurrentSubject(subject=subject, identity=identity)


def require_cron_secret(
    x_cron_secret: Annotated[str | None, Header(alias="X-Cron-Secret")] = None,
) -> None:
    """Guard for scheduler-only endpoints."""
    if not verify_cron_secret(x_cron_secret):
        logger.warning("[SECURITY] Rejected monitor call with missing or invalid cron secret")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid cron secret",
        )


# Type aliases for cleaner dependency injection
CurrentSubjectDep = Annotated[CurrentSubject, Depends(get_current_subject)]
CronSecretDep = Annotated[None, Depends(require_cron_secret)]
SessionDep = Annotated[AsyncSession, Depends(get_session)]
