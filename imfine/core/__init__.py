"""Core application utilities."""

from .config import Settings, get_settings
from .database import (
    async_session_factory,
    build_engine,
    build_session_factory,
    close_db,
    engine,
    get_session,
    get_session_context,
    init_db,
)
from .errors import (
    AllChannelsFailedError,
    AuthError,
    CapacityError,
    ChannelError,
    DispatchError,
    IdentityMismatchError,
    InvalidOperationError,
    InviteCooldownError,
    NotFoundError,
    SafetyCheckError,
)
from .security import (
    VerifiedIdentity,
    create_access_token,
    decode_firebase_token,
    decode_token,
    verify_cron_secret,
    verify_token,
)
from .dependencies import (
    CronSecretDep,
    CurrentSubject,
    CurrentSubjectDep,
    SessionDep,
    get_current_subject,
    require_cron_secret,
)

__all__ = [
    # Config
    "Settings",
    "get_settings",
    # Database
    "engine",
    "async_session_factory",
    "build_engine",
    "build_session_factory",
    "get_session",
    "get_session_context",
    "init_db",
    "close_db",
    # Errors
    "SafetyCheckError",
    "AuthError",
    "NotFoundError",
    "IdentityMismatchError",
    "InvalidOperationError",
    "CapacityError",
    "ChannelError",
    "AllChannelsFailedError",
    "DispatchError",
    "InviteCooldownError",
    # Security
    "VerifiedIdentity",
    "create_access_token",
    "decode_token",
    "decode_firebase_token",
    "verify_token",
    "verify_cron_secret",
    # Dependencies
    "CurrentSubject",
    "get_current_subject",
    "require_cron_secret",
    "CurrentSubjectDep",
    "CronSecretDep",
    "SessionDep",
]
