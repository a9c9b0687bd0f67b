"""Security utilities: bearer token verification and the cron secret check."""

import hmac
import logging
from datetime import datetime, timedelta, timezone
from typing import Any

import jwt
from pydantic import BaseModel

from .config import get_settings
from .errors import AuthError

settings = get_settings()
logger = logging.getLogger(__name__)

# Firebase Admin SDK (lazy initialization)
_firebase_app = None


def get_firebase_app():
    """Get or initialize Firebase Admin SDK."""
    global _firebase_app

    if not settings.firebase_enabled:
        return None

    if _firebase_app is None:
        try:
            import firebase_admin
            from firebase_admin import credentials

            # The private key may arrive with escaped newlines
            private_key = settings.firebase_private_key
            if private_key:
                private_key = private_key.replace("\\n", "\n")

            cred = credentials.Certificate({
                "type": "service_account",
                "project_id": settings.firebase_project_id,
                "client_email": settings.firebase_client_email,
                "private_key": private_key,
                "token_uri": "https://oauth2.googleapis.com/token",
            })
            _firebase_app = firebase_admin.initialize_app(cred)
            logger.info(f"Firebase Admin SDK initialized for project: {settings.firebase_project_id}")
        except Exception as e:
            logger.error(f"Failed to initialize Firebase Admin SDK: {e}")
            return None

    return _firebase_app


class VerifiedIdentity(BaseModel):
    """Who the bearer token says the caller is."""

    uid: str
    email: str | None = None
    phone: str | None = None
    name: str | None = None
    provider: str = "jwt"

    @property
    def destinations(self) -> list[str]:
        """Destination strings this identity can prove ownership of."""
        values = []
        if self.email:
            values.append(self.email.strip().lower())
        if self.phone:
            values.append(self.phone.strip())
        return values


def create_access_token(
    uid: str,
    email: str | None = None,
    phone: str | None = None,
    name: str | None = None,
    expires_delta: timedelta | None = None,
) -> str:
    """Create an HS256 access token in the auth provider's claim layout."""
    now = datetime.now(timezone.utc)
    payload: dict[str, Any] = {
        "sub": uid,
        "aud": settings.jwt_audience,
        "role": "authenticated",
        "iat": now,
        "exp": now + (expires_delta or timedelta(hours=1)),
    }
    if email:
        payload["email"] = email
    if phone:
        payload["phone"] = phone
    if name:
        payload["user_metadata"] = {"full_name": name}
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> VerifiedIdentity | None:
    """Decode and validate an HS256 access token."""
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            audience=settings.jwt_audience,
        )
    except jwt.ExpiredSignatureError:
        logger.info("Access token expired")
        return None
    except jwt.InvalidTokenError as e:
        logger.info(f"Access token rejected: {e}")
        return None

    metadata = payload.get("user_metadata") or {}
    return VerifiedIdentity(
        uid=payload["sub"],
        email=payload.get("email") or None,
        phone=payload.get("phone") or None,
        name=metadata.get("full_name") or metadata.get("name"),
        provider="jwt",
    )


def decode_firebase_token(token: str) -> VerifiedIdentity | None:
    """Decode and validate a Firebase ID token."""
    app = get_firebase_app()
    if not app:
        return None

    try:
        from firebase_admin import auth

        decoded_token = auth.verify_id_token(token)
        return VerifiedIdentity(
            uid=decoded_token["uid"],
            email=decoded_token.get("email"),
            phone=decoded_token.get("phone_number"),
            name=decoded_token.get("name"),
            provider="firebase",
        )
    except Exception as e:
        logger.warning(f"Firebase token verification failed: {e}")
        return None


def verify_token(token: str | None) -> VerifiedIdentity:
    """Verify a bearer token, trying Firebase first when it is configured."""
    if not token:
        raise AuthError("Not authenticated")

    if settings.firebase_enabled:
        identity = decode_firebase_token(token)
        if identity:
            return identity

    identity = decode_token(token)
    if identity is None:
        raise AuthError("Invalid or expired token")
    return identity


def verify_cron_secret(provided: str | None) -> bool:
    """Constant-time comparison against the configured scheduler secret."""
    if not settings.cron_secret or not provided:
        return False
    return hmac.compare_digest(provided.encode(), settings.cron_secret.encode())
