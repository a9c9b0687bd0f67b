"""Domain exceptions shared by the check-in, dispatch and contact services."""

from typing import Any


class SafetyCheckError(Exception):
    """Base exception for check-in service operations."""
    pass


class AuthError(SafetyCheckError):
    """Missing or invalid credential."""
    pass


class NotFoundError(SafetyCheckError):
    """Subject or contact does not exist (or is not visible to the caller)."""
    pass


class IdentityMismatchError(SafetyCheckError):
    """Authenticated identity does not match the invite it tries to act on."""

    def __init__(self, message: str = "authenticated identity does not match invite"):
        super().__init__(message)


class InvalidOperationError(SafetyCheckError):
    """Operation not allowed in the current state."""
    pass


class CapacityError(SafetyCheckError):
    """Destination is already used by too many owners."""

    def __init__(self, destination: str, limit: int):
        self.destination = destination
        self.limit = limit
        super().__init__(
            "This contact has been added by too many users. "
            "Please choose someone else who can reliably help you."
        )


class ChannelError(SafetyCheckError):
    """A single channel adapter failed to deliver."""

    def __init__(self, channel: str, message: str):
        self.channel = channel
        super().__init__(f"[{channel}] {message}")


class AllChannelsFailedError(SafetyCheckError):
    """Every channel attempted for an invite failed."""

    def __init__(self, attempts: list[dict[str, Any]]):
        self.attempts = attempts
        summary = "; ".join(
            f"{a['channel']}: {a.get('error') or 'failed'}" for a in attempts
        ) or "no channel could be attempted"
        super().__init__(f"All notification methods failed ({summary})")


class DispatchError(SafetyCheckError):
    """Dispatch could not run at all (subject unresolvable or event not written)."""
    pass


class InviteCooldownError(SafetyCheckError):
    """A first invite was held back because the destination was notified moments ago."""

    def __init__(self, message: str = "invite recently sent to this destination, try again later"):
        super().__init__(message)
