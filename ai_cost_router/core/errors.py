"""
Error taxonomy for the dispatcher.

Each failure class maps to one point in the request path so callers can
tell a rejected request from a failed one.
"""

from typing import Optional


class RouterError(Exception):
    """Base class for all dispatcher errors."""


class ValidationError(RouterError):
    """Request is missing a required field or carries an invalid value."""


class AuthError(RouterError):
    """No authenticated user is attached to the request."""


class ProfileNotFoundError(AuthError):
    """The profile store has no profile for the user."""

    def __init__(self, user_id: str):
        super().__init__(f"User profile not found: {user_id}")
        self.user_id = user_id


class QuotaExceededError(RouterError):
    """Admission control rejected the request before any provider call."""

    def __init__(
        self,
        message: str,
        tier: Optional[str] = None,
        limit: Optional[int] = None,
        period: Optional[str] = None,
    ):
        super().__init__(message)
        self.tier = tier
        self.limit = limit
        # "daily" or "monthly"
        self.period = period


class ProviderError(RouterError):
    """A provider call failed (network, timeout, malformed response)."""

    def __init__(self, message: str, model: Optional[str] = None):
        super().__init__(message)
        self.model = model


class ResponseParseError(RouterError):
    """Structured output did not parse; reported without a fallback attempt."""

    def __init__(self, message: str, raw_content: str = ""):
        super().__init__(message)
        self.raw_content = raw_content


class DispatchError(RouterError):
    """Both the primary and the fallback provider failed."""


class DecryptionError(RouterError):
    """Ciphertext failed authentication or could not be decrypted."""


class ConfigError(RouterError, ValueError):
    """Invalid router configuration."""
