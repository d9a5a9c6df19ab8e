"""Error taxonomy for the X integration

Every error carries a ``retryable`` flag that the retry utility consults.
Validation, auth and permission failures surface immediately; transient and
upstream rate-limit failures are retried and only surface after exhaustion.
"""
from typing import List, Optional


class ShareKitError(Exception):
    """Base class for all integration errors"""
    retryable = False


class InputValidationError(ShareKitError):
    """Oversized or unsupported media, malformed callback, unknown operation"""


class InvalidResponseFormatError(ShareKitError):
    """Provider response did not match the expected schema"""


# Auth

class AuthError(ShareKitError):
    """Credentials rejected or unusable (HTTP 401, failed exchange)"""


class InvalidStateError(AuthError):
    """OAuth state is unknown, already used, or older than the PKCE window"""


class TokenExchangeError(AuthError):
    """Authorization code could not be exchanged for tokens"""


class TokenRefreshError(AuthError):
    """Refresh token missing or rejected"""


class SessionRefreshFailedError(AuthError):
    """A session near expiry could not be refreshed and was dropped"""


class PermissionDeniedError(ShareKitError):
    """HTTP 403 from the provider, including insufficient API access tier"""

    def __init__(self, message: str, remediation: str) -> None:
        super().__init__(message)
        self.remediation = remediation


# Rate limiting

class RateLimitError(ShareKitError):
    retryable = True


class RateLimitExceededError(RateLimitError):
    """Local fixed-window limit exceeded for an operation"""
    # Retrying inside the same window only burns more of the budget
    retryable = False

    def __init__(self, operation: str, limit: Optional[int] = None) -> None:
        super().__init__(f"Rate limit exceeded for {operation}")
        self.operation = operation
        self.limit = limit


class UpstreamRateLimitError(RateLimitError):
    """HTTP 429 from the provider"""

    def __init__(self, message: str, retry_after: Optional[int] = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class TransientError(ShareKitError):
    """Network failure or 5xx from the provider"""
    retryable = True


# Encryption

class EncryptionError(ShareKitError):
    """Envelope could not be encrypted or decrypted"""


class InvalidKeyError(EncryptionError):
    """Key is not exactly 32 bytes"""


class KeyRotationError(EncryptionError):
    """Rotation aborted; the previous key stays active"""

    def __init__(self, message: str, migrated: List[str], failed: List[str]) -> None:
        super().__init__(message)
        self.migrated = migrated
        self.failed = failed


# Media processing

class ProcessingTimeoutError(ShareKitError):
    """Media status polling exceeded its attempt bound"""


class MediaProcessingError(ShareKitError):
    """Provider reported media processing as failed"""
