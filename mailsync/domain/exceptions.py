"""Domain exceptions for mailbox synchronization.

Every failure the sync engine distinguishes is a subclass of
MailSyncException. Each subclass declares the ErrorClass it maps to so the
worker can classify a failure without inspecting vendor payloads.
"""

from typing import Any, ClassVar

from mailsync.domain.enums import ErrorClass


class MailSyncException(Exception):
    """Base exception for all sync engine errors.

    Attributes:
        message: Human-readable error description.
        error_code: Machine-readable error code.
        details: Additional error context (e.g. provider_id, status).
    """

    error_class: ClassVar[ErrorClass] = ErrorClass.UNKNOWN

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize the exception.

        Args:
            message: Human-readable error description.
            error_code: Optional machine-readable code; defaults to class name.
            details: Optional dict of extra context.
        """
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for API responses and failure records."""
        return {
            "error": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class AuthExpiredException(MailSyncException):
    """Access token is past expiry and no refresh was possible yet."""

    error_class = ErrorClass.AUTH_EXPIRED

    def __init__(self, message: str = "Access token expired") -> None:
        super().__init__(message, "AUTH_EXPIRED")


class AuthRevokedException(MailSyncException):
    """Refresh failed with a permanent vendor error (invalid_grant, revoked consent).

    Fatal: the provider is deactivated until the user reconnects it.
    """

    error_class = ErrorClass.AUTH_REVOKED

    def __init__(self, message: str = "Authorization revoked", vendor_error: str | None = None) -> None:
        details = {"vendor_error": vendor_error} if vendor_error else {}
        super().__init__(message, "AUTH_REVOKED", details)


class RateLimitedException(MailSyncException):
    """Vendor asked us to back off.

    Adapters return RateLimited from fetch_changes instead of raising; this
    exception covers calls that have no result channel (refresh, folders).
    """

    error_class = ErrorClass.RATE_LIMITED

    def __init__(self, retry_after: float | None = None) -> None:
        self.retry_after = retry_after
        super().__init__(
            "Rate limited by provider",
            "RATE_LIMITED",
            {"retry_after": retry_after},
        )


class CursorInvalidatedException(MailSyncException):
    """Vendor rejected the stored cursor (expired history id, stale delta link)."""

    error_class = ErrorClass.CURSOR_INVALIDATED

    def __init__(self, message: str = "Sync cursor is no longer valid") -> None:
        super().__init__(message, "CURSOR_INVALIDATED")


class NetworkTransientException(MailSyncException):
    """Timeouts, connection resets and vendor 5xx responses."""

    error_class = ErrorClass.NETWORK_TRANSIENT

    def __init__(self, message: str = "Transient network failure") -> None:
        super().__init__(message, "NETWORK_TRANSIENT")


class DataIntegrityException(MailSyncException):
    """A single message could not be normalized or persisted."""

    error_class = ErrorClass.DATA_INTEGRITY

    def __init__(self, message: str, external_id: str | None = None) -> None:
        details = {"external_id": external_id} if external_id else {}
        super().__init__(message, "DATA_INTEGRITY", details)


class SyncTimeoutException(MailSyncException):
    """A pass exceeded its wall-clock budget."""

    error_class = ErrorClass.TIMEOUT

    def __init__(self, timeout_seconds: float) -> None:
        super().__init__(
            f"Sync pass exceeded {timeout_seconds:.0f}s",
            "SYNC_TIMEOUT",
            {"timeout_seconds": timeout_seconds},
        )


class CredentialException(MailSyncException):
    """Stored credentials could not be encrypted or decrypted.

    Usually a rotated or wrong CREDENTIAL_ENCRYPTION_KEY, not a vendor
    revocation, so it backs off like any failure and never deactivates.
    """

    error_class = ErrorClass.CONFIGURATION

    def __init__(self, message: str = "Credential data is invalid or corrupted") -> None:
        super().__init__(message, "CREDENTIAL_ERROR")


class ResourceNotFoundException(MailSyncException):
    """A requested provider, email or folder does not exist."""

    def __init__(self, resource_type: str, resource_id: str) -> None:
        super().__init__(
            f"{resource_type} not found: {resource_id}",
            "RESOURCE_NOT_FOUND",
            {"resource_type": resource_type, "resource_id": resource_id},
        )


class ProviderInactiveException(MailSyncException):
    """A sync was requested for a deactivated provider."""

    def __init__(self, provider_id: str) -> None:
        super().__init__(
            f"Provider is not active: {provider_id}",
            "PROVIDER_INACTIVE",
            {"provider_id": provider_id},
        )


class UnsupportedProviderException(MailSyncException):
    """No adapter is registered for the provider type."""

    def __init__(self, provider_type: str, supported: list[str]) -> None:
        super().__init__(
            f"Unsupported provider: {provider_type}. Supported: {supported}",
            "UNSUPPORTED_PROVIDER",
            {"provider_type": provider_type},
        )


class CursorConflictException(MailSyncException):
    """Persisted cursor changed underneath a pass; its commit is refused."""

    def __init__(self, provider_id: str) -> None:
        super().__init__(
            f"Cursor changed during pass for provider {provider_id}",
            "CURSOR_CONFLICT",
            {"provider_id": provider_id},
        )


def classify(exc: BaseException) -> ErrorClass:
    """Map an exception to its ErrorClass (UNKNOWN for anything foreign)."""
    if isinstance(exc, MailSyncException):
        return exc.error_class
    if isinstance(exc, TimeoutError):
        return ErrorClass.TIMEOUT
    return ErrorClass.UNKNOWN
