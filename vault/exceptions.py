"""Custom exception classes for LinkVault."""


class VaultException(Exception):
    """
    Base exception class for all LinkVault errors.
    """
    pass


class ValidationError(VaultException):
    """
    Raised when caller input is malformed (payload, filename, limits, flags).
    """
    pass


class ContentNotFoundError(VaultException):
    """
    Raised when a link does not exist or has expired.

    Both cases share this error so callers cannot tell them apart.
    """
    pass


class PasswordRequiredError(VaultException):
    """
    Raised when a link is password protected and no password was supplied.
    """
    pass


class PasswordRejectedError(VaultException):
    """
    Raised when the supplied link password does not match.
    """
    pass


class QuotaExceededError(VaultException):
    """
    Raised when a link has used up its maximum number of accesses.
    """
    pass


class ForbiddenError(VaultException):
    """
    Raised when a delete request carries neither the owner identity nor a valid delete token.
    """
    pass


class ConflictError(VaultException):
    """
    Raised when a unique link identifier could not be allocated.
    """
    pass


class AuthenticationRequiredError(VaultException):
    """
    Raised when an operation needs an authenticated account and none was supplied.
    """
    pass


class InvalidAPIKeyError(VaultException):
    """
    Raised when an API Key is present but unknown.
    """
    pass


class StorageUnavailableError(VaultException):
    """
    Raised when the blob store could not complete an operation.

    ``reason`` is the blob failure classification and ``detail`` the raw
    upstream diagnostic, which is only shown outside production.
    """

    def __init__(self, message: str, reason: str = "upstream_error", detail: str = ""):
        super().__init__(message)
        self.reason = reason
        self.detail = detail


class BlobStoreError(VaultException):
    """
    Base class for classified blob store failures.
    """

    reason = "upstream_error"
    transient = False

    def __init__(self, message: str, detail: str = ""):
        super().__init__(message)
        self.detail = detail


class BlobNotConfiguredError(BlobStoreError):
    """
    Raised when blob store credentials or endpoint are absent.
    """

    reason = "not_configured"


class BlobCredentialsRejectedError(BlobStoreError):
    """
    Raised when the blob store rejects our credentials.
    """

    reason = "credentials_rejected"


class BlobRateLimitedError(BlobStoreError):
    """
    Raised when the blob store signals rate limiting.
    """

    reason = "rate_limited"
    transient = True


class BlobNetworkError(BlobStoreError):
    """
    Raised on connection timeouts, resets and DNS failures.
    """

    reason = "network_unavailable"
    transient = True


class BlobUpstreamError(BlobStoreError):
    """
    Raised when the blob store answers with an error.

    Server-side (5xx) failures are transient; malformed requests are not.
    """

    reason = "upstream_error"

    def __init__(self, message: str, detail: str = "", transient: bool = False):
        super().__init__(message, detail)
        self.transient = transient


class BlobNotFoundError(BlobUpstreamError):
    """
    Raised when a blob key does not exist in the store.
    """

    reason = "blob_not_found"
