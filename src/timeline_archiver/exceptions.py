"""
Centralized exception hierarchy for the timeline archiver.

Errors are grouped by how far they reach: network and download errors stay
with the request or media item that raised them, account errors abort one
account's sync, and manifest errors abort the whole run.
"""

from typing import Optional


class ArchiverError(Exception):
    """
    Base exception for all timeline archiver errors.

    All custom exceptions in the archiver inherit from this class,
    allowing for broad exception handling when needed.
    """

    def __init__(self, message: str, details: Optional[str] = None):
        """
        Initialize the exception.

        Args:
            message: Primary error message
            details: Additional details or context about the error
        """
        super().__init__(message)
        self.message = message
        self.details = details

    def __str__(self) -> str:
        """Return formatted error message."""
        if self.details:
            return f"{self.message}: {self.details}"
        return self.message


class ConfigurationError(ArchiverError):
    """
    Raised when configuration validation fails.

    Examples:
        - Missing bearer token
        - No accounts given
        - Negative concurrency value
    """
    pass


class NetworkError(ArchiverError):
    """
    Raised when network operations fail.

    Examples:
        - Connection timeout
        - DNS resolution failure
        - Unexpected HTTP status
    """

    def __init__(
        self,
        message: str,
        details: Optional[str] = None,
        status_code: Optional[int] = None,
        url: Optional[str] = None,
        retry_after: Optional[float] = None
    ):
        """
        Initialize network error.

        Args:
            message: Primary error message
            details: Additional details about the error
            status_code: HTTP status code if applicable
            url: URL that caused the error
            retry_after: Seconds the server asked us to wait, if any
        """
        super().__init__(message, details)
        self.status_code = status_code
        self.url = url
        self.retry_after = retry_after

    def __str__(self) -> str:
        """Return formatted error message with status and URL."""
        parts = [self.message]

        if self.status_code:
            parts.append(f"(HTTP {self.status_code})")

        if self.url:
            parts.append(f"URL: {self.url}")

        if self.details:
            parts.append(f"- {self.details}")

        return " ".join(parts)


class RateLimitError(NetworkError):
    """Raised when the upstream signals rate limiting (HTTP 429)."""
    pass


class AuthenticationError(NetworkError):
    """Raised when the bearer token is rejected (HTTP 401/403)."""
    pass


class APIError(ArchiverError):
    """
    Raised when the upstream API answers with a payload we cannot use.

    Examples:
        - A 200 response carrying only an ``errors`` array
        - Missing ``data`` or malformed JSON
    """
    pass


class AccountError(ArchiverError):
    """Raised when a single account cannot be synced."""

    def __init__(
        self,
        message: str,
        details: Optional[str] = None,
        account: Optional[str] = None
    ):
        """
        Initialize account error.

        Args:
            message: Primary error message
            details: Additional details about the error
            account: Username of the account that caused the error
        """
        super().__init__(message, details)
        self.account = account

    def __str__(self) -> str:
        """Return formatted error message with account name."""
        if self.account:
            return f"{self.message} (account: {self.account})" + (
                f": {self.details}" if self.details else ""
            )
        return super().__str__()


class AccountNotFoundError(AccountError):
    """Raised when the username does not resolve to a user."""

    def __init__(self, account: str, details: Optional[str] = None):
        super().__init__(
            f"Account '{account}' not found",
            details=details,
            account=account
        )


class ProtectedAccountError(AccountError):
    """Raised for protected accounts, whose timelines are not archived."""

    def __init__(self, account: str):
        super().__init__(
            f"Account '{account}' is protected",
            details="only public timelines can be archived",
            account=account
        )


class AccountMismatchError(AccountError):
    """
    Raised when an existing archive belongs to a different user id.

    Usernames can be recycled upstream; merging a new owner's posts into
    an old archive would corrupt it.
    """

    def __init__(self, account: str, archived_id: str, resolved_id: str):
        super().__init__(
            f"Archive for '{account}' belongs to user {archived_id}",
            details=f"username now resolves to user {resolved_id}",
            account=account
        )
        self.archived_id = archived_id
        self.resolved_id = resolved_id


class AccountLockedError(AccountError):
    """Raised when another sync of the same account is already running."""

    def __init__(self, account: str, lock_path: Optional[str] = None):
        super().__init__(
            f"Account '{account}' is already being synced",
            details=f"lock held at {lock_path}" if lock_path else None,
            account=account
        )
        self.lock_path = lock_path


class DownloadError(ArchiverError):
    """
    Raised when media download operations fail.

    Examples:
        - Empty response body
        - Disk write error
        - No usable source URL
    """

    def __init__(
        self,
        message: str,
        details: Optional[str] = None,
        url: Optional[str] = None,
        filename: Optional[str] = None
    ):
        """
        Initialize download error.

        Args:
            message: Primary error message
            details: Additional details about the error
            url: URL of the media that failed to download
            filename: Target filename for the download
        """
        super().__init__(message, details)
        self.url = url
        self.filename = filename

    def __str__(self) -> str:
        """Return formatted error message with URL and filename."""
        parts = [self.message]

        if self.filename:
            parts.append(f"(file: {self.filename})")

        if self.url:
            parts.append(f"URL: {self.url}")

        if self.details:
            parts.append(f"- {self.details}")

        return " ".join(parts)


class MediaNotFoundError(DownloadError):
    """Raised when the media file is gone upstream (HTTP 404/410)."""
    pass


class ManifestError(ArchiverError):
    """
    Raised when manifest operations fail.

    Examples:
        - Failed to read manifest file
        - Invalid manifest format
        - Failed to write manifest (disk full)
    """

    def __init__(
        self,
        message: str,
        details: Optional[str] = None,
        manifest_path: Optional[str] = None
    ):
        """
        Initialize manifest error.

        Args:
            message: Primary error message
            details: Additional details about the error
            manifest_path: Path to the manifest file that caused the error
        """
        super().__init__(message, details)
        self.manifest_path = manifest_path

    def __str__(self) -> str:
        """Return formatted error message with manifest path."""
        if self.manifest_path:
            return f"{self.message} (manifest: {self.manifest_path})" + (
                f": {self.details}" if self.details else ""
            )
        return super().__str__()


class OrchestratorError(ArchiverError):
    """
    Raised when the orchestrator encounters an error.

    This is a high-level error indicating that the sync run as a whole
    could not be carried out.
    """
    pass


__all__ = [
    "ArchiverError",
    "ConfigurationError",
    "NetworkError",
    "RateLimitError",
    "AuthenticationError",
    "APIError",
    "AccountError",
    "AccountNotFoundError",
    "ProtectedAccountError",
    "AccountMismatchError",
    "AccountLockedError",
    "DownloadError",
    "MediaNotFoundError",
    "ManifestError",
    "OrchestratorError",
]
