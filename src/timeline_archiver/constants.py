"""Constants for the timeline archiver application."""

from typing import Final

# Rate limiting and concurrency defaults
DEFAULT_RATE_LIMIT: Final[float] = 5.0  # requests per second
DEFAULT_CONCURRENCY: Final[int] = 4  # download workers per account
DEFAULT_ACCOUNT_CONCURRENCY: Final[int] = 2  # accounts synced at once
DEFAULT_TIMEOUT: Final[float] = 30.0  # HTTP request timeout in seconds
DEFAULT_MAX_RETRIES: Final[int] = 3  # maximum retry attempts
DEFAULT_BASE_BACKOFF: Final[float] = 1.0  # initial backoff in seconds
DEFAULT_MAX_BACKOFF: Final[float] = 32.0  # maximum backoff in seconds
DEFAULT_MAX_RATE_LIMIT_WAIT: Final[float] = 900.0  # one API rate window

USER_AGENT: Final[str] = "TimelineArchiver/0.1 (public timeline archival tool)"

# Twitter API v2
API_BASE_URL: Final[str] = "https://api.twitter.com/2"
USER_LOOKUP_PATH: Final[str] = "/users/by/username/{username}"
USER_TWEETS_PATH: Final[str] = "/users/{user_id}/tweets"

# Documented maximum number of posts the user timeline endpoint will return
UPSTREAM_RETRIEVAL_CEILING: Final[int] = 3200
MAX_PAGE_SIZE: Final[int] = 100
MIN_PAGE_SIZE: Final[int] = 5

# Archive layout
MANIFEST_FILENAME: Final[str] = "manifest.json"
MANIFEST_VERSION: Final[int] = 1
LOCK_FILENAME: Final[str] = ".sync.lock"
# A lock file without a readable pid is only reclaimed after this long
UNREADABLE_LOCK_GRACE_SECONDS: Final[float] = 60.0
PARTIAL_SUFFIX: Final[str] = ".part"
DOWNLOAD_CHUNK_SIZE: Final[int] = 65536

FILE_EXISTS_POLICIES: Final[frozenset[str]] = frozenset({"adopt", "overwrite"})

# HTTP status codes
HTTP_OK: Final[int] = 200
HTTP_BAD_REQUEST: Final[int] = 400
HTTP_UNAUTHORIZED: Final[int] = 401
HTTP_FORBIDDEN: Final[int] = 403
HTTP_NOT_FOUND: Final[int] = 404
HTTP_REQUEST_TIMEOUT: Final[int] = 408
HTTP_GONE: Final[int] = 410
HTTP_TOO_MANY_REQUESTS: Final[int] = 429
HTTP_INTERNAL_SERVER_ERROR: Final[int] = 500
HTTP_BAD_GATEWAY: Final[int] = 502
HTTP_SERVICE_UNAVAILABLE: Final[int] = 503
HTTP_GATEWAY_TIMEOUT: Final[int] = 504

# Retry-able status codes
RETRYABLE_STATUS_CODES: Final[frozenset[int]] = frozenset({
    HTTP_REQUEST_TIMEOUT,
    HTTP_TOO_MANY_REQUESTS,
    HTTP_INTERNAL_SERVER_ERROR,
    HTTP_BAD_GATEWAY,
    HTTP_SERVICE_UNAVAILABLE,
    HTTP_GATEWAY_TIMEOUT,
})

# Media that no longer exists upstream
PERMANENT_MISSING_STATUS_CODES: Final[frozenset[int]] = frozenset({
    HTTP_NOT_FOUND,
    HTTP_GONE,
})

# Process exit codes
EXIT_SUCCESS: Final[int] = 0
EXIT_FAILURE: Final[int] = 1
EXIT_PARTIAL: Final[int] = 2
EXIT_SOME_ACCOUNTS_FAILED: Final[int] = 3
EXIT_INTERRUPTED: Final[int] = 130
