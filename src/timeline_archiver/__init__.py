"""
Timeline Archiver - Incremental media archival for account timelines.

A command-line tool that keeps a local, resumable archive of the photos,
videos and animated GIFs posted by a set of accounts.
"""

__version__ = "0.1.0"
__license__ = "MIT"

# Import main components for convenient access
from .config import ArchiverConfig, load_config
from .downloader import MediaDownloader
from .exceptions import (
    AccountError,
    ArchiverError,
    ConfigurationError,
    DownloadError,
    ManifestError,
    NetworkError,
    OrchestratorError,
)
from .fetcher import FetchResult, TimelineFetcher
from .manifest import ArchiveStore
from .models import Manifest, MediaKind, MediaRef, MediaStatus, Post
from .orchestrator import AccountResult, SyncOrchestrator, SyncReport

# Package-level exports
__all__ = [
    "__version__",
    "__license__",
    # Configuration
    "ArchiverConfig",
    "load_config",
    # Core components
    "SyncOrchestrator",
    "SyncReport",
    "AccountResult",
    "TimelineFetcher",
    "FetchResult",
    "MediaDownloader",
    "ArchiveStore",
    # Models
    "MediaKind",
    "MediaStatus",
    "MediaRef",
    "Post",
    "Manifest",
    # Exceptions
    "ArchiverError",
    "ConfigurationError",
    "NetworkError",
    "AccountError",
    "DownloadError",
    "ManifestError",
    "OrchestratorError",
]
