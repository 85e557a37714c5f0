"""pyputer - command line client for the Puter cloud filesystem."""

from .api import PuterClient
from .exceptions import (
    DownloadRejectedError,
    InsufficientSpaceError,
    InvalidLocalPathError,
    MissingCsrfTokenError,
    PuterAPIError,
    PuterAuthenticationError,
    PuterConfigError,
    PuterError,
    PuterInvalidResponseError,
    PuterNetworkError,
    PuterNotFoundError,
    PuterPermissionError,
    PuterRateLimitError,
    RemoteListError,
    SyncError,
    UploadRejectedError,
)
from .models import DiskUsage, FileEntry

__version__ = "0.1.0"

__all__ = [
    "PuterClient",
    "FileEntry",
    "DiskUsage",
    "PuterError",
    "PuterAPIError",
    "PuterAuthenticationError",
    "PuterConfigError",
    "PuterInvalidResponseError",
    "PuterNetworkError",
    "PuterNotFoundError",
    "PuterPermissionError",
    "PuterRateLimitError",
    "InsufficientSpaceError",
    "UploadRejectedError",
    "DownloadRejectedError",
    "MissingCsrfTokenError",
    "SyncError",
    "InvalidLocalPathError",
    "RemoteListError",
]
