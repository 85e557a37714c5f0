"""Exceptions raised by the Puter client and the sync engine."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import DiskUsage


class PuterError(Exception):
    """Base class for all pyputer errors."""


class PuterConfigError(PuterError):
    """Missing or invalid local configuration (e.g. no auth token)."""


class PuterAPIError(PuterError):
    """The Puter API returned an error.

    Attributes:
        code: Error code reported by the server (e.g. "subject_does_not_exist")
        status_code: HTTP status code, if the error came from a response
    """

    def __init__(
        self,
        message: str,
        code: str | None = None,
        status_code: int | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code


class PuterAuthenticationError(PuterAPIError):
    """Invalid or expired auth token."""


class PuterPermissionError(PuterAPIError):
    """Access to the resource is forbidden."""


class PuterNotFoundError(PuterAPIError):
    """The requested file or directory does not exist."""


class PuterRateLimitError(PuterAPIError):
    """Too many requests."""


class PuterNetworkError(PuterAPIError):
    """Transport level failure (connection refused, timeout, ...)."""


class PuterInvalidResponseError(PuterAPIError):
    """The server answered with something that is not the expected JSON."""


class InsufficientSpaceError(PuterAPIError):
    """The remote disk is full; nothing can be written."""

    def __init__(self, usage: DiskUsage):
        super().__init__("Not enough disk space to upload the file")
        self.usage = usage


class UploadRejectedError(PuterAPIError):
    """The batch-write endpoint refused an upload."""


class DownloadRejectedError(PuterAPIError):
    """The download endpoint refused a request or the file could not be saved."""


class MissingCsrfTokenError(PuterAPIError):
    """No anti-CSRF token was issued for a download."""


class SyncError(PuterError):
    """Fatal error that aborts a whole sync run."""


class InvalidLocalPathError(SyncError, ValueError):
    """The local sync root does not exist or is not a directory."""


class RemoteListError(SyncError):
    """The remote directory could not be listed."""
