"""API client for the Puter filesystem."""

from __future__ import annotations

import logging
import random
import time
from pathlib import Path
from typing import Any

import httpx

from .config import config
from .exceptions import (
    DownloadRejectedError,
    InsufficientSpaceError,
    MissingCsrfTokenError,
    PuterAPIError,
    PuterAuthenticationError,
    PuterConfigError,
    PuterInvalidResponseError,
    PuterNetworkError,
    PuterNotFoundError,
    PuterPermissionError,
    PuterRateLimitError,
    UploadRejectedError,
)
from .models import DiskUsage, FileEntry
from .transfer import (
    BINARY_CONTENT_TYPE,
    download_cookie_header,
    download_form,
    encode_write_request,
    write_stream,
)
from .utils import (
    DEFAULT_MAX_RETRIES,
    DEFAULT_RETRY_DELAY,
    DEFAULT_TIMEOUT,
    DOWNLOAD_CHUNK_SIZE,
)

logger = logging.getLogger(__name__)

NOT_FOUND_CODE = "subject_does_not_exist"


def _error_details(response: httpx.Response) -> tuple[str | None, str | None]:
    """Extract (message, code) from an error response body."""
    try:
        data = response.json()
    except ValueError:
        text = response.text.strip()
        return (text or None, None)

    if isinstance(data, dict):
        error = data.get("error", data)
        if isinstance(error, dict):
            return (error.get("message"), error.get("code"))
        if isinstance(error, str):
            return (error, data.get("code"))
    return (None, None)


class PuterClient:
    """Client for the Puter REST API."""

    def __init__(
        self,
        auth_token: str | None = None,
        api_url: str | None = None,
        base_url: str | None = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.BaseTransport | None = None,
    ):
        """Initialize the Puter API client.

        Args:
            auth_token: Optional auth token (uses config if not provided)
            api_url: Optional API URL (uses config if not provided)
            base_url: Optional web UI URL, sent as Origin/Referer
            max_retries: Maximum number of retry attempts (default: 3)
            retry_delay: Initial delay between retries in seconds (default: 1.0)
            timeout: Request timeout in seconds (default: 30.0)
            transport: Optional httpx transport (used by tests)
        """
        self.auth_token = auth_token or config.auth_token
        self.api_url = (api_url or config.api_url).rstrip("/")
        self.base_url = (base_url or config.base_url).rstrip("/")
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.timeout = timeout
        self._transport = transport

        if not self.auth_token:
            raise PuterConfigError(
                "Auth token not configured. Run 'puter init' or set "
                "PUTER_AUTH_TOKEN environment variable."
            )

        self._client: httpx.Client | None = None

    def _get_client(self) -> httpx.Client:
        """Get or create the httpx client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.Client(
                headers={
                    "Authorization": f"Bearer {self.auth_token}",
                    "Accept": "*/*",
                    "Origin": self.base_url,
                    "Referer": f"{self.base_url}/",
                },
                timeout=httpx.Timeout(self.timeout),
                follow_redirects=True,
                transport=self._transport,
            )
        return self._client

    def close(self) -> None:
        """Close the client and release connections."""
        if self._client is not None and not self._client.is_closed:
            self._client.close()
            self._client = None

    def _url(self, endpoint: str) -> str:
        return f"{self.api_url}/{endpoint.lstrip('/')}"

    def _should_retry(self, exception: Exception, attempt: int) -> bool:
        """Determine if a request should be retried.

        Args:
            exception: The exception that occurred
            attempt: Current attempt number (0-based)

        Returns:
            True if the request should be retried, False otherwise
        """
        if attempt >= self.max_retries:
            return False

        # Transient failures
        if isinstance(exception, (PuterNetworkError, PuterRateLimitError)):
            return True

        if isinstance(exception, PuterAPIError) and exception.status_code:
            return 500 <= exception.status_code < 600

        return False

    def _calculate_retry_delay(self, attempt: int) -> float:
        """Exponential backoff with +/- 25% jitter.

        Args:
            attempt: Current attempt number (0-based)

        Returns:
            Delay in seconds
        """
        base_delay = self.retry_delay * (2**attempt)
        jitter = base_delay * 0.25 * (2 * random.random() - 1)
        return base_delay + jitter

    def _error_from_response(self, response: httpx.Response) -> PuterAPIError:
        """Map an error response to the matching exception."""
        status_code = response.status_code
        message, code = _error_details(response)

        if code == NOT_FOUND_CODE or status_code == 404:
            return PuterNotFoundError(
                message or "Resource not found", code=code, status_code=status_code
            )
        if status_code == 401:
            return PuterAuthenticationError(
                message or "Invalid auth token or unauthorized access",
                code=code,
                status_code=status_code,
            )
        if status_code == 403:
            return PuterPermissionError(
                message or "Access forbidden - check your permissions",
                code=code,
                status_code=status_code,
            )
        if status_code == 429:
            return PuterRateLimitError(
                "Rate limit exceeded - please try again later",
                code=code,
                status_code=status_code,
            )

        error_msg = f"API request failed with status {status_code}"
        if message:
            error_msg = f"{error_msg}: {message}"
        return PuterAPIError(error_msg, code=code, status_code=status_code)

    def _request(self, method: str, endpoint: str, **kwargs: Any) -> Any:
        """Make an API request with retry logic.

        Args:
            method: HTTP method
            endpoint: API endpoint path
            **kwargs: Additional arguments passed to httpx

        Returns:
            Response JSON data ({} for an empty body)

        Raises:
            PuterAPIError: If the request fails after all retries
        """
        url = self._url(endpoint)
        client = self._get_client()
        last_exception: PuterAPIError | None = None

        for attempt in range(self.max_retries + 1):
            logger.debug(f"{method} {url} (attempt {attempt + 1})")
            try:
                response = client.request(method, url, **kwargs)
            except httpx.RequestError as e:
                error: PuterAPIError = PuterNetworkError(f"Network error: {e}")
                last_exception = error
                if self._should_retry(error, attempt):
                    time.sleep(self._calculate_retry_delay(attempt))
                    continue
                raise error from e

            if response.is_error:
                error = self._error_from_response(response)
                last_exception = error
                if self._should_retry(error, attempt):
                    retry_after = response.headers.get("Retry-After")
                    if isinstance(error, PuterRateLimitError) and (
                        retry_after and retry_after.isdigit()
                    ):
                        delay = float(retry_after)
                    else:
                        delay = self._calculate_retry_delay(attempt)
                    logger.debug(f"Retrying {endpoint} in {delay:.2f}s: {error}")
                    time.sleep(delay)
                    continue
                raise error

            if not response.content:
                return {}

            content_type = response.headers.get("Content-Type", "")
            if "text/html" in content_type:
                # An HTML page instead of JSON means the token was not accepted
                raise PuterAuthenticationError(
                    "Invalid auth token - server returned HTML instead of JSON"
                )
            try:
                data = response.json()
            except ValueError as e:
                raise PuterInvalidResponseError(
                    f"Invalid JSON response from {endpoint}"
                ) from e

            # Some endpoints report failures in a 200 body
            if isinstance(data, dict) and isinstance(data.get("error"), dict):
                message, code = _error_details(response)
                if code == NOT_FOUND_CODE:
                    raise PuterNotFoundError(message or "Resource not found", code=code)
                raise PuterAPIError(message or "Request failed", code=code)
            return data

        if last_exception:
            raise last_exception
        raise PuterAPIError("Request failed after all retry attempts")

    # =========================
    # Account Operations
    # =========================

    def whoami(self) -> dict[str, Any]:
        """Get information about the user owning the auth token."""
        result: dict[str, Any] = self._request("GET", "/whoami")
        return result

    def get_disk_usage(self) -> DiskUsage:
        """Get the storage quota of the current user."""
        return DiskUsage.from_api_response(self._request("POST", "/df"))

    # =========================
    # Filesystem Operations
    # =========================

    def stat(self, path: str) -> FileEntry:
        """Get metadata of a file or directory.

        Raises:
            PuterNotFoundError: If the path does not exist
        """
        return FileEntry.from_api_response(
            self._request("POST", "/stat", json={"path": path})
        )

    def exists(self, path: str) -> bool:
        """Check whether a remote path exists."""
        try:
            self.stat(path)
            return True
        except PuterNotFoundError:
            return False

    def list_directory(self, path: str) -> list[FileEntry]:
        """List the direct children of a remote directory.

        Raises:
            PuterInvalidResponseError: If the server does not return a list
        """
        data = self._request("POST", "/readdir", json={"path": path})
        if not isinstance(data, list):
            raise PuterInvalidResponseError(
                f"Expected a list of entries for {path}, got {type(data).__name__}"
            )
        return [FileEntry.from_api_response(item) for item in data]

    def mkdir(
        self,
        path: str,
        overwrite: bool = False,
        dedupe_name: bool = True,
        create_missing_parents: bool = False,
    ) -> FileEntry:
        """Create a directory."""
        data = self._request(
            "POST",
            "/mkdir",
            json={
                "path": path,
                "overwrite": overwrite,
                "dedupe_name": dedupe_name,
                "create_missing_parents": create_missing_parents,
            },
        )
        return FileEntry.from_api_response(data)

    def ensure_directory(self, path: str) -> None:
        """Create a directory and its parents unless it already exists."""
        if self.exists(path):
            return
        logger.debug(f"Creating remote directory {path}")
        self.mkdir(path, overwrite=False, dedupe_name=False, create_missing_parents=True)

    def move(
        self,
        source: str,
        destination: str,
        overwrite: bool = False,
        new_name: str | None = None,
        create_missing_parents: bool = False,
    ) -> FileEntry:
        """Move a file or directory (source is a uid or a path).

        Returns:
            The moved entry at its new location
        """
        payload: dict[str, Any] = {
            "source": source,
            "destination": destination,
            "overwrite": overwrite,
            "create_missing_parents": create_missing_parents,
        }
        if new_name:
            payload["new_name"] = new_name
        data = self._request("POST", "/move", json=payload)
        if not isinstance(data, dict) or "moved" not in data:
            raise PuterInvalidResponseError("Move response has no 'moved' entry")
        return FileEntry.from_api_response(data["moved"])

    def rename(self, uid: str, new_name: str) -> FileEntry:
        """Rename a file or directory in place."""
        data = self._request("POST", "/rename", json={"uid": uid, "new_name": new_name})
        return FileEntry.from_api_response(data)

    def copy(
        self,
        source: str,
        destination: str,
        overwrite: bool = False,
        dedupe_name: bool = False,
    ) -> list[FileEntry]:
        """Copy a file or directory.

        Returns:
            The copied entries
        """
        data = self._request(
            "POST",
            "/copy",
            json={
                "source": source,
                "destination": destination,
                "overwrite": overwrite,
                "dedupe_name": dedupe_name,
            },
        )
        if not isinstance(data, list):
            data = [data]
        copied = [item["copied"] for item in data if isinstance(item, dict) and item.get("copied")]
        if not copied:
            raise PuterInvalidResponseError("Copy response has no 'copied' entry")
        return [FileEntry.from_api_response(item) for item in copied]

    def delete(
        self,
        paths: list[str],
        recursive: bool = True,
        descendants_only: bool = False,
    ) -> Any:
        """Permanently delete paths (or only their contents)."""
        return self._request(
            "POST",
            "/delete",
            json={
                "paths": paths,
                "recursive": recursive,
                "descendants_only": descendants_only,
            },
        )

    def read(self, path: str) -> bytes:
        """Read the whole content of a remote file."""
        client = self._get_client()
        try:
            response = client.get(self._url("/read"), params={"file": path})
        except httpx.RequestError as e:
            raise PuterNetworkError(f"Network error: {e}") from e
        if response.is_error:
            raise self._error_from_response(response)
        return response.content

    # =========================
    # Upload Operations
    # =========================

    def write(
        self,
        content: bytes,
        destination: str,
        name: str,
        dedupe_name: bool = False,
        overwrite: bool = True,
        content_type: str = BINARY_CONTENT_TYPE,
        check_space: bool = True,
    ) -> FileEntry:
        """Write content as a file into a remote directory.

        Args:
            content: File content
            destination: Remote directory
            name: File name
            dedupe_name: Let the server choose a free name on collision
            overwrite: Replace an existing file
            content_type: Content type of the file part
            check_space: Query the quota first and refuse when full

        Returns:
            The stored entry (final path and uid)

        Raises:
            InsufficientSpaceError: If the disk is full
            UploadRejectedError: If the server refuses the write
        """
        if check_space:
            usage = self.get_disk_usage()
            if usage.is_full:
                raise InsufficientSpaceError(usage)

        encoded = encode_write_request(
            content,
            destination=destination,
            name=name,
            dedupe_name=dedupe_name,
            overwrite=overwrite,
            content_type=content_type,
        )

        client = self._get_client()
        try:
            response = client.post(
                self._url("/batch"),
                content=encoded.body,
                headers={"Content-Type": encoded.content_type},
            )
        except httpx.RequestError as e:
            raise PuterNetworkError(f"Network error during upload: {e}") from e

        if response.is_error:
            raise UploadRejectedError(
                f"Upload of {name} failed: {response.text.strip() or response.status_code}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
            result = data["results"][0]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise PuterInvalidResponseError(
                f"Unexpected upload response for {name}"
            ) from e
        return FileEntry.from_api_response(result)

    def upload_file(
        self,
        file_path: Path,
        destination: str,
        name: str | None = None,
        dedupe_name: bool = True,
        overwrite: bool = False,
        check_space: bool = True,
    ) -> FileEntry:
        """Upload a local file into a remote directory.

        Args:
            file_path: Local file
            destination: Remote directory
            name: Remote file name (defaults to the local name)
            dedupe_name: Let the server choose a free name on collision
            overwrite: Replace an existing file
            check_space: Query the quota first and refuse when full

        Returns:
            The stored entry
        """
        content = file_path.read_bytes()
        return self.write(
            content,
            destination=destination,
            name=name or file_path.name,
            dedupe_name=dedupe_name,
            overwrite=overwrite,
            check_space=check_space,
        )

    # =========================
    # Download Operations
    # =========================

    def get_anticsrf_token(self) -> str:
        """Fetch a one-time anti-CSRF token.

        Raises:
            MissingCsrfTokenError: If the server issued no token
        """
        data = self._request("GET", "/get-anticsrf-token")
        token = data.get("token") if isinstance(data, dict) else None
        if not token:
            raise MissingCsrfTokenError("Server did not issue an anti-CSRF token")
        return str(token)

    def download_file(
        self,
        remote_path: str,
        output_path: Path,
        overwrite: bool = False,
    ) -> Path:
        """Download a remote file to a local path.

        A fresh anti-CSRF token is fetched for every call.

        Args:
            remote_path: Absolute remote file path
            output_path: Local destination file
            overwrite: Replace an existing local file

        Returns:
            Path where the file was saved

        Raises:
            MissingCsrfTokenError: If no token could be obtained
            DownloadRejectedError: If the server refuses the download or the
                file cannot be written
        """
        token = self.get_anticsrf_token()
        client = self._get_client()

        try:
            with client.stream(
                "POST",
                self._url("/down"),
                params={"path": remote_path},
                data=download_form(token),
                headers={"Cookie": download_cookie_header(self.auth_token or "")},
            ) as response:
                if response.is_error:
                    response.read()
                    message, _ = _error_details(response)
                    raise DownloadRejectedError(
                        f"Download of {remote_path} failed: "
                        f"{message or response.reason_phrase}",
                        status_code=response.status_code,
                    )
                size = write_stream(
                    response.iter_bytes(chunk_size=DOWNLOAD_CHUNK_SIZE),
                    output_path,
                    overwrite=overwrite,
                )
        except httpx.RequestError as e:
            raise PuterNetworkError(f"Network error during download: {e}") from e
        except OSError as e:
            raise DownloadRejectedError(f"Failed to write file: {e}") from e

        logger.debug(f"Downloaded {remote_path} to {output_path} ({size} bytes)")
        return output_path
