"""Wire format for file transfers.

Uploads go to the ``/batch`` endpoint as a hand-built ``multipart/form-data``
body whose parts must appear in a fixed order (the server reads the
operation metadata before the file part). Downloads are form-encoded POSTs
to ``/down`` authorized by a one-time anti-CSRF token.
"""

import json
import logging
import uuid
from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger(__name__)

# The batch endpoint expects socket ids from the web UI; the CLI has no
# socket, so it sends this placeholder.
SOCKET_ID_PLACEHOLDER = "undefined"

TEXT_CONTENT_TYPE = "text/plain"
BINARY_CONTENT_TYPE = "application/octet-stream"

AUTH_COOKIE_NAME = "puter_auth_token"
CSRF_FIELD_NAME = "anti_csrf"

CRLF = b"\r\n"


class TransferDirection(str, Enum):
    """Direction of a single file movement."""

    UPLOAD = "upload"
    DOWNLOAD = "download"


@dataclass(frozen=True)
class TransferOperation:
    """One file movement between the local and remote trees."""

    direction: TransferDirection
    local_path: Path
    remote_path: str
    dedupe_name: bool = False
    overwrite: bool = True


@dataclass(frozen=True)
class EncodedUpload:
    """A fully encoded batch-write request body."""

    body: bytes
    boundary: str
    operation_id: str
    fileinfo: dict[str, Any]
    operation: dict[str, Any]

    @property
    def content_type(self) -> str:
        return f"multipart/form-data; boundary={self.boundary}"


def new_boundary() -> str:
    """Create a random multipart boundary."""
    return f"----PyputerFormBoundary{uuid.uuid4().hex}"


def _field_part(boundary: str, name: str, value: str) -> bytes:
    return b"".join(
        [
            f"--{boundary}".encode(),
            CRLF,
            f'Content-Disposition: form-data; name="{name}"'.encode(),
            CRLF,
            CRLF,
            value.encode("utf-8"),
            CRLF,
        ]
    )


def _file_part(boundary: str, filename: str, content_type: str, payload: bytes) -> bytes:
    # Quotes would terminate the filename parameter early
    safe_name = filename.replace('"', "%22")
    return b"".join(
        [
            f"--{boundary}".encode(),
            CRLF,
            f'Content-Disposition: form-data; name="file"; filename="{safe_name}"'.encode(),
            CRLF,
            f"Content-Type: {content_type}".encode(),
            CRLF,
            CRLF,
            payload,
            CRLF,
        ]
    )


def encode_write_request(
    payload: bytes,
    destination: str,
    name: str,
    dedupe_name: bool = False,
    overwrite: bool = True,
    content_type: str = BINARY_CONTENT_TYPE,
    operation_id: Optional[str] = None,
    boundary: Optional[str] = None,
) -> EncodedUpload:
    """Encode a single-file write for the batch endpoint.

    Parts, in order: ``operation_id``, ``socket_id``,
    ``original_client_socket_id``, ``fileinfo``, ``operation``, ``file``.

    Args:
        payload: File content
        destination: Remote directory the file is written into
        name: File name inside the destination directory
        dedupe_name: Let the server pick a free name on collision
        overwrite: Replace an existing file with the same name
        content_type: Content type of the file part
        operation_id: Operation identifier (random UUID if omitted)
        boundary: Multipart boundary (random if omitted)

    Returns:
        EncodedUpload with the body and the metadata that went into it
    """
    operation_id = operation_id or str(uuid.uuid4())
    boundary = boundary or new_boundary()

    # Size comes from the bytes actually sent, so synthesized content
    # (e.g. an empty file from `touch`) is described correctly.
    fileinfo = {"name": name, "type": content_type, "size": len(payload)}
    operation = {
        "op": "write",
        "dedupe_name": dedupe_name,
        "overwrite": overwrite,
        "operation_id": operation_id,
        "path": destination,
        "name": name,
        "item_upload_id": 0,
    }

    body = b"".join(
        [
            _field_part(boundary, "operation_id", operation_id),
            _field_part(boundary, "socket_id", SOCKET_ID_PLACEHOLDER),
            _field_part(boundary, "original_client_socket_id", SOCKET_ID_PLACEHOLDER),
            _field_part(boundary, "fileinfo", json.dumps(fileinfo)),
            _field_part(boundary, "operation", json.dumps(operation)),
            _file_part(boundary, name, content_type, payload),
            f"--{boundary}--".encode(),
            CRLF,
        ]
    )

    logger.debug(
        f"Encoded write of {name} ({len(payload)} bytes) to {destination}, "
        f"operation {operation_id}"
    )
    return EncodedUpload(
        body=body,
        boundary=boundary,
        operation_id=operation_id,
        fileinfo=fileinfo,
        operation=operation,
    )


def download_form(token: str) -> dict[str, str]:
    """Form fields of a download request."""
    return {CSRF_FIELD_NAME: token}


def download_cookie_header(auth_token: str) -> str:
    """Cookie header of a download request (the bearer token as a session cookie)."""
    return f"{AUTH_COOKIE_NAME}={auth_token}"


def write_stream(
    chunks: Iterable[bytes],
    destination: Path,
    overwrite: bool = False,
) -> int:
    """Write a streamed response body to a local file.

    Args:
        chunks: Byte chunks of the body
        destination: Local file path
        overwrite: Delete an existing file first; if False an existing
            file is an error

    Returns:
        Number of bytes written

    Raises:
        FileExistsError: If destination exists and overwrite is False
        OSError: If the file cannot be written
    """
    if destination.exists():
        if not overwrite:
            raise FileExistsError(f"File already exists: {destination}")
        logger.debug(f"Removing existing file {destination}")
        destination.unlink()

    destination.parent.mkdir(parents=True, exist_ok=True)
    written = 0
    with open(destination, "wb") as f:
        for chunk in chunks:
            if chunk:
                f.write(chunk)
                written += len(chunk)
    return written
