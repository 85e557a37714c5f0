"""Utility functions for pyputer."""

import posixpath
from datetime import datetime
from typing import Optional

# =============================================================================
# Constants
# =============================================================================

# Retry configuration for transient errors
DEFAULT_MAX_RETRIES: int = 3
DEFAULT_RETRY_DELAY: float = 1.0  # seconds

# Request timeout
DEFAULT_TIMEOUT: float = 30.0  # seconds

# Chunk size when streaming downloads to disk
DOWNLOAD_CHUNK_SIZE: int = 64 * 1024


# =============================================================================
# Timestamp utilities
# =============================================================================


def ms_to_seconds(value_ms: int) -> int:
    """Convert epoch milliseconds to epoch seconds, truncating.

    Examples:
        >>> ms_to_seconds(1700000000999)
        1700000000
        >>> ms_to_seconds(0)
        0
    """
    return int(value_ms) // 1000


def format_timestamp(timestamp: Optional[int], now: Optional[datetime] = None) -> str:
    """Format epoch seconds for listings.

    Times within the last 24 hours are shown as a time of day, older ones
    as a date.

    Args:
        timestamp: Epoch seconds (None or 0 renders as "-")
        now: Reference time (defaults to the current time)

    Returns:
        Formatted string
    """
    if not timestamp:
        return "-"
    dt = datetime.fromtimestamp(timestamp)
    now = now or datetime.now()
    if abs((now - dt).total_seconds()) < 86400:
        return dt.strftime("%H:%M:%S")
    return dt.strftime("%Y-%m-%d")


# =============================================================================
# Size formatting utilities
# =============================================================================


def format_size(size_bytes: Optional[int]) -> str:
    """Format file size in human-readable format.

    Args:
        size_bytes: Size in bytes

    Returns:
        Formatted size string (e.g., "1.5 MB", "256 B")
    """
    if not size_bytes:
        return "0 B"
    if size_bytes < 1024:
        return f"{size_bytes} B"
    elif size_bytes < 1024 * 1024:
        return f"{size_bytes / 1024:.1f} KB"
    elif size_bytes < 1024 * 1024 * 1024:
        return f"{size_bytes / 1024 / 1024:.1f} MB"
    elif size_bytes < 1024 * 1024 * 1024 * 1024:
        return f"{size_bytes / 1024 / 1024 / 1024:.1f} GB"
    else:
        return f"{size_bytes / 1024 / 1024 / 1024 / 1024:.1f} TB"


# =============================================================================
# Remote path utilities
# =============================================================================


def resolve_path(current_path: str, relative_path: str) -> str:
    """Resolve a path against the current remote directory.

    Handles ``.`` and ``..`` segments and collapses duplicate slashes.
    ``..`` never climbs above the root.

    Args:
        current_path: Absolute current directory (e.g. "/alice/docs")
        relative_path: Path to resolve (e.g. "../pics")

    Returns:
        Absolute path

    Examples:
        >>> resolve_path("/alice/docs", "../pics")
        '/alice/pics'
        >>> resolve_path("/alice", "./a//b/")
        '/alice/a/b'
        >>> resolve_path("/", "..")
        '/'
    """
    parts = [p for p in current_path.split("/") if p]
    for part in relative_path.split("/"):
        if not part or part == ".":
            continue
        if part == "..":
            if parts:
                parts.pop()
        else:
            parts.append(part)
    return "/" + "/".join(parts)


def resolve_remote_path(current_path: str, remote_path: str) -> str:
    """Resolve a remote path; absolute paths are returned normalized.

    Examples:
        >>> resolve_remote_path("/alice", "/bob/x")
        '/bob/x'
        >>> resolve_remote_path("/alice", "x")
        '/alice/x'
        >>> resolve_remote_path("/alice", "~/x")
        '/alice/x'
    """
    if remote_path.startswith("/"):
        return resolve_path("/", remote_path)
    if remote_path == "~" or remote_path.startswith("~/"):
        home = "/" + current_path.strip("/").split("/")[0]
        return resolve_path(home, remote_path[1:])
    return resolve_path(current_path, remote_path)


def join_remote(directory: str, relative_path: str) -> str:
    """Join a remote directory and a `/`-separated relative path.

    Examples:
        >>> join_remote("/alice/site", "css/main.css")
        '/alice/site/css/main.css'
    """
    return posixpath.join(directory.rstrip("/") or "/", relative_path.lstrip("/"))
