"""Directory scanning utilities for sync operations."""

import logging
import posixpath
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from ..api import PuterClient
from ..exceptions import InvalidLocalPathError, PuterAPIError, PuterNotFoundError, RemoteListError
from ..models import FileEntry
from ..utils import ms_to_seconds

logger = logging.getLogger(__name__)


@dataclass
class LocalFile:
    """Represents a local file with metadata."""

    path: Path
    """Absolute path to the file"""

    relative_path: str
    """Relative path (using forward slashes for cross-platform compatibility)"""

    size: int
    """File size in bytes"""

    mtime: int
    """Last modification time (epoch milliseconds)"""

    is_dir: bool = False

    @property
    def mtime_seconds(self) -> int:
        """Modification time truncated to whole seconds."""
        return ms_to_seconds(self.mtime)

    @classmethod
    def from_path(cls, file_path: Path, base_path: Path) -> "LocalFile":
        """Create LocalFile from a path.

        Args:
            file_path: Absolute path to the file
            base_path: Base path for calculating relative paths

        Returns:
            LocalFile instance
        """
        stat = file_path.stat()
        return cls(
            path=file_path,
            # as_posix() gives forward slashes on all platforms
            relative_path=file_path.relative_to(base_path).as_posix(),
            size=stat.st_size,
            mtime=stat.st_mtime_ns // 1_000_000,
        )


@dataclass
class RemoteFile:
    """Represents a remote file with metadata."""

    entry: FileEntry
    """Remote entry from the API"""

    relative_path: str
    """Path relative to the remote sync root"""

    @property
    def path(self) -> str:
        """Absolute remote path."""
        return self.entry.path

    @property
    def size(self) -> int:
        return self.entry.size

    @property
    def mtime(self) -> int:
        """Last modification time (epoch seconds)."""
        return self.entry.modified

    @property
    def uid(self) -> str:
        return self.entry.uid

    @property
    def is_dir(self) -> bool:
        return self.entry.is_dir


class DirectoryScanner:
    """Scans local and remote directories into flat file lists.

    Both walks use an explicit worklist of directories, so deep trees do not
    grow the call stack. Directories are traversed but never emitted.

    Examples:
        >>> scanner = DirectoryScanner()
        >>> files = scanner.scan_local(Path("/sync/folder"))
        >>> remote = scanner.scan_remote(client, "/alice/folder")
    """

    def __init__(self, recursive: bool = True, exclude_dot_files: bool = False):
        """Initialize directory scanner.

        Args:
            recursive: Descend into subdirectories (both local and remote)
            exclude_dot_files: Whether to exclude files/folders starting with dot
        """
        self.recursive = recursive
        self.exclude_dot_files = exclude_dot_files

    def should_ignore(self, name: str) -> bool:
        """Check if a file or directory name should be skipped."""
        return self.exclude_dot_files and name.startswith(".")

    def scan_local(self, directory: Path) -> list[LocalFile]:
        """Scan a local directory.

        Symbolic links to files are read; links to directories are not
        followed. Unreadable directories and entries are skipped with a
        warning.

        Args:
            directory: Root of the walk

        Returns:
            List of LocalFile objects, relative to directory

        Raises:
            InvalidLocalPathError: If directory does not exist or is not a
                directory
        """
        if not directory.exists():
            raise InvalidLocalPathError(f"Local directory does not exist: {directory}")
        if not directory.is_dir():
            raise InvalidLocalPathError(f"Local path is not a directory: {directory}")

        files: list[LocalFile] = []
        pending: deque[Path] = deque([directory])

        while pending:
            current = pending.popleft()
            try:
                children = sorted(current.iterdir())
            except OSError as e:
                logger.warning(f"Skipping unreadable directory {current}: {e}")
                continue

            for item in children:
                if self.should_ignore(item.name):
                    continue
                try:
                    is_dir = item.is_dir()
                    # Directory links may point back at an ancestor
                    if is_dir and item.is_symlink():
                        logger.debug(f"Not following directory link {item}")
                        continue
                    if is_dir:
                        if self.recursive:
                            pending.append(item)
                    elif item.is_file():
                        files.append(LocalFile.from_path(item, directory))
                except OSError as e:
                    logger.warning(f"Skipping unreadable entry {item}: {e}")

        logger.debug(f"Local scan of {directory} found {len(files)} file(s)")
        return files

    def scan_remote(self, client: PuterClient, directory: str) -> list[RemoteFile]:
        """Scan a remote directory.

        A remote root that does not exist yet is treated as empty.

        Args:
            client: Puter API client
            directory: Absolute remote path of the root

        Returns:
            List of RemoteFile objects, relative to directory

        Raises:
            RemoteListError: If a listing fails or is not a list of entries
        """
        files: list[RemoteFile] = []
        pending: deque[tuple[str, str]] = deque([(directory, "")])

        while pending:
            current, prefix = pending.popleft()
            try:
                entries = client.list_directory(current)
            except PuterNotFoundError:
                if current == directory:
                    logger.debug(f"Remote directory {directory} does not exist yet")
                    return []
                raise RemoteListError(f"Remote directory vanished during scan: {current}")
            except PuterAPIError as e:
                raise RemoteListError(f"Failed to list {current}: {e}") from e

            for entry in entries:
                if self.should_ignore(entry.name):
                    continue
                relative_path = f"{prefix}/{entry.name}" if prefix else entry.name
                if entry.is_dir:
                    if self.recursive:
                        child = entry.path or posixpath.join(current, entry.name)
                        pending.append((child, relative_path))
                    continue
                if not entry.path:
                    entry.path = posixpath.join(current, entry.name)
                files.append(RemoteFile(entry=entry, relative_path=relative_path))

        logger.debug(f"Remote scan of {directory} found {len(files)} file(s)")
        return files


def build_file_map(files: list, kind: Optional[str] = None) -> dict:
    """Index files by relative path."""
    file_map = {}
    for f in files:
        if f.relative_path in file_map:
            logger.warning(f"Duplicate {kind or 'file'} path {f.relative_path}")
        file_map[f.relative_path] = f
    return file_map
