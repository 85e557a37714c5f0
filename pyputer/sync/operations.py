"""Sync operations wrapper for unified upload/download/delete interface."""

import logging
import os
import posixpath
from pathlib import Path

from ..api import PuterClient
from ..config import SessionContext
from ..models import FileEntry
from ..transfer import TransferDirection, TransferOperation
from ..utils import join_remote
from .scanner import LocalFile, RemoteFile

logger = logging.getLogger(__name__)


def align_mtime(local_path: Path, remote_entry: FileEntry) -> int:
    """Set a local file's times to the remote modification time.

    Returns:
        The modification time in seconds now shared by both sides
    """
    if remote_entry.modified:
        os.utime(local_path, (remote_entry.modified, remote_entry.modified))
        return remote_entry.modified
    return int(local_path.stat().st_mtime)


class SyncOperations:
    """File transfers and deletions executed by the sync engine."""

    def __init__(self, client: PuterClient, session: SessionContext):
        """Initialize sync operations.

        Args:
            client: Puter API client
            session: Session of the user owning the remote tree
        """
        self.client = client
        self.session = session

    def _upload(self, operation: TransferOperation) -> FileEntry:
        parent, name = posixpath.split(operation.remote_path)
        self.client.ensure_directory(parent)
        logger.debug(f"Uploading {operation.local_path} to {operation.remote_path}")
        return self.client.upload_file(
            operation.local_path,
            destination=parent,
            name=name,
            dedupe_name=operation.dedupe_name,
            overwrite=operation.overwrite,
        )

    def _download(self, operation: TransferOperation) -> None:
        operation.local_path.parent.mkdir(parents=True, exist_ok=True)
        logger.debug(f"Downloading {operation.remote_path} to {operation.local_path}")
        self.client.download_file(
            operation.remote_path,
            operation.local_path,
            overwrite=operation.overwrite,
        )

    def upload_file(self, local_file: LocalFile, remote_dir: str) -> FileEntry:
        """Upload a local file, replacing the remote copy.

        The remote parent directory is created when missing. After the write
        the local file takes the remote modification time.

        Args:
            local_file: Local file to upload
            remote_dir: Remote sync root

        Returns:
            The stored remote entry
        """
        operation = TransferOperation(
            direction=TransferDirection.UPLOAD,
            local_path=local_file.path,
            remote_path=join_remote(remote_dir, local_file.relative_path),
        )
        entry = self._upload(operation)
        self._align(local_file.path, entry)
        return entry

    def download_file(self, remote_file: RemoteFile, local_dir: Path) -> Path:
        """Download a remote file, replacing the local copy.

        Local parent directories are created when missing.

        Args:
            remote_file: Remote file to download
            local_dir: Local sync root

        Returns:
            Path where the file was saved
        """
        operation = TransferOperation(
            direction=TransferDirection.DOWNLOAD,
            local_path=local_dir.joinpath(*remote_file.relative_path.split("/")),
            remote_path=remote_file.path,
        )
        self._download(operation)
        self._align(operation.local_path, remote_file.entry)
        return operation.local_path

    def _align(self, local_path: Path, remote_entry: FileEntry) -> None:
        # Runs after a successful transfer, which stays successful
        try:
            align_mtime(local_path, remote_entry)
        except OSError as e:
            logger.warning(f"Could not set modification time of {local_path}: {e}")

    def delete_remote(self, remote_file: RemoteFile) -> FileEntry:
        """Move a remote file to the user's Trash.

        The file is renamed to its uid so that names never collide in Trash.

        Returns:
            The trashed entry
        """
        uid = remote_file.uid or self.client.stat(remote_file.path).uid
        logger.debug(f"Moving {remote_file.path} to {self.session.trash}")
        return self.client.move(
            uid,
            self.session.trash,
            overwrite=False,
            new_name=uid,
        )
