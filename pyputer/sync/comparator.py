"""File comparison logic for sync operations."""

import logging
from dataclasses import dataclass, field
from typing import Optional

from .scanner import LocalFile, RemoteFile, build_file_map

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SyncPlan:
    """Files to transfer or delete in one sync run.

    A plan is never modified in place; conflict resolution produces a new
    plan.
    """

    to_upload: list[LocalFile] = field(default_factory=list)
    """Local files to upload"""

    to_download: list[RemoteFile] = field(default_factory=list)
    """Remote files to download"""

    to_delete: list[RemoteFile] = field(default_factory=list)
    """Remote files with no local counterpart"""

    @property
    def upload_paths(self) -> list[str]:
        return [f.relative_path for f in self.to_upload]

    @property
    def download_paths(self) -> list[str]:
        return [f.relative_path for f in self.to_download]

    @property
    def delete_paths(self) -> list[str]:
        return [f.relative_path for f in self.to_delete]

    @property
    def is_empty(self) -> bool:
        return not (self.to_upload or self.to_download or self.to_delete)

    def to_dict(self) -> dict:
        return {
            "upload": self.upload_paths,
            "download": self.download_paths,
            "delete": self.delete_paths,
        }


class FileComparator:
    """Compares local and remote file lists to build a sync plan.

    Local times (milliseconds) are truncated to seconds before comparing
    with remote times, so sub-second differences are ignored. Comparisons
    are strict: equal times never cause a transfer.

    An optional baseline maps relative paths to the modification time (in
    seconds) both sides had after the previous sync. A side that is newer
    than its baseline is selected for transfer even when the other side is
    newer still; a path changed on both sides therefore appears in both
    ``to_upload`` and ``to_download``.
    """

    def compare(
        self,
        local_files: list[LocalFile],
        remote_files: list[RemoteFile],
        baseline: Optional[dict[str, int]] = None,
    ) -> SyncPlan:
        """Build a sync plan.

        Args:
            local_files: Result of the local scan
            remote_files: Result of the remote scan
            baseline: Optional map of relative path to last synced mtime (s)

        Returns:
            SyncPlan with upload, download and delete lists
        """
        baseline = baseline or {}
        local_map = build_file_map(local_files, "local")
        remote_map = build_file_map(remote_files, "remote")

        to_upload: list[LocalFile] = []
        to_download: list[RemoteFile] = []
        to_delete: list[RemoteFile] = []

        for local_file in local_files:
            remote_file = remote_map.get(local_file.relative_path)
            if self._should_upload(local_file, remote_file, baseline):
                to_upload.append(local_file)

        for remote_file in remote_files:
            local_file = local_map.get(remote_file.relative_path)
            if local_file is None:
                to_delete.append(remote_file)
            elif self._should_download(local_file, remote_file, baseline):
                to_download.append(remote_file)

        logger.debug(
            f"Plan: {len(to_upload)} upload(s), {len(to_download)} download(s), "
            f"{len(to_delete)} remote-only"
        )
        return SyncPlan(to_upload=to_upload, to_download=to_download, to_delete=to_delete)

    def _should_upload(
        self,
        local_file: LocalFile,
        remote_file: Optional[RemoteFile],
        baseline: dict[str, int],
    ) -> bool:
        if remote_file is None:
            return True
        local_time = local_file.mtime_seconds
        if local_time > remote_file.mtime:
            return True
        synced = baseline.get(local_file.relative_path)
        return synced is not None and local_time > synced

    def _should_download(
        self,
        local_file: LocalFile,
        remote_file: RemoteFile,
        baseline: dict[str, int],
    ) -> bool:
        if remote_file.mtime > local_file.mtime_seconds:
            return True
        synced = baseline.get(remote_file.relative_path)
        return synced is not None and remote_file.mtime > synced
