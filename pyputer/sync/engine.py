"""Core sync engine for executing sync operations."""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional, Union

from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
)

from ..api import PuterClient
from ..config import SessionContext
from ..exceptions import InsufficientSpaceError, InvalidLocalPathError, PuterError
from ..output import OutputFormatter
from .comparator import FileComparator, SyncPlan
from .conflicts import (
    ConflictHandler,
    ConflictResolution,
    find_conflicts,
    resolve_conflicts,
)
from .operations import SyncOperations
from .scanner import DirectoryScanner, LocalFile, RemoteFile, build_file_map
from .state import SyncStateManager

logger = logging.getLogger(__name__)


class SyncPhase(str, Enum):
    """Phases a sync run moves through."""

    IDLE = "idle"
    VALIDATING = "validating"
    LISTING = "listing"
    DIFFING = "diffing"
    RESOLVING_CONFLICTS = "resolving_conflicts"
    TRANSFERRING = "transferring"
    DELETING = "deleting"
    DONE = "done"
    FAILED = "failed"


class SyncAction(str, Enum):
    """Actions that can be taken during sync."""

    UPLOAD = "upload"
    DOWNLOAD = "download"
    DELETE_REMOTE = "delete_remote"


@dataclass
class SyncResult:
    """Outcome of one sync run."""

    plan: SyncPlan
    """Plan that was executed (after conflict resolution)"""

    conflicts: list[str] = field(default_factory=list)
    resolution: Optional[ConflictResolution] = None
    uploaded: list[str] = field(default_factory=list)
    downloaded: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    dry_run: bool = False
    delete: bool = False

    @property
    def stats(self) -> dict:
        """Counts in the shape used by the summary display.

        For a dry run these are the planned counts.
        """
        if self.dry_run:
            return {
                "uploads": len(self.plan.to_upload),
                "downloads": len(self.plan.to_download),
                "deletes_remote": len(self.plan.to_delete) if self.delete else 0,
                "conflicts": len(self.conflicts),
                "failures": 0,
            }
        return {
            "uploads": len(self.uploaded),
            "downloads": len(self.downloaded),
            "deletes_remote": len(self.deleted),
            "conflicts": len(self.conflicts),
            "failures": len(self.failed),
        }

    def to_dict(self) -> dict:
        return {
            "plan": self.plan.to_dict(),
            "conflicts": self.conflicts,
            "resolution": self.resolution.value if self.resolution else None,
            "uploaded": self.uploaded,
            "downloaded": self.downloaded,
            "deleted": self.deleted,
            "failed": self.failed,
            "dry_run": self.dry_run,
            "delete": self.delete,
        }


class SyncEngine:
    """Core sync engine that orchestrates file synchronization.

    A run validates the local root, lists both trees, builds a plan, lets a
    conflict handler settle paths changed on both sides, then uploads,
    downloads and (optionally) trashes remote-only files one at a time. A
    failed file is reported and skipped; the rest of the run continues.
    """

    def __init__(
        self,
        client: PuterClient,
        session: SessionContext,
        output: Optional[OutputFormatter] = None,
        state_manager: Optional[SyncStateManager] = None,
    ):
        """Initialize sync engine.

        Args:
            client: Puter API client
            session: Session of the user owning the remote tree
            output: Output formatter for displaying progress/status
            state_manager: Stores the baseline between runs (None disables it)
        """
        self.client = client
        self.session = session
        self.output = output or OutputFormatter()
        self.state_manager = state_manager
        self.operations = SyncOperations(client, session)
        self.comparator = FileComparator()
        self.phase = SyncPhase.IDLE

    def _enter(self, phase: SyncPhase) -> None:
        logger.debug(f"Sync phase: {self.phase.value} -> {phase.value}")
        self.phase = phase

    def sync(
        self,
        local_dir: Union[Path, str],
        remote_dir: str,
        delete: bool = False,
        recursive: bool = True,
        conflict_handler: Optional[ConflictHandler] = None,
        dry_run: bool = False,
        exclude_dot_files: bool = False,
    ) -> SyncResult:
        """Synchronize a local directory with a remote directory.

        Args:
            local_dir: Local root
            remote_dir: Absolute remote root
            delete: Move remote files with no local counterpart to Trash
            recursive: Descend into subdirectories on both sides
            conflict_handler: Chooses the resolution for conflicting paths;
                conflicts are skipped when omitted
            dry_run: Show the plan without transferring anything
            exclude_dot_files: Ignore names starting with a dot

        Returns:
            SyncResult describing what happened

        Raises:
            InvalidLocalPathError: If local_dir is missing or not a directory
            RemoteListError: If the remote tree cannot be listed

        Examples:
            >>> engine = SyncEngine(client, config.session())
            >>> result = engine.sync(Path("site"), "/alice/site", dry_run=True)
            >>> print(f"Would upload {result.stats['uploads']} files")
        """
        local_dir = Path(local_dir)
        try:
            return self._run(
                local_dir,
                remote_dir,
                delete=delete,
                recursive=recursive,
                conflict_handler=conflict_handler,
                dry_run=dry_run,
                exclude_dot_files=exclude_dot_files,
            )
        except KeyboardInterrupt:
            self._enter(SyncPhase.FAILED)
            self.output.warning("\nSync cancelled by user")
            raise
        except Exception:
            self._enter(SyncPhase.FAILED)
            raise

    def _run(
        self,
        local_dir: Path,
        remote_dir: str,
        delete: bool,
        recursive: bool,
        conflict_handler: Optional[ConflictHandler],
        dry_run: bool,
        exclude_dot_files: bool,
    ) -> SyncResult:
        # Step 1: Validate before any network call
        self._enter(SyncPhase.VALIDATING)
        if not local_dir.exists():
            raise InvalidLocalPathError(f"Local directory does not exist: {local_dir}")
        if not local_dir.is_dir():
            raise InvalidLocalPathError(f"Local path is not a directory: {local_dir}")

        if not self.output.quiet:
            self.output.info(f"Syncing: {local_dir} <-> {remote_dir}")
            if dry_run:
                self.output.info("Dry run: No changes will be made")
            self.output.print("")

        # Step 2: Scan files
        self._enter(SyncPhase.LISTING)
        scanner = DirectoryScanner(
            recursive=recursive, exclude_dot_files=exclude_dot_files
        )
        local_files, remote_files = self._scan(scanner, local_dir, remote_dir)

        # Step 3: Compare files and build the plan
        self._enter(SyncPhase.DIFFING)
        baseline: dict[str, int] = {}
        if self.state_manager is not None:
            baseline = self.state_manager.load_baseline(local_dir, remote_dir)
        plan = self.comparator.compare(local_files, remote_files, baseline)
        conflicts = find_conflicts(plan)
        self._display_sync_plan(plan, conflicts, delete)

        # Step 4: Handle conflicts if any
        resolution: Optional[ConflictResolution] = None
        if conflicts:
            self._enter(SyncPhase.RESOLVING_CONFLICTS)
            self._display_conflicts(conflicts)
            if not dry_run:
                resolution = self._choose_resolution(conflicts, conflict_handler)
                plan = resolve_conflicts(plan, conflicts, resolution)

        result = SyncResult(
            plan=plan,
            conflicts=conflicts,
            resolution=resolution,
            dry_run=dry_run,
            delete=delete,
        )

        if dry_run:
            self._enter(SyncPhase.DONE)
            self._display_summary(result)
            return result

        # Step 5: Execute transfers
        self._enter(SyncPhase.TRANSFERRING)
        actions: list[tuple[SyncAction, Union[LocalFile, RemoteFile]]] = [
            (SyncAction.UPLOAD, f) for f in plan.to_upload
        ]
        actions += [(SyncAction.DOWNLOAD, f) for f in plan.to_download]
        self._execute_actions(actions, result, local_dir, remote_dir, "Syncing files...")

        # Step 6: Trash remote-only files
        if delete and plan.to_delete:
            self._enter(SyncPhase.DELETING)
            deletions: list[tuple[SyncAction, Union[LocalFile, RemoteFile]]] = [
                (SyncAction.DELETE_REMOTE, f) for f in plan.to_delete
            ]
            self._execute_actions(
                deletions, result, local_dir, remote_dir, "Moving to Trash..."
            )

        # Step 7: Record the new baseline
        if self.state_manager is not None:
            new_baseline = self._build_baseline(
                local_files, remote_files, baseline, result
            )
            self.state_manager.save_state(local_dir, remote_dir, new_baseline)

        self._enter(SyncPhase.DONE)
        self._display_summary(result)
        return result

    def _scan(
        self,
        scanner: DirectoryScanner,
        local_dir: Path,
        remote_dir: str,
    ) -> tuple[list[LocalFile], list[RemoteFile]]:
        if self.output.quiet:
            return (
                scanner.scan_local(local_dir),
                scanner.scan_remote(self.client, remote_dir),
            )

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            transient=True,
            console=self.output.console,
        ) as progress:
            task = progress.add_task("Scanning local directory...", total=None)
            local_files = scanner.scan_local(local_dir)
            progress.update(task, description=f"Found {len(local_files)} local file(s)")

            task = progress.add_task("Scanning remote directory...", total=None)
            remote_files = scanner.scan_remote(self.client, remote_dir)
            progress.update(
                task, description=f"Found {len(remote_files)} remote file(s)"
            )
        return local_files, remote_files

    def _choose_resolution(
        self,
        conflicts: list[str],
        conflict_handler: Optional[ConflictHandler],
    ) -> ConflictResolution:
        if conflict_handler is None:
            return ConflictResolution.SKIP
        resolution = conflict_handler(conflicts)
        return ConflictResolution(resolution) if resolution else ConflictResolution.SKIP

    def _execute_actions(
        self,
        actions: list[tuple[SyncAction, Union[LocalFile, RemoteFile]]],
        result: SyncResult,
        local_dir: Path,
        remote_dir: str,
        description: str,
    ) -> None:
        """Execute actions one by one, recording successes and failures."""
        if not actions:
            return

        if self.output.quiet:
            for action, item in actions:
                self._execute_single_action(action, item, result, local_dir, remote_dir)
            return

        with Progress(
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            console=self.output.console,
        ) as progress:
            task = progress.add_task(description, total=len(actions))
            for action, item in actions:
                self._execute_single_action(action, item, result, local_dir, remote_dir)
                progress.update(task, advance=1)

    def _execute_single_action(
        self,
        action: SyncAction,
        item: Union[LocalFile, RemoteFile],
        result: SyncResult,
        local_dir: Path,
        remote_dir: str,
    ) -> None:
        path = item.relative_path
        action_start = time.time()
        try:
            if action == SyncAction.UPLOAD:
                self.operations.upload_file(item, remote_dir)  # type: ignore[arg-type]
                result.uploaded.append(path)
            elif action == SyncAction.DOWNLOAD:
                self.operations.download_file(item, local_dir)  # type: ignore[arg-type]
                result.downloaded.append(path)
            else:
                self.operations.delete_remote(item)  # type: ignore[arg-type]
                result.deleted.append(path)
        except InsufficientSpaceError as e:
            result.failed.append(path)
            self.output.error(
                f"Failed to sync {path}: {e} "
                f"({self.output.format_size(e.usage.used)} of "
                f"{self.output.format_size(e.usage.capacity)} used)"
            )
        except (PuterError, OSError) as e:
            result.failed.append(path)
            logger.debug(f"{action.value} of {path} failed: {e!r}")
            self.output.error(f"Failed to sync {path}: {e}")
        else:
            logger.debug(
                f"{action.value} of {path} took {time.time() - action_start:.2f}s"
            )

    def _build_baseline(
        self,
        local_files: list[LocalFile],
        remote_files: list[RemoteFile],
        previous: dict[str, int],
        result: SyncResult,
    ) -> dict[str, int]:
        """Compute the baseline to store after a run.

        Paths whose sides ended with equal times are recorded at that time.
        Failed or skipped paths keep their previous entry; paths that no
        longer exist on both sides are dropped.
        """
        remote_map = build_file_map(remote_files)
        transferred = set(result.uploaded) | set(result.downloaded)
        failed = set(result.failed)
        baseline: dict[str, int] = {}

        for local_file in local_files:
            path = local_file.relative_path
            if path in transferred:
                # Transfers align the local file to the remote time
                try:
                    baseline[path] = int(local_file.path.stat().st_mtime)
                except OSError as e:
                    logger.warning(f"Cannot record {path} in sync state: {e}")
                continue

            remote_file = remote_map.get(path)
            if remote_file is None:
                continue
            if path not in failed and local_file.mtime_seconds == remote_file.mtime:
                baseline[path] = remote_file.mtime
            elif path in previous:
                baseline[path] = previous[path]

        return baseline

    def _display_sync_plan(
        self,
        plan: SyncPlan,
        conflicts: list[str],
        delete: bool,
    ) -> None:
        if self.output.quiet:
            return

        self.output.info("Sync plan:")
        if plan.to_upload:
            self.output.info(f"  ↑ Upload: {len(plan.to_upload)} file(s)")
        if plan.to_download:
            self.output.info(f"  ↓ Download: {len(plan.to_download)} file(s)")
        if plan.to_delete:
            if delete:
                self.output.info(f"  ✗ Delete remote: {len(plan.to_delete)} file(s)")
            else:
                self.output.info(
                    f"  = Remote only (kept): {len(plan.to_delete)} file(s)"
                )
        if conflicts:
            self.output.warning(f"  ⚠ Conflicts: {len(conflicts)} file(s)")
        self.output.print("")

    def _display_conflicts(self, conflicts: list[str]) -> None:
        self.output.warning("Changed on both sides since the last sync:")
        for path in conflicts:
            self.output.warning(f"  {path}")
        self.output.print("")

    def _display_summary(self, result: SyncResult) -> None:
        if self.output.quiet:
            return

        stats = result.stats
        self.output.print("")
        if result.dry_run:
            self.output.success("Dry run complete!")
        else:
            self.output.success("Sync complete!")

        total_actions = stats["uploads"] + stats["downloads"] + stats["deletes_remote"]
        if total_actions > 0:
            self.output.info(f"Total actions: {total_actions}")
            if stats["uploads"] > 0:
                self.output.info(f"  Uploaded: {stats['uploads']}")
            if stats["downloads"] > 0:
                self.output.info(f"  Downloaded: {stats['downloads']}")
            if stats["deletes_remote"] > 0:
                self.output.info(f"  Moved to Trash: {stats['deletes_remote']}")
        elif not stats["failures"]:
            self.output.info("No changes needed - everything is in sync!")

        if stats["failures"]:
            self.output.warning(f"  Failed: {stats['failures']}")
