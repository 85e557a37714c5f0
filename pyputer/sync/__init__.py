"""Sync engine for pyputer - mirror a local directory with a Puter directory."""

from .comparator import FileComparator, SyncPlan
from .conflicts import (
    ConflictHandler,
    ConflictResolution,
    find_conflicts,
    fixed_resolution,
    resolve_conflicts,
)
from .engine import SyncAction, SyncEngine, SyncPhase, SyncResult
from .operations import SyncOperations, align_mtime
from .scanner import DirectoryScanner, LocalFile, RemoteFile
from .state import SyncState, SyncStateManager

__all__ = [
    "SyncEngine",
    "SyncPhase",
    "SyncAction",
    "SyncResult",
    "SyncOperations",
    "align_mtime",
    "DirectoryScanner",
    "FileComparator",
    "SyncPlan",
    "LocalFile",
    "RemoteFile",
    "ConflictHandler",
    "ConflictResolution",
    "find_conflicts",
    "fixed_resolution",
    "resolve_conflicts",
    "SyncState",
    "SyncStateManager",
]
