"""Conflict detection and resolution.

A conflict is a path selected for both upload and download. One resolution
is applied to every conflicting path at once.
"""

import logging
from enum import Enum
from typing import Callable, Optional

from .comparator import SyncPlan

logger = logging.getLogger(__name__)


class ConflictResolution(str, Enum):
    """How to resolve the whole set of conflicts."""

    KEEP_LOCAL = "keep-local"
    """Upload local versions, drop the downloads"""

    KEEP_REMOTE = "keep-remote"
    """Download remote versions, drop the uploads"""

    SKIP = "skip"
    """Transfer neither side"""


ConflictHandler = Callable[[list[str]], Optional[ConflictResolution]]
"""Called with the sorted conflicting paths; returns the resolution."""


def find_conflicts(plan: SyncPlan) -> list[str]:
    """Return the sorted relative paths present in both upload and download sets."""
    return sorted(set(plan.upload_paths) & set(plan.download_paths))


def resolve_conflicts(
    plan: SyncPlan,
    conflicts: list[str],
    resolution: ConflictResolution,
) -> SyncPlan:
    """Apply a resolution to every conflicting path.

    Args:
        plan: Plan containing the conflicts
        conflicts: Conflicting relative paths
        resolution: Resolution to apply

    Returns:
        A new plan; ``plan`` is left untouched
    """
    conflict_set = set(conflicts)
    to_upload = list(plan.to_upload)
    to_download = list(plan.to_download)

    if resolution in (ConflictResolution.KEEP_REMOTE, ConflictResolution.SKIP):
        to_upload = [f for f in to_upload if f.relative_path not in conflict_set]
    if resolution in (ConflictResolution.KEEP_LOCAL, ConflictResolution.SKIP):
        to_download = [f for f in to_download if f.relative_path not in conflict_set]

    logger.debug(f"Resolved {len(conflict_set)} conflict(s) with {resolution.value}")
    return SyncPlan(
        to_upload=to_upload,
        to_download=to_download,
        to_delete=list(plan.to_delete),
    )


def fixed_resolution(resolution: ConflictResolution) -> ConflictHandler:
    """Build a conflict handler that always answers ``resolution``."""

    def handler(conflicts: list[str]) -> ConflictResolution:
        return resolution

    return handler
