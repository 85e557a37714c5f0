"""State management for tracking sync history.

After each sync the modification time (in seconds) that every in-sync path
had on both sides is recorded. The next run compares each side against this
baseline to tell which side changed, which is what makes a path changed on
both sides detectable as a conflict.
"""

import hashlib
import json
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


def default_state_dir() -> Path:
    """Directory holding sync state files (next to the config file)."""
    env_dir = os.environ.get("PYPUTER_CONFIG_DIR")
    base = Path(env_dir) if env_dir else Path.home() / ".config" / "pyputer"
    return base / "sync_state"


@dataclass
class SyncState:
    """Represents the state of a sync pair from a previous sync."""

    local_path: str
    """Local directory path that was synced"""

    remote_path: str
    """Remote path that was synced"""

    baseline: dict[str, int] = field(default_factory=dict)
    """Relative path -> modification time (s) both sides had after last sync"""

    last_sync: Optional[str] = None
    """ISO timestamp of last successful sync"""

    def to_dict(self) -> dict:
        """Convert state to dictionary for JSON serialization."""
        return {
            "local_path": self.local_path,
            "remote_path": self.remote_path,
            "baseline": dict(sorted(self.baseline.items())),
            "last_sync": self.last_sync,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SyncState":
        """Create SyncState from dictionary."""
        baseline = data.get("baseline") or {}
        return cls(
            local_path=data.get("local_path", ""),
            remote_path=data.get("remote_path", ""),
            baseline={str(k): int(v) for k, v in baseline.items()},
            last_sync=data.get("last_sync"),
        )


class SyncStateManager:
    """Manages sync state persistence.

    The state is stored in a JSON file in the user's config directory,
    keyed by a hash of the local and remote paths to support multiple
    sync pairs.
    """

    def __init__(self, state_dir: Optional[Path] = None):
        """Initialize state manager.

        Args:
            state_dir: Directory to store state files. Defaults to
                      ~/.config/pyputer/sync_state/
        """
        self.state_dir = state_dir or default_state_dir()

    def _get_state_key(self, local_path: Path, remote_path: str) -> str:
        local_abs = str(local_path.resolve())
        combined = f"{local_abs}:{remote_path}"
        return hashlib.sha256(combined.encode()).hexdigest()[:16]

    def _get_state_file(self, local_path: Path, remote_path: str) -> Path:
        key = self._get_state_key(local_path, remote_path)
        return self.state_dir / f"{key}.json"

    def load_state(self, local_path: Path, remote_path: str) -> Optional[SyncState]:
        """Load sync state for a sync pair.

        Args:
            local_path: Local directory path
            remote_path: Remote path

        Returns:
            SyncState if found, None otherwise
        """
        state_file = self._get_state_file(local_path, remote_path)

        if not state_file.exists():
            logger.debug(f"No sync state found at {state_file}")
            return None

        try:
            with open(state_file, encoding="utf-8") as f:
                data = json.load(f)
            state = SyncState.from_dict(data)
            logger.debug(
                f"Loaded sync state with {len(state.baseline)} files "
                f"from {state.last_sync}"
            )
            return state
        except (json.JSONDecodeError, AttributeError, TypeError, ValueError) as e:
            logger.warning(f"Failed to load sync state: {e}")
            return None

    def load_baseline(self, local_path: Path, remote_path: str) -> dict[str, int]:
        """Baseline of the last sync, empty when there is none."""
        state = self.load_state(local_path, remote_path)
        return state.baseline if state else {}

    def save_state(
        self,
        local_path: Path,
        remote_path: str,
        baseline: dict[str, int],
    ) -> None:
        """Save sync state for a sync pair.

        Args:
            local_path: Local directory path
            remote_path: Remote path
            baseline: Relative path -> synced modification time (s)
        """
        state = SyncState(
            local_path=str(local_path.resolve()),
            remote_path=remote_path,
            baseline=baseline,
            last_sync=datetime.now().isoformat(),
        )

        state_file = self._get_state_file(local_path, remote_path)

        try:
            self.state_dir.mkdir(parents=True, exist_ok=True)
            with open(state_file, "w", encoding="utf-8") as f:
                json.dump(state.to_dict(), f, indent=2)
            logger.debug(f"Saved sync state with {len(baseline)} files to {state_file}")
        except OSError as e:
            logger.warning(f"Failed to save sync state: {e}")

    def clear_state(self, local_path: Path, remote_path: str) -> bool:
        """Clear sync state for a sync pair.

        Returns:
            True if state was cleared, False if no state existed
        """
        state_file = self._get_state_file(local_path, remote_path)

        if state_file.exists():
            state_file.unlink()
            logger.debug(f"Cleared sync state at {state_file}")
            return True
        return False
