"""Typed views of the JSON payloads returned by the Puter API."""

from dataclasses import dataclass, field
from typing import Any, Optional

from .exceptions import PuterInvalidResponseError


def _to_int(value: Any, default: int = 0) -> int:
    """Coerce a loosely-typed numeric field to int."""
    if value is None or value == "":
        return default
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return default


@dataclass
class FileEntry:
    """A file or directory on the remote filesystem."""

    name: str
    path: str
    is_dir: bool = False
    size: int = 0
    modified: int = 0
    """Last modification time (epoch seconds)"""

    created: int = 0
    uid: str = ""
    id: str = ""
    writable: bool = True
    owner: Optional[str] = None
    raw: dict[str, Any] = field(default_factory=dict, repr=False, compare=False)

    @classmethod
    def from_api_response(cls, data: Any) -> "FileEntry":
        """Build an entry from a stat/readdir/write response item.

        Args:
            data: One JSON object as returned by the API

        Returns:
            FileEntry instance

        Raises:
            PuterInvalidResponseError: If data is not a JSON object
        """
        if not isinstance(data, dict):
            raise PuterInvalidResponseError(
                f"Expected a file entry object, got {type(data).__name__}"
            )

        path = data.get("path") or ""
        name = data.get("name") or path.rstrip("/").rsplit("/", 1)[-1]
        owner = data.get("owner")
        if isinstance(owner, dict):
            owner = owner.get("username")

        return cls(
            name=name,
            path=path,
            is_dir=bool(data.get("is_dir", False)),
            size=_to_int(data.get("size")),
            modified=_to_int(data.get("modified")),
            created=_to_int(data.get("created")),
            uid=str(data.get("uid") or ""),
            id=str(data.get("id") or ""),
            writable=bool(data.get("writable", True)),
            owner=owner,
            raw=data,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serializable dict."""
        return {
            "name": self.name,
            "path": self.path,
            "is_dir": self.is_dir,
            "size": self.size,
            "modified": self.modified,
            "created": self.created,
            "uid": self.uid,
            "id": self.id,
            "writable": self.writable,
            "owner": self.owner,
        }


@dataclass
class DiskUsage:
    """Remote storage quota (bytes)."""

    used: int
    capacity: int

    @classmethod
    def from_api_response(cls, data: Any) -> "DiskUsage":
        if not isinstance(data, dict):
            raise PuterInvalidResponseError("Invalid disk usage response")
        return cls(used=_to_int(data.get("used")), capacity=_to_int(data.get("capacity")))

    @property
    def free(self) -> int:
        return max(self.capacity - self.used, 0)

    @property
    def percent(self) -> float:
        if self.capacity <= 0:
            return 0.0
        return self.used / self.capacity * 100

    @property
    def is_full(self) -> bool:
        """True when used space reaches a known capacity.

        A missing or zero capacity means the server did not report one.
        """
        return self.capacity > 0 and self.used >= self.capacity

    def to_dict(self) -> dict[str, Any]:
        return {
            "used": self.used,
            "capacity": self.capacity,
            "free": self.free,
            "percent": round(self.percent, 2),
        }
