"""Configuration management for pyputer.

Settings are read from environment variables first, then from
``~/.config/pyputer/config.json``. The directory can be moved with the
``PYPUTER_CONFIG_DIR`` environment variable.
"""

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.puter.com"
DEFAULT_BASE_URL = "https://puter.com"
CONFIG_FILE_NAME = "config.json"


@dataclass
class SessionContext:
    """Remote session information the sync engine needs.

    Passed explicitly instead of reading the global configuration so that
    the engine can be driven with any user/cwd combination.
    """

    username: str
    cwd: str

    @property
    def home(self) -> str:
        return f"/{self.username}"

    @property
    def trash(self) -> str:
        return f"/{self.username}/Trash"


class Config:
    """Reads and persists pyputer settings."""

    def __init__(self, config_dir: Optional[Path] = None):
        if config_dir is None:
            env_dir = os.environ.get("PYPUTER_CONFIG_DIR")
            config_dir = (
                Path(env_dir) if env_dir else Path.home() / ".config" / "pyputer"
            )
        self.config_dir = config_dir
        self.config_file = config_dir / CONFIG_FILE_NAME

    def _load(self) -> dict[str, Any]:
        if not self.config_file.exists():
            return {}
        try:
            with open(self.config_file, encoding="utf-8") as f:
                data = json.load(f)
            return data if isinstance(data, dict) else {}
        except (json.JSONDecodeError, OSError) as e:
            logger.warning(f"Failed to read config file {self.config_file}: {e}")
            return {}

    def _save(self, updates: dict[str, Any]) -> None:
        data = self._load()
        data.update(updates)
        self.config_dir.mkdir(parents=True, exist_ok=True)
        with open(self.config_file, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
        # The file holds a bearer token
        self.config_file.chmod(0o600)

    @property
    def auth_token(self) -> Optional[str]:
        return os.environ.get("PUTER_AUTH_TOKEN") or self._load().get("auth_token")

    @property
    def username(self) -> Optional[str]:
        return os.environ.get("PUTER_USERNAME") or self._load().get("username")

    @property
    def api_url(self) -> str:
        url = (
            os.environ.get("PUTER_API_BASE")
            or self._load().get("api_url")
            or DEFAULT_API_URL
        )
        return url.rstrip("/")

    @property
    def base_url(self) -> str:
        url = (
            os.environ.get("PUTER_BASE_URL")
            or self._load().get("base_url")
            or DEFAULT_BASE_URL
        )
        return url.rstrip("/")

    @property
    def cwd(self) -> str:
        cwd = self._load().get("cwd")
        if cwd:
            return cwd
        return f"/{self.username}" if self.username else "/"

    def is_configured(self) -> bool:
        """Check whether an auth token is available."""
        return bool(self.auth_token)

    def get_config_path(self) -> Path:
        return self.config_file

    def save_credentials(self, auth_token: str, username: str) -> None:
        """Store the auth token and reset the working directory to home."""
        self._save(
            {"auth_token": auth_token, "username": username, "cwd": f"/{username}"}
        )

    def save_cwd(self, cwd: str) -> None:
        self._save({"cwd": cwd})

    def session(self) -> SessionContext:
        """Build the session context from the stored settings."""
        return SessionContext(username=self.username or "", cwd=self.cwd)


config = Config()
