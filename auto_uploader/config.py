"""Configuration management for Auto File Uploader.

Stores and retrieves settings from a JSON config file in the
platform-appropriate application data directory, and hands the
component an immutable :class:`UploaderConfiguration` snapshot.
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from auto_uploader.errors import ConfigurationError
from auto_uploader.platform_utils import (
    get_config_dir as _platform_config_dir,
)
from auto_uploader.platform_utils import (
    get_log_path as _platform_log_path,
)

logger = logging.getLogger(__name__)

# Repository backends
BACKEND_HTTP = "http"
BACKEND_LOCAL = "local"
BACKENDS = (BACKEND_HTTP, BACKEND_LOCAL)

DEFAULT_DESTINATION_PATH = "/content/dam"
# Quartz form: second minute hour day-of-month month day-of-week
DEFAULT_CRON_EXPRESSION = "0 * * * * ?"
DEFAULT_CONTENT_TYPE = "image/jpeg"
DEFAULT_SUBSERVICE = "assetWrite"

DEFAULT_CONFIG: dict[str, Any] = {
    "watched_directory_path": "",
    "destination_path": DEFAULT_DESTINATION_PATH,
    "cron_expression": DEFAULT_CRON_EXPRESSION,
    # ---- ingestion ----
    "content_type": DEFAULT_CONTENT_TYPE,
    "infer_content_type": False,  # guess from the file name instead
    "notified_entry_only": False,  # upload only the entry a notification names
    "retry_count": 0,  # number of retries on a failed upload (0 = no retries)
    "retry_delay_seconds": 5,
    # ---- repository ----
    "backend": BACKEND_HTTP,  # http | local
    "repository_url": "http://localhost:4502",
    "username": "",
    "password": "",
    "request_timeout_seconds": 30,
    "local_repository_root": "",
    "subservice": DEFAULT_SUBSERVICE,
    # ---- logging ----
    "log_level": "INFO",
    "max_log_size_mb": 10,  # rotate log when it exceeds this size
    "log_backup_count": 3,  # number of rotated log files to keep
}


def get_config_dir() -> Path:
    """Return the platform-appropriate application config directory."""
    return _platform_config_dir()


def get_config_path() -> Path:
    """Return the path to the configuration file."""
    return get_config_dir() / "config.json"


def get_log_path() -> Path:
    """Return the path to the log file."""
    return _platform_log_path()


@dataclass(frozen=True)
class UploaderConfiguration:
    """Immutable configuration handed to the uploader component.

    A new instance replaces the old one wholesale on every change.
    """

    watched_directory_path: str
    destination_path: str = DEFAULT_DESTINATION_PATH
    cron_expression: str = DEFAULT_CRON_EXPRESSION
    content_type: str = DEFAULT_CONTENT_TYPE
    infer_content_type: bool = False
    notified_entry_only: bool = False
    retry_count: int = 0
    retry_delay: float = 5.0
    backend: str = BACKEND_HTTP
    repository_url: str = "http://localhost:4502"
    username: str = ""
    password: str = ""
    request_timeout: float = 30.0
    local_repository_root: str = ""
    subservice: str = DEFAULT_SUBSERVICE

    def __post_init__(self) -> None:
        if not self.watched_directory_path:
            raise ConfigurationError("watched_directory_path is required")
        if self.backend not in BACKENDS:
            raise ConfigurationError(f"Unknown repository backend: {self.backend!r}")
        if self.backend == BACKEND_LOCAL and not self.local_repository_root:
            raise ConfigurationError(
                "local_repository_root is required for the local backend"
            )


class Config:
    """Configuration manager backed by a JSON file."""

    def __init__(self, path: Path | None = None):
        """Load config from *path*, falling back to the platform default."""
        self._path = path or get_config_path()
        self._data: dict[str, Any] = dict(DEFAULT_CONFIG)
        self.load()

    @property
    def path(self) -> Path:
        return self._path

    # ---- persistence ----

    def load(self) -> None:
        """Load configuration from disk, applying defaults for missing keys."""
        if self._path.exists():
            try:
                with open(self._path, encoding="utf-8") as fh:
                    stored = json.load(fh)
                # Merge stored values over defaults so new keys get defaults
                self._data = {**DEFAULT_CONFIG, **stored}
                logger.info("Configuration loaded from %s", self._path)
            except (json.JSONDecodeError, OSError) as exc:
                logger.warning("Could not read config (%s); using defaults.", exc)
                self._data = dict(DEFAULT_CONFIG)
        else:
            self._data = dict(DEFAULT_CONFIG)
            self.save()
            logger.info("Created default configuration at %s", self._path)

    def save(self) -> None:
        """Persist the current configuration to disk."""
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with open(self._path, "w", encoding="utf-8") as fh:
                json.dump(self._data, fh, indent=2)
            logger.info("Configuration saved.")
        except OSError as exc:
            logger.error("Failed to save configuration: %s", exc)

    # ---- accessors ----

    @property
    def watched_directory_path(self) -> str:
        """Return the directory watched for new files."""
        return self._data["watched_directory_path"]

    @watched_directory_path.setter
    def watched_directory_path(self, value: str) -> None:
        self._data["watched_directory_path"] = value.strip()

    @property
    def destination_path(self) -> str:
        """Return the repository folder assets are created under."""
        return self._data.get("destination_path") or DEFAULT_DESTINATION_PATH

    @destination_path.setter
    def destination_path(self, value: str) -> None:
        """Set the destination folder, dropping any trailing slash."""
        self._data["destination_path"] = value.strip().rstrip("/") or DEFAULT_DESTINATION_PATH

    @property
    def cron_expression(self) -> str:
        """Return the schedule expression."""
        return self._data.get("cron_expression") or DEFAULT_CRON_EXPRESSION

    @cron_expression.setter
    def cron_expression(self, value: str) -> None:
        self._data["cron_expression"] = value.strip() or DEFAULT_CRON_EXPRESSION

    # ---- ingestion ----

    @property
    def content_type(self) -> str:
        """Return the content type declared for every upload."""
        return self._data.get("content_type") or DEFAULT_CONTENT_TYPE

    @content_type.setter
    def content_type(self, value: str) -> None:
        self._data["content_type"] = value.strip() or DEFAULT_CONTENT_TYPE

    @property
    def infer_content_type(self) -> bool:
        """Return whether the content type is guessed from the file name."""
        return bool(self._data.get("infer_content_type", False))

    @infer_content_type.setter
    def infer_content_type(self, value: bool) -> None:
        self._data["infer_content_type"] = value

    @property
    def notified_entry_only(self) -> bool:
        """Return whether only the notified entry is uploaded."""
        return bool(self._data.get("notified_entry_only", False))

    @notified_entry_only.setter
    def notified_entry_only(self, value: bool) -> None:
        self._data["notified_entry_only"] = value

    @property
    def retry_count(self) -> int:
        """Return the number of upload retry attempts."""
        return int(self._data.get("retry_count", 0))

    @retry_count.setter
    def retry_count(self, value: int) -> None:
        """Set the number of upload retry attempts."""
        self._data["retry_count"] = max(0, int(value))

    @property
    def retry_delay(self) -> int:
        """Return seconds between retry attempts."""
        return int(self._data.get("retry_delay_seconds", 5))

    @retry_delay.setter
    def retry_delay(self, value: int) -> None:
        """Set seconds between retry attempts (minimum 1)."""
        self._data["retry_delay_seconds"] = max(1, int(value))

    # ---- repository ----

    @property
    def backend(self) -> str:
        """Return the repository backend name."""
        return self._data.get("backend", BACKEND_HTTP)

    @backend.setter
    def backend(self, value: str) -> None:
        if value not in BACKENDS:
            value = BACKEND_HTTP
        self._data["backend"] = value

    @property
    def repository_url(self) -> str:
        """Return the base URL of the AEM author instance."""
        return self._data.get("repository_url", "")

    @repository_url.setter
    def repository_url(self, value: str) -> None:
        self._data["repository_url"] = value.strip().rstrip("/")

    @property
    def username(self) -> str:
        return self._data.get("username", "")

    @username.setter
    def username(self, value: str) -> None:
        self._data["username"] = value

    @property
    def password(self) -> str:
        return self._data.get("password", "")

    @password.setter
    def password(self, value: str) -> None:
        self._data["password"] = value

    @property
    def request_timeout(self) -> int:
        """Return the HTTP request timeout in seconds."""
        return int(self._data.get("request_timeout_seconds", 30))

    @request_timeout.setter
    def request_timeout(self, value: int) -> None:
        """Set the HTTP request timeout (minimum 1 s)."""
        self._data["request_timeout_seconds"] = max(1, int(value))

    @property
    def local_repository_root(self) -> str:
        """Return the folder that mirrors the repository for the local backend."""
        return self._data.get("local_repository_root", "")

    @local_repository_root.setter
    def local_repository_root(self, value: str) -> None:
        self._data["local_repository_root"] = value.strip()

    @property
    def subservice(self) -> str:
        """Return the purpose tag used when acquiring a session."""
        return self._data.get("subservice") or DEFAULT_SUBSERVICE

    # ---- logging ----

    @property
    def log_level(self) -> str:
        """Return the current logging level name."""
        return self._data.get("log_level", "INFO")

    @log_level.setter
    def log_level(self, value: str) -> None:
        self._data["log_level"] = value

    @property
    def max_log_size_mb(self) -> int:
        """Return the maximum log file size in MB before rotation."""
        return int(self._data.get("max_log_size_mb", 10))

    @max_log_size_mb.setter
    def max_log_size_mb(self, value: int) -> None:
        """Set the maximum log file size in MB (minimum 1)."""
        self._data["max_log_size_mb"] = max(1, int(value))

    @property
    def log_backup_count(self) -> int:
        """Return the number of rotated log backups to keep."""
        return int(self._data.get("log_backup_count", 3))

    @log_backup_count.setter
    def log_backup_count(self, value: int) -> None:
        self._data["log_backup_count"] = max(0, int(value))

    # ---- convenience ----

    def snapshot(self) -> UploaderConfiguration:
        """Return the current settings as an immutable configuration.

        Raises ConfigurationError when the settings are incomplete.
        """
        return UploaderConfiguration(
            watched_directory_path=self.watched_directory_path,
            destination_path=self.destination_path,
            cron_expression=self.cron_expression,
            content_type=self.content_type,
            infer_content_type=self.infer_content_type,
            notified_entry_only=self.notified_entry_only,
            retry_count=self.retry_count,
            retry_delay=float(self.retry_delay),
            backend=self.backend,
            repository_url=self.repository_url,
            username=self.username,
            password=self.password,
            request_timeout=float(self.request_timeout),
            local_repository_root=self.local_repository_root,
            subservice=self.subservice,
        )
