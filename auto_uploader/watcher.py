"""Directory watching for Auto File Uploader.

Uses the watchdog library to subscribe to create, modify and delete
notifications on a single directory (sub-directories are not watched).
:class:`WatchSession` queues those notifications so a worker thread can
block on them, and :class:`DirectoryWatchLoop` turns every notification
into uploads of the directory's current contents.
"""

from __future__ import annotations

import logging
import os
import threading
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, BinaryIO

from watchdog.events import FileSystemEvent, FileSystemEventHandler, FileSystemMovedEvent
from watchdog.observers import Observer

from auto_uploader.config import DEFAULT_CONTENT_TYPE, DEFAULT_SUBSERVICE, UploaderConfiguration
from auto_uploader.errors import NotificationWaitInterrupted, SessionAcquireError, WatchSetupError
from auto_uploader.ingest import AssetIngestor, UploadRecord, UploadStats, asset_path
from auto_uploader.resolver import ResolverFactory, Session, create_resolver_factory

logger = logging.getLogger(__name__)


class ChangeKind(Enum):
    CREATE = "create"
    MODIFY = "modify"
    DELETE = "delete"


@dataclass(frozen=True)
class ChangeNotification:
    """One change reported for an entry of the watched directory."""

    kind: ChangeKind
    entry_name: str


def _normpath(path: str | bytes) -> str:
    return os.path.normpath(os.path.abspath(os.fsdecode(path)))


class _NotificationHandler(FileSystemEventHandler):
    """Feeds watchdog events into a :class:`WatchSession`."""

    def __init__(self, session: WatchSession):
        super().__init__()
        self._session = session

    def on_created(self, event: FileSystemEvent) -> None:
        self._session._notify(ChangeKind.CREATE, event.src_path)

    def on_modified(self, event: FileSystemEvent) -> None:
        self._session._notify(ChangeKind.MODIFY, event.src_path)

    def on_deleted(self, event: FileSystemEvent) -> None:
        self._session._notify(ChangeKind.DELETE, event.src_path)

    def on_moved(self, event: FileSystemMovedEvent) -> None:  # type: ignore[override]
        # A rename shows up as the old entry leaving and the new one arriving.
        self._session._notify(ChangeKind.DELETE, event.src_path)
        self._session._notify(ChangeKind.CREATE, event.dest_path)


class WatchSession:
    """Subscription to change notifications for one directory.

    Usage:
        with WatchSession(path) as session:
            session.take()              # blocks until something changed
            batch = session.poll_events()
            ...
            if not session.reset():     # directory gone or session closed
                ...
    """

    def __init__(self, directory: str | Path, observer_factory: Callable[[], Any] = Observer):
        self.directory = Path(_normpath(str(directory)))
        self._observer_factory = observer_factory
        self._observer: Any | None = None
        self._pending: deque[ChangeNotification] = deque()
        self._cond = threading.Condition()
        self._interrupted = False
        self._valid = False

    # ---- lifecycle ----

    def open(self) -> None:
        """Start receiving notifications. Raises WatchSetupError on failure."""
        if not self.directory.is_dir():
            raise WatchSetupError(f"Not a directory: {self.directory}")
        try:
            observer = self._observer_factory()
            observer.schedule(_NotificationHandler(self), str(self.directory), recursive=False)
            observer.start()
        except OSError as exc:
            raise WatchSetupError(f"Cannot watch {self.directory}: {exc}") from exc
        self._observer = observer
        with self._cond:
            self._valid = True
        logger.info("Watch registered for directory: %s", self.directory)

    def close(self) -> None:
        """Stop receiving notifications and release the observer."""
        with self._cond:
            self._valid = False
            self._cond.notify_all()
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None
            logger.info("Watch closed for directory: %s", self.directory)

    def __enter__(self) -> WatchSession:
        self.open()
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # ---- notification queue ----

    def _notify(self, kind: ChangeKind, path: str | bytes) -> None:
        full = _normpath(path)
        if full == str(self.directory):
            if kind is ChangeKind.DELETE:
                logger.warning("Watched directory went away: %s", self.directory)
                with self._cond:
                    self._valid = False
                    self._cond.notify_all()
            return
        if os.path.dirname(full) != str(self.directory):
            return
        with self._cond:
            self._pending.append(ChangeNotification(kind, os.path.basename(full)))
            self._cond.notify_all()

    def take(self, timeout: float | None = None) -> bool:
        """Block until a notification is queued or the session becomes invalid.

        Returns False only when *timeout* expires first.
        Raises NotificationWaitInterrupted after :meth:`interrupt`.
        """
        with self._cond:
            ready = self._cond.wait_for(
                lambda: self._pending or self._interrupted or not self._valid,
                timeout,
            )
            if self._interrupted:
                self._interrupted = False
                raise NotificationWaitInterrupted(f"Wait on {self.directory} interrupted")
        return bool(ready)

    def poll_events(self) -> list[ChangeNotification]:
        """Remove and return every queued notification, oldest first."""
        with self._cond:
            batch = list(self._pending)
            self._pending.clear()
        return batch

    def reset(self) -> bool:
        """Re-arm for further notifications. Returns False once the watch is invalid."""
        with self._cond:
            if self._valid and not self.directory.is_dir():
                self._valid = False
            if self._valid and self._observer is not None and not self._observer.is_alive():
                self._valid = False
            return self._valid

    def interrupt(self) -> None:
        """Make a pending or the next :meth:`take` raise NotificationWaitInterrupted."""
        with self._cond:
            self._interrupted = True
            self._cond.notify_all()

    @property
    def is_valid(self) -> bool:
        with self._cond:
            return self._valid


class DirectoryWatchLoop:
    """Watches one directory and uploads its files whenever it changes.

    On every notification the whole directory is listed again and every
    regular file in it is uploaded under the notification's entry name,
    unless *notified_entry_only* is set, in which case only the notified
    file is uploaded under its own name.
    """

    def __init__(
        self,
        resolver_factory: ResolverFactory,
        *,
        purpose: str = DEFAULT_SUBSERVICE,
        content_type: str = DEFAULT_CONTENT_TYPE,
        infer_content_type: bool = False,
        notified_entry_only: bool = False,
        retry_count: int = 0,
        retry_delay: float = 5.0,
        session_factory: Callable[[Path], WatchSession] = WatchSession,
        opener: Callable[[Path, str], BinaryIO] = open,  # type: ignore[assignment]
        stats: UploadStats | None = None,
    ):
        self._resolver_factory = resolver_factory
        self._purpose = purpose
        self._content_type = content_type
        self._infer_content_type = infer_content_type
        self._notified_entry_only = notified_entry_only
        self._retry_count = retry_count
        self._retry_delay = retry_delay
        self._session_factory = session_factory
        self._opener = opener
        self.stats = stats or UploadStats()
        self._stop = threading.Event()
        self._watch_session: WatchSession | None = None

    @classmethod
    def from_config(
        cls,
        config: UploaderConfiguration,
        resolver_factory: ResolverFactory | None = None,
        **kwargs: Any,
    ) -> DirectoryWatchLoop:
        """Build a loop from an uploader configuration."""
        return cls(
            resolver_factory or create_resolver_factory(config),
            purpose=config.subservice,
            content_type=config.content_type,
            infer_content_type=config.infer_content_type,
            notified_entry_only=config.notified_entry_only,
            retry_count=config.retry_count,
            retry_delay=config.retry_delay,
            **kwargs,
        )

    # ---- control ----

    def interrupt(self) -> None:
        """Ask a running (or about to run) watch to stop at its wait step."""
        self._stop.set()
        session = self._watch_session
        if session is not None:
            session.interrupt()

    @property
    def is_watching(self) -> bool:
        return self._watch_session is not None

    # ---- the loop ----

    def watch(self, directory_path: str, destination_path: str) -> None:
        """Watch *directory_path* and upload into *destination_path* until stopped.

        Returns when interrupted, when the watch becomes invalid, or after
        logging any error. Never raises.
        """
        logger.info("Starting to watch for files in %s", directory_path)
        try:
            directory = self._resolve_directory(directory_path)
            with self._session_factory(directory) as watch_session:
                self._watch_session = watch_session
                session = self._acquire_session()
                try:
                    ingestor = AssetIngestor(
                        session,
                        content_type=self._content_type,
                        infer_content_type=self._infer_content_type,
                        retry_count=self._retry_count,
                        retry_delay=self._retry_delay,
                        stats=self.stats,
                    )
                    self._run(watch_session, directory, destination_path, ingestor)
                finally:
                    if session is not None:
                        session.close()
        except WatchSetupError as exc:
            logger.error("Cannot watch %s: %s", directory_path, exc)
        except NotificationWaitInterrupted:
            logger.info("Watch on %s interrupted; stopping.", directory_path)
        except Exception:
            logger.exception("Watch loop for %s failed", directory_path)
        finally:
            self._watch_session = None
        logger.info("Stopped watching %s", directory_path)

    @staticmethod
    def _resolve_directory(directory_path: str) -> Path:
        if not directory_path:
            raise WatchSetupError("No directory configured")
        directory = Path(directory_path)
        if not directory.exists():
            raise WatchSetupError(f"Directory does not exist: {directory}")
        if not directory.is_dir():
            raise WatchSetupError(f"Not a directory: {directory}")
        return directory

    def _acquire_session(self) -> Session | None:
        try:
            return self._resolver_factory.acquire_session(self._purpose)
        except SessionAcquireError as exc:
            logger.error("No repository session (%s); uploads will fail.", exc)
            return None

    def _run(
        self,
        watch_session: WatchSession,
        directory: Path,
        destination_path: str,
        ingestor: AssetIngestor,
    ) -> None:
        while True:
            if self._stop.is_set():
                raise NotificationWaitInterrupted(f"Watch on {directory} interrupted")
            watch_session.take()

            batch = watch_session.poll_events()
            logger.info("Received %d notification(s) for %s", len(batch), directory)
            for notification in batch:
                self._handle(notification, directory, destination_path, ingestor)

            if not watch_session.reset():
                logger.warning("Watch on %s is no longer valid; stopping.", directory)
                break

    def _handle(
        self,
        notification: ChangeNotification,
        directory: Path,
        destination_path: str,
        ingestor: AssetIngestor,
    ) -> None:
        logger.debug("%s %s", notification.kind.value, notification.entry_name)
        if self._notified_entry_only:
            path = directory / notification.entry_name
            if notification.kind is ChangeKind.DELETE or not path.is_file():
                logger.debug("Nothing to upload for %s", notification.entry_name)
                return
            self._ingest(path, notification.entry_name, destination_path, ingestor)
            return

        files = list_files(directory)
        if not files:
            logger.debug("No files in %s", directory)
        for path in files:
            self._ingest(path, notification.entry_name, destination_path, ingestor)

    def _ingest(
        self,
        path: Path,
        entry_name: str,
        destination_path: str,
        ingestor: AssetIngestor,
    ) -> None:
        try:
            with self._opener(path, "rb") as stream:
                ingestor.upload(stream, entry_name, destination_path)
        except OSError as exc:
            logger.error("Could not read %s: %s", path, exc)
            ingestor.stats.record(
                UploadRecord(
                    source=str(path),
                    target=asset_path(destination_path, entry_name),
                    error=str(exc),
                )
            )


def list_files(directory: Path) -> list[Path]:
    """Return the regular files directly inside *directory*, sorted by name."""
    return sorted((p for p in directory.iterdir() if p.is_file()), key=lambda p: p.name)
