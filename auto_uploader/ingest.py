"""
Ingestion into the asset repository.

Hands one open file stream at a time to the session's asset manager
with create-or-replace semantics. A failed upload is logged and
recorded; it never propagates, so one bad file cannot stop a batch.
Optional bounded retry rewinds the stream between attempts.
"""

import logging
import mimetypes
import threading
import time
from dataclasses import dataclass, field
from typing import BinaryIO, Callable

from auto_uploader.config import DEFAULT_CONTENT_TYPE
from auto_uploader.errors import IngestionError
from auto_uploader.resolver import Session

logger = logging.getLogger(__name__)

_HISTORY_LIMIT = 1000


def asset_path(destination_path: str, entry_name: str) -> str:
    """Join the destination folder and the entry name into an asset path."""
    return f"{destination_path.rstrip('/')}/{entry_name}"


@dataclass
class UploadRecord:
    """Record of a single upload."""
    source: str
    target: str
    content_type: str = ""
    size_bytes: int = 0
    started: float = 0.0
    finished: float = 0.0
    attempts: int = 0
    success: bool = False
    error: str = ""

    @property
    def duration(self) -> float:
        if self.finished and self.started:
            return self.finished - self.started
        return 0.0


@dataclass
class UploadStats:
    """Aggregated upload statistics."""
    total_uploaded: int = 0
    total_failed: int = 0
    total_bytes: int = 0
    last_uploaded: str = ""
    history: list[UploadRecord] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def record(self, rec: UploadRecord) -> None:
        with self._lock:
            self.history.append(rec)
            if rec.success:
                self.total_uploaded += 1
                self.total_bytes += rec.size_bytes
                self.last_uploaded = rec.target
            else:
                self.total_failed += 1
            if len(self.history) > _HISTORY_LIMIT:
                self.history = self.history[-_HISTORY_LIMIT:]


class AssetIngestor:
    """
    Uploads file streams through one long-lived repository session.

    Parameters
    ----------
    session : Session or None
        The session whose asset manager receives the writes. ``None``
        means no session could be acquired; every upload then fails.
    content_type : str
        Content type declared for every upload.
    infer_content_type : bool
        If True, guess the type from the entry name and fall back to
        *content_type*.
    retry_count : int
        Number of retries on a failed upload (0 = no retries).
    retry_delay : float
        Seconds to wait between retry attempts.
    """

    def __init__(
        self,
        session: Session | None,
        content_type: str = DEFAULT_CONTENT_TYPE,
        infer_content_type: bool = False,
        retry_count: int = 0,
        retry_delay: float = 5.0,
        stats: UploadStats | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._session = session
        self._content_type = content_type
        self._infer_content_type = infer_content_type
        self._retry_count = max(0, retry_count)
        self._retry_delay = retry_delay
        self._sleep = sleep
        self.stats = stats or UploadStats()

    def content_type_for(self, entry_name: str) -> str:
        if self._infer_content_type:
            guessed, _ = mimetypes.guess_type(entry_name)
            if guessed:
                return guessed
        return self._content_type

    def upload(self, stream: BinaryIO, entry_name: str, destination_path: str) -> bool:
        """Create or replace ``<destination_path>/<entry_name>`` from *stream*.

        Returns True on success. Failures are logged, never raised.
        """
        rec = UploadRecord(
            source=str(getattr(stream, "name", "")),
            target=asset_path(destination_path, entry_name),
            content_type=self.content_type_for(entry_name),
        )
        max_attempts = 1 + self._retry_count
        try:
            for attempt in range(1, max_attempts + 1):
                rec.attempts = attempt
                rec.started = time.time()
                rec.error = ""
                try:
                    logger.info(
                        "Uploading %s -> %s (%s, attempt %d/%d)",
                        rec.source or entry_name, rec.target, rec.content_type,
                        attempt, max_attempts,
                    )
                    self._create(rec, stream)
                    rec.success = True
                    rec.finished = time.time()
                    logger.info("Upload complete in %.1fs: %s", rec.duration, rec.target)
                    break
                except Exception as exc:
                    rec.error = str(exc)
                    rec.finished = time.time()
                    if isinstance(exc, (IngestionError, OSError)):
                        logger.error("Upload failed for %s: %s", rec.target, exc)
                    else:
                        logger.exception("Unexpected error uploading %s", rec.target)

                if attempt < max_attempts:
                    if not self._rewind(stream):
                        logger.warning("Cannot rewind stream for %s; giving up.", rec.target)
                        break
                    logger.info(
                        "Retrying in %ss (attempt %d failed)...", self._retry_delay, attempt
                    )
                    self._sleep(self._retry_delay)
        finally:
            self.stats.record(rec)
        return rec.success

    def _create(self, rec: UploadRecord, stream: BinaryIO) -> None:
        if self._session is None:
            raise IngestionError("No repository session available")
        manager = self._session.asset_manager()
        start = _tell(stream)
        manager.create_asset(rec.target, stream, rec.content_type, True)
        end = _tell(stream)
        if start is not None and end is not None:
            rec.size_bytes = end - start

    @staticmethod
    def _rewind(stream: BinaryIO) -> bool:
        try:
            if stream.seekable():
                stream.seek(0)
                return True
        except (OSError, ValueError):
            pass
        return False


def _tell(stream: BinaryIO) -> int | None:
    try:
        return stream.tell()
    except (OSError, ValueError, AttributeError):
        return None
