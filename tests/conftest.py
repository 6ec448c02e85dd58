"""Shared fakes for the uploader tests."""

import io
import threading
from collections import deque

import pytest

from auto_uploader.errors import IngestionError, NotificationWaitInterrupted, SessionAcquireError
from auto_uploader.resolver import Session


class RecordingAssetManager:
    """Asset manager that keeps every write in memory."""

    def __init__(self, fail_when=None):
        self.calls = []
        self._fail_when = fail_when
        self._lock = threading.Lock()

    def create_asset(self, path, stream, mime_type, overwrite):
        data = stream.read()
        with self._lock:
            self.calls.append((path, data, mime_type, overwrite))
        if self._fail_when and self._fail_when(path, data):
            raise IngestionError(f"rejected {path}")
        return path


class FakeResolverFactory:
    """Resolver factory handing out sessions on a RecordingAssetManager."""

    def __init__(self, manager=None, error=None):
        self.manager = manager or RecordingAssetManager()
        self.error = error
        self.purposes = []
        self.sessions = []

    def acquire_session(self, purpose):
        self.purposes.append(purpose)
        if self.error:
            raise SessionAcquireError(self.error)
        session = Session(purpose, self.manager)
        self.sessions.append(session)
        return session


class FakeWatchSession:
    """Scripted stand-in for WatchSession.

    Each take() delivers the next scripted batch; an exception in the
    script is raised instead. Once the script runs out, take() behaves as
    if interrupted.
    """

    def __init__(self, directory, batches=(), resets=()):
        self.directory = directory
        self._batches = deque(batches)
        self._resets = deque(resets)
        self._current = []
        self.opened = False
        self.closed = False
        self.take_calls = 0
        self.reset_calls = 0

    def __enter__(self):
        self.opened = True
        return self

    def __exit__(self, *exc):
        self.closed = True

    def take(self, timeout=None):
        self.take_calls += 1
        if not self._batches:
            raise NotificationWaitInterrupted("script exhausted")
        item = self._batches.popleft()
        if isinstance(item, BaseException):
            raise item
        self._current = list(item)
        return True

    def poll_events(self):
        batch, self._current = self._current, []
        return batch

    def reset(self):
        self.reset_calls += 1
        return self._resets.popleft() if self._resets else True

    def interrupt(self):
        self._batches.clear()


class TrackingStream:
    """Readable stream that counts how often it is closed."""

    def __init__(self, name, data):
        self.name = str(name)
        self._buf = io.BytesIO(data)
        self.close_count = 0

    def read(self, size=-1):
        return self._buf.read(size)

    def seekable(self):
        return True

    def seek(self, pos, whence=0):
        return self._buf.seek(pos, whence)

    def tell(self):
        return self._buf.tell()

    def close(self):
        self.close_count += 1

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


class TrackingOpener:
    """Replacement for ``open`` that hands out TrackingStreams."""

    def __init__(self):
        self.streams = []

    def __call__(self, path, mode="rb"):
        with open(path, mode) as fh:
            stream = TrackingStream(path, fh.read())
        self.streams.append(stream)
        return stream


class FakeObserver:
    """Stand-in for a watchdog observer; tests dispatch events by hand."""

    def __init__(self):
        self.handler = None
        self.path = None
        self.recursive = None
        self.alive = False

    def schedule(self, handler, path, recursive=False):
        self.handler = handler
        self.path = path
        self.recursive = recursive

    def start(self):
        self.alive = True

    def stop(self):
        self.alive = False

    def join(self, timeout=None):
        pass

    def is_alive(self):
        return self.alive


@pytest.fixture
def manager():
    return RecordingAssetManager()


@pytest.fixture
def resolver_factory(manager):
    return FakeResolverFactory(manager)


@pytest.fixture
def opener():
    return TrackingOpener()


@pytest.fixture
def watch_dir(tmp_path):
    directory = tmp_path / "watch"
    directory.mkdir()
    return directory
