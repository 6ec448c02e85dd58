"""
Tests for the ingestion sink adapter.
"""

import io

import pytest

from auto_uploader.ingest import AssetIngestor, UploadRecord, UploadStats, asset_path
from auto_uploader.resolver import Session
from conftest import RecordingAssetManager


@pytest.fixture
def session(manager):
    return Session("assetWrite", manager)


class TestAssetPath:
    @pytest.mark.parametrize(
        "destination, expected",
        [
            ("/content/dam", "/content/dam/a.jpg"),
            ("/content/dam/", "/content/dam/a.jpg"),
            ("/content/dam/photos", "/content/dam/photos/a.jpg"),
        ],
    )
    def test_join(self, destination, expected):
        assert asset_path(destination, "a.jpg") == expected


class TestUpload:
    def test_fixed_content_type(self, session, manager):
        ingestor = AssetIngestor(session)

        assert ingestor.upload(io.BytesIO(b"data"), "notes.txt", "/content/dam") is True
        assert manager.calls == [("/content/dam/notes.txt", b"data", "image/jpeg", True)]

    def test_inferred_content_type(self, session, manager):
        ingestor = AssetIngestor(session, infer_content_type=True)

        ingestor.upload(io.BytesIO(b"x"), "scan.png", "/content/dam")
        ingestor.upload(io.BytesIO(b"x"), "mystery.zzz-unknown", "/content/dam")

        assert [c[2] for c in manager.calls] == ["image/png", "image/jpeg"]

    def test_success_updates_stats(self, session):
        stats = UploadStats()
        ingestor = AssetIngestor(session, stats=stats)

        ingestor.upload(io.BytesIO(b"12345"), "a.jpg", "/content/dam")

        assert stats.total_uploaded == 1
        assert stats.total_bytes == 5
        assert stats.last_uploaded == "/content/dam/a.jpg"
        assert stats.history[0].attempts == 1

    def test_failure_returns_false_and_is_recorded(self, caplog):
        manager = RecordingAssetManager(fail_when=lambda path, data: True)
        stats = UploadStats()
        ingestor = AssetIngestor(Session("assetWrite", manager), stats=stats)

        assert ingestor.upload(io.BytesIO(b"x"), "a.jpg", "/content/dam") is False
        assert stats.total_failed == 1
        assert "rejected /content/dam/a.jpg" in stats.history[0].error
        assert "Upload failed" in caplog.text

    def test_unexpected_error_does_not_propagate(self, caplog):
        class Exploding:
            def create_asset(self, path, stream, mime_type, overwrite):
                raise RuntimeError("boom")

        ingestor = AssetIngestor(Session("assetWrite", Exploding()))

        assert ingestor.upload(io.BytesIO(b"x"), "a.jpg", "/content/dam") is False
        assert "boom" in caplog.text

    def test_without_session_every_upload_fails(self):
        stats = UploadStats()
        ingestor = AssetIngestor(None, stats=stats)

        assert ingestor.upload(io.BytesIO(b"x"), "a.jpg", "/content/dam") is False
        assert "No repository session" in stats.history[0].error

    def test_closed_session_fails(self, session):
        session.close()
        ingestor = AssetIngestor(session)

        assert ingestor.upload(io.BytesIO(b"x"), "a.jpg", "/content/dam") is False


class TestRetry:
    def test_no_retry_by_default(self):
        manager = RecordingAssetManager(fail_when=lambda path, data: True)
        ingestor = AssetIngestor(Session("assetWrite", manager), sleep=pytest.fail)

        ingestor.upload(io.BytesIO(b"x"), "a.jpg", "/content/dam")

        assert len(manager.calls) == 1

    def test_retry_rewinds_stream(self):
        attempts = []

        def fail_first(path, data):
            attempts.append(data)
            return len(attempts) == 1

        manager = RecordingAssetManager(fail_when=fail_first)
        sleeps = []
        ingestor = AssetIngestor(
            Session("assetWrite", manager), retry_count=2, retry_delay=3, sleep=sleeps.append
        )

        assert ingestor.upload(io.BytesIO(b"payload"), "a.jpg", "/content/dam") is True
        assert attempts == [b"payload", b"payload"]
        assert sleeps == [3]
        assert ingestor.stats.history[0].attempts == 2

    def test_gives_up_after_retries(self):
        manager = RecordingAssetManager(fail_when=lambda path, data: True)
        sleeps = []
        ingestor = AssetIngestor(
            Session("assetWrite", manager), retry_count=2, retry_delay=1, sleep=sleeps.append
        )

        assert ingestor.upload(io.BytesIO(b"x"), "a.jpg", "/content/dam") is False
        assert len(manager.calls) == 3
        assert sleeps == [1, 1]
        assert ingestor.stats.total_failed == 1

    def test_non_seekable_stream_is_not_retried(self):
        class OneShot(io.RawIOBase):
            def __init__(self):
                self._data = b"once"

            def readable(self):
                return True

            def seekable(self):
                return False

            def read(self, size=-1):
                data, self._data = self._data, b""
                return data

        manager = RecordingAssetManager(fail_when=lambda path, data: True)
        ingestor = AssetIngestor(
            Session("assetWrite", manager), retry_count=3, sleep=lambda s: None
        )

        assert ingestor.upload(OneShot(), "a.jpg", "/content/dam") is False
        assert len(manager.calls) == 1


class TestStats:
    def test_history_is_bounded(self):
        stats = UploadStats()
        for i in range(1005):
            stats.record(UploadRecord(source=str(i), target=str(i), success=True))

        assert len(stats.history) == 1000
        assert stats.history[0].source == "5"
        assert stats.total_uploaded == 1005
