"""
Asset managers: the write side of the content repository.

Both implementations offer ``create_asset(path, stream, mime_type,
overwrite)`` and raise :class:`IngestionError` when the repository
refuses the write.

``HttpAssetManager`` talks to the AEM Assets HTTP API:
  - ``/content/dam/<rest>`` is addressed as ``/api/assets/<rest>``
  - an existing asset is replaced with ``PUT`` and a raw body
  - a new asset is created with a multipart ``POST`` to ``<folder>/*``

``LocalAssetManager`` mirrors the repository tree under a local folder,
which is handy for staging and for running without an AEM instance.
"""

from __future__ import annotations

import hashlib
import logging
import os
from pathlib import Path
from typing import BinaryIO, Protocol
from urllib.parse import quote

import requests

from auto_uploader.errors import IngestionError

logger = logging.getLogger(__name__)

DAM_ROOT = "/content/dam"
ASSETS_API_ROOT = "/api/assets"

_COPY_CHUNK = 256 * 1024  # 256 KiB read chunks


class AssetManager(Protocol):
    def create_asset(
        self, path: str, stream: BinaryIO, mime_type: str, overwrite: bool
    ) -> str: ...


def to_api_path(path: str) -> str:
    """Map a DAM path onto its Assets HTTP API path."""
    path = path.rstrip("/")
    if path != DAM_ROOT and not path.startswith(DAM_ROOT + "/"):
        raise IngestionError(f"Asset path is outside {DAM_ROOT}: {path}")
    return ASSETS_API_ROOT + path[len(DAM_ROOT):]


class HttpAssetManager:
    """Creates or replaces assets through the AEM Assets HTTP API."""

    def __init__(self, http: requests.Session, base_url: str, timeout: float = 30.0):
        self._http = http
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout

    def _url(self, api_path: str) -> str:
        return self._base_url + quote(api_path)

    def exists(self, path: str) -> bool:
        """Return whether an asset is already stored at *path*."""
        url = self._url(to_api_path(path))
        try:
            resp = self._http.head(url, timeout=self._timeout)
        except requests.RequestException as exc:
            raise IngestionError(f"Could not look up {path}: {exc}") from exc
        if resp.status_code == 404:
            return False
        if resp.ok:
            return True
        raise IngestionError(f"Could not look up {path}: HTTP {resp.status_code}")

    def create_asset(
        self, path: str, stream: BinaryIO, mime_type: str, overwrite: bool = True
    ) -> str:
        api_path = to_api_path(path)
        folder, _, name = api_path.rpartition("/")
        if not name:
            raise IngestionError(f"Asset path has no name: {path}")

        try:
            if self.exists(path):
                if not overwrite:
                    raise IngestionError(f"Asset already exists: {path}")
                logger.debug("Replacing binary of %s", path)
                resp = self._http.put(
                    self._url(api_path),
                    data=stream,
                    headers={"Content-Type": mime_type},
                    timeout=self._timeout,
                )
            else:
                logger.debug("Creating %s", path)
                resp = self._http.post(
                    self._url(folder) + "/*",
                    files={"file": (name, stream, mime_type)},
                    data={"fileName": name},
                    timeout=self._timeout,
                )
        except requests.RequestException as exc:
            raise IngestionError(f"Upload of {path} failed: {exc}") from exc

        if not resp.ok:
            raise IngestionError(
                f"Upload of {path} rejected: HTTP {resp.status_code} {resp.reason}"
            )
        logger.info("Stored %s (%s) -> HTTP %d", path, mime_type, resp.status_code)
        return path


def _sha256(filepath: Path) -> str:
    """Return the hex SHA-256 digest of *filepath*."""
    h = hashlib.sha256()
    with open(filepath, "rb") as fh:
        while chunk := fh.read(_COPY_CHUNK):
            h.update(chunk)
    return h.hexdigest()


class LocalAssetManager:
    """Writes assets into a local folder laid out like the repository.

    ``/content/dam/photos/a.jpg`` lands at ``<root>/content/dam/photos/a.jpg``.
    Each binary is written to a hidden ``.part`` sibling, checked against
    the SHA-256 of the bytes read when *verify* is on, then moved into place.
    """

    def __init__(self, root: str | Path, verify: bool = True):
        self.root = Path(root)
        self._verify = verify

    def resolve(self, path: str) -> Path:
        """Return the local file that stores the asset at *path*."""
        root = self.root.resolve()
        target = (root / path.lstrip("/")).resolve()
        if target == root or root not in target.parents:
            raise IngestionError(f"Asset path escapes the repository root: {path}")
        return target

    def create_asset(
        self, path: str, stream: BinaryIO, mime_type: str, overwrite: bool = True
    ) -> str:
        target = self.resolve(path)
        if target.exists() and not overwrite:
            raise IngestionError(f"Asset already exists: {path}")

        part = target.with_name(f".{target.name}.part")
        h = hashlib.sha256()
        size = 0
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with open(part, "wb") as fh:
                while chunk := stream.read(_COPY_CHUNK):
                    h.update(chunk)
                    fh.write(chunk)
                    size += len(chunk)
            if self._verify and _sha256(part) != h.hexdigest():
                raise IngestionError(f"Verification failed: SHA-256 mismatch for {path}")
            os.replace(part, target)
        except OSError as exc:
            raise IngestionError(f"Could not store {path}: {exc}") from exc
        finally:
            if part.exists():
                part.unlink()

        logger.info("Stored %s (%s, %d bytes) at %s", path, mime_type, size, target)
        return path
