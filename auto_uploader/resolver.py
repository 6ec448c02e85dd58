"""
Repository sessions.

A resolver factory hands out sessions tagged with a purpose (the
uploader asks for ``assetWrite``). A session owns whatever connection
state its backend needs and exposes the asset manager used for writes.
Sessions are context managers and must be closed when no longer needed.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Protocol

import requests

from auto_uploader.assets import AssetManager, HttpAssetManager, LocalAssetManager
from auto_uploader.config import BACKEND_LOCAL, UploaderConfiguration
from auto_uploader.errors import SessionAcquireError

logger = logging.getLogger(__name__)

# Cheap authenticated endpoint used to validate credentials up front.
CURRENT_USER_PATH = "/libs/granite/security/currentuser.json"


class ResolverFactory(Protocol):
    def acquire_session(self, purpose: str) -> "Session": ...


class Session:
    """Base class for repository sessions."""

    def __init__(self, purpose: str, asset_manager: AssetManager):
        self.purpose = purpose
        self._asset_manager = asset_manager
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def asset_manager(self) -> AssetManager:
        """Return the asset manager bound to this session."""
        if self._closed:
            raise SessionAcquireError("Session is closed")
        return self._asset_manager

    def close(self) -> None:
        """Release the session. Closing twice is harmless."""
        self._closed = True

    def __enter__(self) -> "Session":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


class HttpSession(Session):
    """Session backed by an authenticated ``requests.Session``."""

    def __init__(self, purpose: str, http: requests.Session, base_url: str, timeout: float):
        super().__init__(purpose, HttpAssetManager(http, base_url, timeout))
        self._http = http

    def close(self) -> None:
        if not self._closed:
            self._http.close()
        super().close()


class HttpResolverFactory:
    """Opens HTTP sessions against an AEM author instance."""

    def __init__(
        self,
        base_url: str,
        username: str = "",
        password: str = "",
        timeout: float = 30.0,
    ):
        self._base_url = base_url.rstrip("/")
        self._auth = (username, password) if username else None
        self._timeout = timeout

    def acquire_session(self, purpose: str) -> HttpSession:
        http = requests.Session()
        http.auth = self._auth
        http.headers["User-Agent"] = f"auto-file-uploader ({purpose})"
        try:
            resp = http.get(self._base_url + CURRENT_USER_PATH, timeout=self._timeout)
        except requests.RequestException as exc:
            http.close()
            raise SessionAcquireError(
                f"Could not reach repository at {self._base_url}: {exc}"
            ) from exc
        if not resp.ok:
            http.close()
            raise SessionAcquireError(
                f"Repository refused {purpose} session: HTTP {resp.status_code}"
            )
        logger.info("Opened %s session on %s", purpose, self._base_url)
        return HttpSession(purpose, http, self._base_url, self._timeout)


class LocalResolverFactory:
    """Opens sessions on a local folder that mirrors the repository."""

    def __init__(self, root: str | Path, verify: bool = True):
        self._root = Path(root)
        self._verify = verify

    def acquire_session(self, purpose: str) -> Session:
        try:
            self._root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise SessionAcquireError(
                f"Repository root {self._root} is unavailable: {exc}"
            ) from exc
        logger.info("Opened %s session on %s", purpose, self._root)
        return Session(purpose, LocalAssetManager(self._root, verify=self._verify))


def create_resolver_factory(config: UploaderConfiguration) -> ResolverFactory:
    """Build the resolver factory for the configured backend."""
    if config.backend == BACKEND_LOCAL:
        return LocalResolverFactory(config.local_repository_root)
    return HttpResolverFactory(
        config.repository_url,
        username=config.username,
        password=config.password,
        timeout=config.request_timeout,
    )
