"""
Cross-platform utilities for Auto File Uploader.

Centralises OS detection so the config store and the service runner
share a single set of helpers.

Supported platforms:
  - Windows 10/11
  - macOS 12+
  - Linux
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

APP_DIR_NAME = "AutoFileUploader"

# ---- platform flags ----------------------------------------------------

IS_WINDOWS: bool = sys.platform == "win32"
IS_MACOS: bool = sys.platform == "darwin"
IS_LINUX: bool = sys.platform.startswith("linux")

# ---- directories -------------------------------------------------------


def get_config_dir() -> Path:
    """
    Return the application config directory, created if needed.

    - Windows : ``%APPDATA%\\AutoFileUploader``
    - macOS   : ``~/Library/Application Support/AutoFileUploader``
    - Linux   : ``$XDG_CONFIG_HOME/AutoFileUploader`` (default ``~/.config``)
    """
    if IS_WINDOWS:
        base = os.environ.get("APPDATA", str(Path.home()))
    elif IS_MACOS:
        base = str(Path.home() / "Library" / "Application Support")
    else:
        base = os.environ.get("XDG_CONFIG_HOME", str(Path.home() / ".config"))

    config_dir = Path(base) / APP_DIR_NAME
    config_dir.mkdir(parents=True, exist_ok=True)
    return config_dir


def get_log_path() -> Path:
    """Return the path to the log file (inside the config directory)."""
    return get_config_dir() / "auto_file_uploader.log"
