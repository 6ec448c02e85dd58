"""
Headless runner and background service support for Auto File Uploader.

Hosts the uploader component outside of any application server: loads
the JSON configuration, starts the cron scheduler, activates the
component and applies the configuration so the job gets scheduled.

**Windows** runs as a Windows service via pywin32:
    python -m auto_uploader service install
    python -m auto_uploader service start
    python -m auto_uploader service stop
    python -m auto_uploader service remove

**macOS** runs via a launchd LaunchAgent:
    python -m auto_uploader service install   (creates ~/Library/LaunchAgents plist)
    python -m auto_uploader service start     (launchctl load)
    python -m auto_uploader service stop      (launchctl unload)
    python -m auto_uploader service remove    (deletes plist)

**Linux** runs as a foreground process:
    python -m auto_uploader service start     (blocks until Ctrl-C)
"""

import logging
import logging.handlers
import signal
import subprocess
import sys
import threading
from pathlib import Path

from auto_uploader.platform_utils import IS_MACOS, IS_WINDOWS

logger = logging.getLogger(__name__)

# ---- Windows service (pywin32) -----------------------------------------

_HAS_WIN32 = False
if IS_WINDOWS:
    try:
        import servicemanager  # type: ignore[import-untyped]
        import win32event  # type: ignore[import-untyped]
        import win32service  # type: ignore[import-untyped]
        import win32serviceutil  # type: ignore[import-untyped]
        _HAS_WIN32 = True
    except ImportError:
        pass

# ---- macOS launchd constants -------------------------------------------

_LAUNCHD_LABEL = "com.autofileuploader.agent"
_PLIST_DIR = Path.home() / "Library" / "LaunchAgents" if IS_MACOS else Path("/dev/null")
_PLIST_PATH = _PLIST_DIR / f"{_LAUNCHD_LABEL}.plist" if IS_MACOS else Path("/dev/null")

_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def setup_logging(config) -> None:
    """Configure a rotating file log plus a stderr handler on the root logger."""
    from auto_uploader.config import get_log_path

    level = getattr(logging, config.log_level.upper(), logging.INFO)
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    fmt = logging.Formatter(_LOG_FORMAT)

    fh = logging.handlers.RotatingFileHandler(
        str(get_log_path()),
        maxBytes=config.max_log_size_mb * 1024 * 1024,
        backupCount=config.log_backup_count,
        encoding="utf-8",
    )
    fh.setLevel(level)
    fh.setFormatter(fmt)
    root_logger.addHandler(fh)

    sh = logging.StreamHandler(sys.stderr)
    sh.setLevel(level)
    sh.setFormatter(fmt)
    root_logger.addHandler(sh)


class UploaderHost:
    """Owns the scheduler and the component for one process."""

    def __init__(self, config_path: Path | None = None):
        from auto_uploader.component import AutoFileUploader
        from auto_uploader.config import Config
        from auto_uploader.scheduler import Scheduler

        self.config = Config(config_path)
        self.scheduler = Scheduler()
        self.component = AutoFileUploader(self.scheduler)

    def start(self) -> None:
        """Start scheduling uploads. Raises ConfigurationError when unconfigured."""
        snapshot = self.config.snapshot()
        self.scheduler.start()
        self.component.activate(snapshot)
        # Activation alone does not schedule; applying the configuration does.
        self.component.modified(snapshot)
        logger.info(
            "Uploading from %s to %s on %r",
            snapshot.watched_directory_path,
            snapshot.destination_path,
            snapshot.cron_expression,
        )

    def reload(self) -> None:
        """Re-read the configuration file and reschedule."""
        from auto_uploader.errors import ConfigurationError

        self.config.load()
        try:
            snapshot = self.config.snapshot()
        except ConfigurationError as exc:
            logger.error("Ignoring reloaded configuration: %s", exc)
            return
        self.component.modified(snapshot)
        logger.info("Configuration reloaded.")

    def stop(self) -> None:
        self.component.deactivate()
        self.scheduler.stop()


# ======================================================================
# Windows service
# ======================================================================

if _HAS_WIN32:

    class AutoFileUploaderService(win32serviceutil.ServiceFramework):
        """Windows service implementation for Auto File Uploader."""

        _svc_name_ = "AutoFileUploader"
        _svc_display_name_ = "Auto File Uploader"
        _svc_description_ = (
            "Watches a folder and uploads new or changed files into the "
            "AEM DAM on a cron schedule."
        )

        def __init__(self, args):
            super().__init__(args)
            self._stop_event = win32event.CreateEvent(None, 0, 0, None)
            self._host = None

        def SvcStop(self):
            self.ReportServiceStatus(win32service.SERVICE_STOP_PENDING)
            win32event.SetEvent(self._stop_event)
            logger.info("Service stop requested.")

        def SvcDoRun(self):
            servicemanager.LogMsg(
                servicemanager.EVENTLOG_INFORMATION_TYPE,
                servicemanager.PYS_SERVICE_STARTED,
                (self._svc_name_, ""),
            )
            try:
                self._host = _start_host(None)
                win32event.WaitForSingleObject(self._stop_event, win32event.INFINITE)
            except Exception as exc:
                logger.exception("Service error: %s", exc)
                servicemanager.LogErrorMsg(f"Auto File Uploader error: {exc}")
            finally:
                if self._host:
                    self._host.stop()
            logger.info("Service stopped.")


# ======================================================================
# macOS launchd helpers
# ======================================================================

def _macos_plist_content() -> str:
    """Generate the launchd plist XML for the current Python environment."""
    exe = sys.executable
    log_dir = Path.home() / "Library" / "Logs" / "AutoFileUploader"
    log_dir.mkdir(parents=True, exist_ok=True)
    return f"""\
<?xml version="1.0" encoding="UTF-8"?>
<!DOCTYPE plist PUBLIC "-//Apple//DTD PLIST 1.0//EN"
  "http://www.apple.com/DTDs/PropertyList-1.0.dtd">
<plist version="1.0">
<dict>
    <key>Label</key>
    <string>{_LAUNCHD_LABEL}</string>
    <key>ProgramArguments</key>
    <array>
        <string>{exe}</string>
        <string>-m</string>
        <string>auto_uploader</string>
    </array>
    <key>RunAtLoad</key>
    <false/>
    <key>KeepAlive</key>
    <true/>
    <key>StandardOutPath</key>
    <string>{log_dir / 'stdout.log'}</string>
    <key>StandardErrorPath</key>
    <string>{log_dir / 'stderr.log'}</string>
</dict>
</plist>
"""


def _macos_install() -> None:
    _PLIST_DIR.mkdir(parents=True, exist_ok=True)
    _PLIST_PATH.write_text(_macos_plist_content(), encoding="utf-8")
    print(f"Installed launchd plist: {_PLIST_PATH}")


def _macos_start() -> None:
    if _PLIST_PATH.exists():
        subprocess.run(["launchctl", "load", str(_PLIST_PATH)], check=True)
        print("Auto File Uploader launchd agent loaded.")
    else:
        print("Plist not found. Run 'install' first.")


def _macos_stop() -> None:
    if _PLIST_PATH.exists():
        subprocess.run(["launchctl", "unload", str(_PLIST_PATH)], check=False)
        print("Auto File Uploader launchd agent unloaded.")
    else:
        print("Plist not found.")


def _macos_remove() -> None:
    _macos_stop()
    if _PLIST_PATH.exists():
        _PLIST_PATH.unlink()
        print("Removed launchd plist.")


# ======================================================================
# Foreground runner
# ======================================================================

def _start_host(config_path: Path | None) -> UploaderHost:
    host = UploaderHost(config_path)
    setup_logging(host.config)
    host.start()
    return host


def run_foreground(config_path: Path | None = None) -> int:
    """Run until SIGINT/SIGTERM; SIGHUP reloads the configuration."""
    from auto_uploader.errors import ConfigurationError

    try:
        host = _start_host(config_path)
    except ConfigurationError as exc:
        logger.error("Cannot start: %s", exc)
        print(f"Auto File Uploader is not configured: {exc}")
        return 2

    stop = threading.Event()

    def _handler(sig, frame):
        stop.set()

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)
    if hasattr(signal, "SIGHUP"):
        signal.signal(signal.SIGHUP, lambda sig, frame: host.reload())

    print("Auto File Uploader running (press Ctrl-C to stop)…")
    while not stop.wait(timeout=1):
        pass
    host.stop()
    print("Auto File Uploader stopped.")
    return 0


# ======================================================================
# Service control
# ======================================================================

def main(cmd: str = "", config_path: Path | None = None) -> None:
    """Handle ``service <cmd>`` for the current platform."""
    # ---- Windows ----
    if IS_WINDOWS:
        if not _HAS_WIN32:
            print("ERROR: pywin32 is required for service mode on Windows.")
            print("       pip install pywin32")
            sys.exit(1)
        if cmd == "":
            try:
                servicemanager.Initialize()
                servicemanager.PrepareToHostSingle(AutoFileUploaderService)
                servicemanager.StartServiceCtrlDispatcher()
            except Exception:
                _show_help()
        else:
            win32serviceutil.HandleCommandLine(
                AutoFileUploaderService, argv=[sys.argv[0], cmd]
            )
        return

    # ---- macOS ----
    if IS_MACOS:
        actions = {
            "install": _macos_install,
            "start": _macos_start,
            "stop": _macos_stop,
            "remove": _macos_remove,
        }
        if cmd in actions:
            actions[cmd]()
        elif cmd == "run":
            sys.exit(run_foreground(config_path))
        else:
            _show_help()
        return

    # ---- Linux / other ----
    if cmd == "start":
        sys.exit(run_foreground(config_path))
    else:
        _show_help()


def _show_help() -> None:
    platform = "Windows" if IS_WINDOWS else ("macOS" if IS_MACOS else "Linux")
    print(f"Auto File Uploader — Background Service  ({platform})")
    print()
    print("Usage:")
    if IS_WINDOWS:
        print("  python -m auto_uploader service install   Install the Windows service")
        print("  python -m auto_uploader service start     Start the service")
        print("  python -m auto_uploader service stop      Stop the service")
        print("  python -m auto_uploader service remove    Uninstall the service")
    elif IS_MACOS:
        print("  python -m auto_uploader service install   Create launchd plist")
        print("  python -m auto_uploader service start     Load the launchd agent")
        print("  python -m auto_uploader service stop      Unload the launchd agent")
        print("  python -m auto_uploader service remove    Remove the plist")
        print("  python -m auto_uploader service run       Run in foreground")
    else:
        print("  python -m auto_uploader service start     Run in foreground (Ctrl-C to stop)")
