"""Entry point for Auto File Uploader.

Usage:
    python -m auto_uploader [--config PATH]    Run in the foreground
    python -m auto_uploader service CMD        Install/manage the background service
                                               (Windows service, macOS launchd, or Linux)
"""

import argparse
import sys
from pathlib import Path

from auto_uploader import __app_name__, __version__


def main(argv: list[str] | None = None) -> None:
    """Run the uploader in the foreground or delegate to the service CLI."""
    parser = argparse.ArgumentParser(prog="auto-file-uploader", description=__app_name__)
    parser.add_argument("--config", type=Path, help="path to the JSON configuration file")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = parser.add_subparsers(dest="command")
    service = sub.add_parser("service", help="manage the background service")
    service.add_argument("action", nargs="?", default="")
    args = parser.parse_args(argv)

    if args.command == "service":
        from auto_uploader.service import main as service_main

        service_main(args.action, args.config)
    else:
        from auto_uploader.service import run_foreground

        sys.exit(run_foreground(args.config))


if __name__ == "__main__":
    main()
