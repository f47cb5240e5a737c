"""Command line entry point that starts the manager."""

from __future__ import annotations

import argparse
import logging
import sys
from datetime import datetime
from typing import Sequence

from .logger import init_logger
from .manager.config import load_config
from .manager.server import get_tunasync_manager
from .util import VERSION

BUILDSTAMP = ""
GITHASH = "No githash provided"

logger = logging.getLogger("tunasync")


def version_text(buildstamp: str = BUILDSTAMP, githash: str = GITHASH) -> str:
    """Return the text printed for --version."""
    try:
        stamp = datetime.fromtimestamp(int(buildstamp)).astimezone()
        build_date = f"{stamp:%Y-%m-%d %H:%M:%S %z %Z}"
    except (ValueError, OverflowError, OSError):
        build_date = "No build date provided"
    return f"Version: {VERSION}\nGit Hash: {githash}\nBuild Date: {build_date}\n"


def start_manager(args: argparse.Namespace) -> int:
    """Load the configuration and run the manager server."""
    init_logger(args.verbose, args.debug, args.with_systemd)
    try:
        cfg = load_config(args.config, args)
    except Exception as exc:
        logger.error("Error loading config: %s", exc)
        raise SystemExit(1) from exc
    try:
        manager = get_tunasync_manager(cfg)
    except Exception as exc:
        logger.error("Error intializing TUNA sync worker.")
        raise SystemExit(1) from exc
    logger.info("Run tunasync manager server.")
    manager.run()
    return 0


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tunasync", description="tunasync mirror job management tool"
    )
    parser.add_argument("--version", action="store_true", help="print the version")
    commands = parser.add_subparsers(dest="command")

    manager = commands.add_parser("manager", aliases=["m"], help="start the tunasync manager")
    manager.add_argument("-c", "--config", default="", metavar="FILE",
                         help="Load manager configurations from FILE")
    manager.add_argument("--addr", default="", help="The manager will listen on ADDR")
    manager.add_argument("--port", default="", help="The manager will bind to PORT")
    manager.add_argument("--cert", default="", metavar="FILE",
                         help="Use SSL certificate from FILE")
    manager.add_argument("--key", default="", metavar="FILE", help="Use SSL key from FILE")
    manager.add_argument("--db-file", default="", metavar="FILE",
                         help="Use FILE as the database file")
    manager.add_argument("--db-type", default="", metavar="TYPE",
                         help="Use database type TYPE")
    manager.add_argument("-v", "--verbose", action="store_true", help="Enable verbose logging")
    manager.add_argument("--debug", action="store_true", help="Run manager in debug mode")
    manager.add_argument("--with-systemd", action="store_true",
                         help="Enable systemd-compatible logging")
    manager.add_argument("--pidfile", default="/run/tunasync/tunasync.manager.pid",
                         help="The pid file of the manager process")
    manager.set_defaults(func=start_manager)
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Parse the command line and run the chosen command."""
    parser = _build_parser()
    args = parser.parse_args(argv)
    if args.version:
        sys.stdout.write(version_text(BUILDSTAMP, GITHASH))
        return 0
    if not args.command:
        parser.print_help()
        return 0
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())