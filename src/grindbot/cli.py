"""Command-line entry point: serve the supervisor API for one project."""

from __future__ import annotations

import argparse
import logging
import os
from pathlib import Path
from typing import Optional, Sequence

import uvicorn

from .server.api import create_app

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 3000


def _default_port() -> int:
    try:
        return int(os.environ.get("PORT", DEFAULT_PORT))
    except ValueError:
        return DEFAULT_PORT


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="grindbot",
        description="Grindbot - dispatch tasks to a coding-assistant CLI and track them to review",
    )
    parser.add_argument(
        "--project-dir",
        type=Path,
        default=Path("."),
        help="Project directory holding .grindbot/ state (default: current directory)",
    )
    parser.add_argument(
        "--host",
        type=str,
        default=DEFAULT_HOST,
        help=f"Interface to bind (default: {DEFAULT_HOST})",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=_default_port(),
        help=f"Port to listen on (default: $PORT or {DEFAULT_PORT})",
    )
    parser.add_argument(
        "--backend",
        choices=("process", "session"),
        default=None,
        help="Worker backend (default: session when tmux is installed, else process)",
    )
    parser.add_argument(
        "--no-autostart",
        action="store_true",
        help="Do not start polling when the server starts",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default="info",
        choices=("debug", "info", "warning", "error"),
        help="Logging verbosity (default: info)",
    )
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level.upper()),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    app = create_app(
        project_dir=args.project_dir.expanduser().resolve(),
        backend_name=args.backend,
        autostart=not args.no_autostart,
    )
    uvicorn.run(app, host=args.host, port=args.port, log_level=args.log_level)


if __name__ == "__main__":
    main()
