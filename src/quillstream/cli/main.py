from __future__ import annotations

import argparse
import logging
import os
from pathlib import Path

from rich.console import Console

from quillstream.application.container import ServiceContainer
from quillstream.cli.commands import (
    costs_cmd,
    ideas_cmd,
    import_cmd,
    init_cmd,
    jobs_cmd,
    rag_cmd,
    web_cmd,
)
from quillstream.cli.context import CLIContext
from quillstream.core.config import load_paths
from quillstream.core.errors import QuillError
from quillstream.core.logging import configure_logging

logger = logging.getLogger(__name__)

DEFAULT_OWNER_ID = "default"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="quill",
        description="Quillstream LinkedIn post generation CLI",
    )
    parser.add_argument(
        "--project-root",
        type=Path,
        default=Path.cwd(),
        help="Project root to use for .quill data (default: current working directory)",
    )
    parser.add_argument(
        "--owner",
        default=os.getenv("QUILL_OWNER_ID", DEFAULT_OWNER_ID),
        help="Owner ID that records and jobs belong to (default: $QUILL_OWNER_ID or 'default')",
    )
    parser.add_argument("-v", "--verbose", action="count", default=0)

    subparsers = parser.add_subparsers(dest="command", required=True)
    init_cmd.register(subparsers)
    import_cmd.register(subparsers)
    rag_cmd.register(subparsers)
    ideas_cmd.register(subparsers)
    jobs_cmd.register(subparsers)
    costs_cmd.register(subparsers)
    web_cmd.register(subparsers)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    configure_logging(args.verbose)
    console = Console()

    paths = load_paths(args.project_root)
    services = ServiceContainer(paths)
    ctx = CLIContext(paths=paths, console=console, owner_id=args.owner, services=services)

    handler = getattr(args, "handler", None)
    if handler is None:
        parser.print_help()
        return 2

    try:
        return handler(args, ctx)
    except QuillError as exc:
        logger.error(str(exc))
        return 1
    finally:
        services.shutdown()


if __name__ == "__main__":
    raise SystemExit(main())
