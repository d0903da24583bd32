from __future__ import annotations

import argparse
from pathlib import Path

from rich.panel import Panel

from quillstream.application.services.project_service import ProjectService
from quillstream.cli.context import CLIContext
from quillstream.infrastructure.importers.json_records import load_records_from_json

_KINDS = {
    "newsletters": "newsletters",
    "trends": "trends",
    "competitors": "posts",
    "analytics": "posts",
}


def register(subparsers: argparse._SubParsersAction[argparse.ArgumentParser]) -> None:
    parser = subparsers.add_parser("import", help="Import newsletters, trends, competitor or analytics posts from JSON")
    parser.add_argument("kind", choices=sorted(_KINDS))
    parser.add_argument("--file", required=True, type=Path)
    parser.set_defaults(handler=run)


def run(args: argparse.Namespace, ctx: CLIContext) -> int:
    ProjectService(ctx.paths).require_initialized()
    rows = load_records_from_json(args.file, key=_KINDS[args.kind])
    importer = ctx.services.importer()

    if args.kind == "newsletters":
        summary = importer.import_newsletters(ctx.owner_id, rows)
    elif args.kind == "trends":
        summary = importer.import_trend_session(ctx.owner_id, rows)
    elif args.kind == "competitors":
        summary = importer.import_competitor_posts(rows)
    else:
        summary = importer.import_analytics_posts(ctx.owner_id, rows)

    preview = ", ".join(summary.ids[:10])
    if len(summary.ids) > 10:
        preview += ", ..."
    ctx.console.print(
        Panel.fit(
            f"Imported: {summary.imported}\nIDs: {preview or '-'}",
            title=f"Import {summary.kind}",
        )
    )
    return 0
