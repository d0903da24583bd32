from __future__ import annotations

import argparse
import json

from rich.panel import Panel
from rich.table import Table

from quillstream.application.services.cost_service import format_cost
from quillstream.application.services.project_service import ProjectService
from quillstream.cli.context import CLIContext


def register(subparsers: argparse._SubParsersAction[argparse.ArgumentParser]) -> None:
    parser = subparsers.add_parser("costs", help="API cost ledger")
    costs_subparsers = parser.add_subparsers(dest="costs_command", required=True)

    summary = costs_subparsers.add_parser("summary", help="Show usage totals by category")
    summary.set_defaults(handler=run_summary)

    list_parser = costs_subparsers.add_parser("list", help="List recent ledger entries")
    list_parser.add_argument("--limit", type=int, default=50)
    list_parser.set_defaults(handler=run_list)


def run_summary(args: argparse.Namespace, ctx: CLIContext) -> int:
    ProjectService(ctx.paths).require_initialized()
    totals = ctx.services.cost_repo().totals_for_owner(ctx.owner_id)

    lines = [
        f"Total cost: {format_cost(totals.total_cost)}",
        f"Total units: {totals.total_units}",
        f"Calls: {totals.total_calls}",
    ]
    lines.extend(f"{category}: {format_cost(cost)}" for category, cost in sorted(totals.breakdown.items()))
    ctx.console.print(Panel.fit("\n".join(lines), title=f"Usage for {ctx.owner_id}"))
    return 0


def run_list(args: argparse.Namespace, ctx: CLIContext) -> int:
    ProjectService(ctx.paths).require_initialized()
    entries = ctx.services.cost_repo().list_for_owner(ctx.owner_id, limit=args.limit)

    table = Table(title=f"Ledger Entries ({len(entries)})")
    table.add_column("When")
    table.add_column("Operation")
    table.add_column("Model")
    table.add_column("Units")
    table.add_column("Cost")
    table.add_column("Metadata", overflow="fold")
    for entry in entries:
        table.add_row(
            entry.created_at,
            entry.operation,
            entry.model,
            f"{entry.input_units}/{entry.output_units}",
            format_cost(entry.cost),
            json.dumps(entry.metadata, sort_keys=True),
        )
    ctx.console.print(table)
    return 0
