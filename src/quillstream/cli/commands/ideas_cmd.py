from __future__ import annotations

import argparse

from rich.panel import Panel
from rich.table import Table

from quillstream.application.services.cost_service import format_cost
from quillstream.application.services.project_service import ProjectService
from quillstream.cli.context import CLIContext
from quillstream.domain.models.content import PostIdeasSession


def register(subparsers: argparse._SubParsersAction[argparse.ArgumentParser]) -> None:
    parser = subparsers.add_parser("ideas", help="Post idea sessions built from newsletters and analytics")
    ideas_subparsers = parser.add_subparsers(dest="ideas_command", required=True)

    generate = ideas_subparsers.add_parser("generate", help="Generate a new post-ideas session")
    generate.set_defaults(handler=run_generate)

    show = ideas_subparsers.add_parser("show", help="Show a saved post-ideas session")
    show.add_argument("--session-id", required=True)
    show.set_defaults(handler=run_show)


def run_generate(args: argparse.Namespace, ctx: CLIContext) -> int:
    ProjectService(ctx.paths).require_initialized()

    def _print(update: dict[str, object]) -> None:
        ctx.console.print(f"[cyan]{update.get('progress')}%[/cyan] {update.get('detail')}")

    session = ctx.services.post_ideas().generate(ctx.owner_id, progress_callback=_print)
    _print_session(session, ctx)
    return 0


def run_show(args: argparse.Namespace, ctx: CLIContext) -> int:
    ProjectService(ctx.paths).require_initialized()
    _print_session(ctx.services.post_ideas().get_session(ctx.owner_id, args.session_id), ctx)
    return 0


def _print_session(session: PostIdeasSession, ctx: CLIContext) -> None:
    table = Table(title=f"Post Ideas ({len(session.ideas)})")
    table.add_column("ID")
    table.add_column("Hook", overflow="fold")
    table.add_column("Style")
    table.add_column("Audience", overflow="fold")
    table.add_column("Trends")
    for idea in session.ideas:
        trends = [str(idea.primary_trend_index), *(str(i) for i in idea.related_trend_indices)]
        table.add_row(idea.id, idea.hook, idea.post_style, idea.target_audience, ", ".join(trends))
    ctx.console.print(table)

    costs = ", ".join(f"{name} {format_cost(value)}" for name, value in sorted(session.costs.items()))
    ctx.console.print(
        Panel.fit(
            "\n".join(
                [
                    f"Session: {session.id}",
                    f"Retrieved chunks: {session.retrieved_chunks}",
                    f"Trends: {len(session.trends_with_sources)}",
                    f"Costs: {costs or '-'}",
                    f"Total: {format_cost(session.total_cost)}",
                ]
            ),
            title="Session",
        )
    )
