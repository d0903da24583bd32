from __future__ import annotations

import argparse

from rich.panel import Panel
from rich.table import Table

from quillstream.application.services.cost_service import format_cost
from quillstream.application.services.project_service import ProjectService
from quillstream.cli.context import CLIContext
from quillstream.domain.models.job import JOB_FAILED, GenerationJob


def register(subparsers: argparse._SubParsersAction[argparse.ArgumentParser]) -> None:
    parser = subparsers.add_parser("jobs", help="LinkedIn post generation jobs")
    jobs_subparsers = parser.add_subparsers(dest="jobs_command", required=True)

    from_trend = jobs_subparsers.add_parser("from-trend", help="Generate a post from an AI trend")
    from_trend.add_argument("--trend-id", required=True)
    from_trend.add_argument("--no-watch", action="store_true", help="Print the job ID and exit once it finishes")
    from_trend.set_defaults(handler=run_from_trend)

    from_idea = jobs_subparsers.add_parser("from-idea", help="Generate a post from a post-ideas session idea")
    from_idea.add_argument("--session-id", required=True)
    from_idea.add_argument("--idea-id", required=True)
    from_idea.add_argument("--no-watch", action="store_true", help="Print the job ID and exit once it finishes")
    from_idea.set_defaults(handler=run_from_idea)

    show = jobs_subparsers.add_parser("show", help="Show one job")
    show.add_argument("--job-id", required=True)
    show.set_defaults(handler=run_show)

    list_parser = jobs_subparsers.add_parser("list", help="List recent jobs")
    list_parser.add_argument("--limit", type=int, default=20)
    list_parser.set_defaults(handler=run_list)

    watch = jobs_subparsers.add_parser("watch", help="Follow a job's progress until it finishes")
    watch.add_argument("--job-id", required=True)
    watch.add_argument("--poll-interval", type=float, default=0.5)
    watch.set_defaults(handler=run_watch)


def run_from_trend(args: argparse.Namespace, ctx: CLIContext) -> int:
    ProjectService(ctx.paths).require_initialized()
    job_id = ctx.services.orchestrator().create_trend_job(ctx.owner_id, args.trend_id)
    return _after_create(job_id, args, ctx)


def run_from_idea(args: argparse.Namespace, ctx: CLIContext) -> int:
    ProjectService(ctx.paths).require_initialized()
    job_id = ctx.services.orchestrator().create_idea_job(ctx.owner_id, args.session_id, args.idea_id)
    return _after_create(job_id, args, ctx)


def run_show(args: argparse.Namespace, ctx: CLIContext) -> int:
    ProjectService(ctx.paths).require_initialized()
    job = ctx.services.orchestrator().get_for_owner(ctx.owner_id, args.job_id)
    _print_job(job, ctx)
    return 0


def run_list(args: argparse.Namespace, ctx: CLIContext) -> int:
    ProjectService(ctx.paths).require_initialized()
    jobs = ctx.services.job_repo().list_for_owner(ctx.owner_id, limit=args.limit)

    table = Table(title=f"Generation Jobs ({len(jobs)})")
    table.add_column("Job ID")
    table.add_column("Kind")
    table.add_column("Status")
    table.add_column("Progress")
    table.add_column("Context", overflow="fold")
    table.add_column("Cost")
    table.add_column("Created")
    for job in jobs:
        table.add_row(
            job.id,
            job.kind,
            job.status,
            f"{job.progress.percentage}% {job.progress.stage}",
            job.context_title or job.context_id,
            format_cost(job.total_cost),
            job.created_at,
        )
    ctx.console.print(table)
    return 0


def run_watch(args: argparse.Namespace, ctx: CLIContext) -> int:
    ProjectService(ctx.paths).require_initialized()
    return _follow(args.job_id, ctx, poll_interval=args.poll_interval)


def _after_create(job_id: str, args: argparse.Namespace, ctx: CLIContext) -> int:
    ctx.console.print(f"[green]Job started[/green] {job_id}")
    if args.no_watch:
        return 0
    return _follow(job_id, ctx)


def _follow(job_id: str, ctx: CLIContext, *, poll_interval: float = 0.5) -> int:
    final: GenerationJob | None = None
    for job in ctx.services.orchestrator().watch(job_id, poll_interval=poll_interval):
        ctx.console.print(
            f"[cyan]{job.progress.percentage:>3}%[/cyan] [{job.progress.stage}] {job.progress.message}"
        )
        final = job
    if final is None:
        return 1
    _print_job(final, ctx)
    return 1 if final.status == JOB_FAILED else 0


def _print_job(job: GenerationJob, ctx: CLIContext) -> None:
    lines = [
        f"Status: {job.status}",
        f"Kind: {job.kind}",
        f"Context: {job.context_title or job.context_id}",
        f"Progress: {job.progress.percentage}% ({job.progress.stage}) {job.progress.message}",
        f"Cost: {format_cost(job.total_cost)} "
        f"(generation {format_cost(job.costs.generation)}, asset {format_cost(job.costs.asset)})",
    ]
    if job.error:
        lines.append(f"Error: {job.error}")
    ctx.console.print(Panel.fit("\n".join(lines), title=f"Job {job.id}"))

    if job.result is None:
        return
    hashtags = " ".join(job.result.hashtags)
    ctx.console.print(Panel(f"{job.result.text}\n\n{hashtags}", title=f"Post ({job.result.word_count} words)"))
    if job.result.asset_url:
        ctx.console.print(f"Image: {job.result.asset_url}")
    for citation in job.result.citations or []:
        ctx.console.print(f"- {citation.trend} [dim]({citation.source})[/dim]")
