from __future__ import annotations

import argparse

from rich.panel import Panel
from rich.table import Table

from quillstream.application.services.cost_service import format_cost
from quillstream.application.services.project_service import ProjectService
from quillstream.application.services.retrieval_service import format_context_with_citations
from quillstream.cli.context import CLIContext


def register(subparsers: argparse._SubParsersAction[argparse.ArgumentParser]) -> None:
    parser = subparsers.add_parser("rag", help="Newsletter indexing and semantic search")
    rag_subparsers = parser.add_subparsers(dest="rag_command", required=True)

    index = rag_subparsers.add_parser("index", help="Index newsletters into the vector store")
    index.add_argument("--newsletter-id", help="Index (or re-index) a single newsletter")
    index.add_argument("--all", action="store_true", help="Re-index every newsletter, not only unindexed ones")
    index.set_defaults(handler=run_index)

    status = rag_subparsers.add_parser("status", help="Show indexing status")
    status.add_argument("--limit", type=int, default=20, help="Unindexed newsletters to list")
    status.set_defaults(handler=run_status)

    search = rag_subparsers.add_parser("search", help="Semantic search over indexed newsletters")
    search.add_argument("--query", required=True)
    search.add_argument("--limit", type=int, default=10)
    search.add_argument("--min-score", type=float, default=0.3)
    search.add_argument("--recency-days", type=int, help="Boost chunks from the last N days")
    search.set_defaults(handler=run_search)

    remove = rag_subparsers.add_parser("remove", help="Remove a newsletter from the index")
    remove.add_argument("--newsletter-id", required=True)
    remove.set_defaults(handler=run_remove)


def _progress_printer(ctx: CLIContext):
    def _print(update: dict[str, object]) -> None:
        ctx.console.print(f"[cyan]{update.get('progress')}%[/cyan] {update.get('detail')}")

    return _print


def run_index(args: argparse.Namespace, ctx: CLIContext) -> int:
    ProjectService(ctx.paths).require_initialized()
    indexer = ctx.services.indexer()

    if args.newsletter_id:
        result = indexer.index_by_id(args.newsletter_id)
        if not result.success:
            ctx.console.print(f"[red]Indexing failed[/red] {result.newsletter_id}: {result.error}")
            return 1
        ctx.console.print(
            f"[green]Indexed[/green] {result.newsletter_id}: {result.chunks_created} chunks, "
            f"{format_cost(result.estimated_cost)}"
        )
        return 0

    summary = indexer.index_all_for_owner(
        ctx.owner_id,
        only_unindexed=not args.all,
        progress_callback=_progress_printer(ctx),
    )
    failures = [r for r in summary.results if not r.success]
    if failures:
        table = Table(title=f"Indexing Failures ({len(failures)})")
        table.add_column("Newsletter")
        table.add_column("Error", overflow="fold")
        for result in failures:
            table.add_row(result.newsletter_id, str(result.error or ""))
        ctx.console.print(table)

    ctx.console.print(
        Panel.fit(
            "\n".join(
                [
                    f"Newsletters: {len(summary.results)}",
                    f"Succeeded: {summary.success_count}",
                    f"Failed: {summary.failure_count}",
                    f"Chunks created: {summary.total_chunks}",
                    f"Estimated cost: {format_cost(summary.total_cost)}",
                ]
            ),
            title="Indexing Summary",
        )
    )
    return 1 if summary.failure_count else 0


def run_status(args: argparse.Namespace, ctx: CLIContext) -> int:
    ProjectService(ctx.paths).require_initialized()
    indexer = ctx.services.indexer()
    stats = indexer.stats(ctx.owner_id)
    unindexed = indexer.list_unindexed(ctx.owner_id, limit=args.limit)

    if unindexed:
        table = Table(title=f"Unindexed Newsletters ({len(unindexed)})")
        table.add_column("ID")
        table.add_column("Subject", overflow="fold")
        table.add_column("From")
        table.add_column("Received")
        for newsletter in unindexed:
            table.add_row(
                newsletter.id,
                newsletter.subject,
                newsletter.sender_name or newsletter.sender_email,
                newsletter.received_at or "",
            )
        ctx.console.print(table)

    ctx.console.print(
        Panel.fit(
            "\n".join(
                [
                    f"Ready: {'yes' if stats.ready else 'no'}",
                    f"Newsletters: {stats.indexed_newsletters}/{stats.total_newsletters} indexed "
                    f"({stats.percent_indexed}%)",
                    f"Chunks: {stats.total_chunks}",
                    f"Embedding model: {ctx.services.settings.embedding_model}",
                ]
            ),
            title="RAG Status",
        )
    )
    return 0


def run_search(args: argparse.Namespace, ctx: CLIContext) -> int:
    ProjectService(ctx.paths).require_initialized()
    retrieval = ctx.services.retrieval()
    if args.recency_days:
        result = retrieval.retrieve_with_recency_boost(
            args.query,
            ctx.owner_id,
            limit=args.limit,
            recency_days=args.recency_days,
            min_score=args.min_score,
        )
    else:
        result = retrieval.retrieve(args.query, ctx.owner_id, limit=args.limit, min_score=args.min_score)

    table = Table(title=f"Search Hits ({result.total_chunks})")
    table.add_column("Score")
    table.add_column("Subject", overflow="fold")
    table.add_column("From")
    table.add_column("Chunk")
    table.add_column("Text", overflow="fold")
    for chunk in result.chunks:
        snippet = chunk.text if len(chunk.text) <= 240 else f"{chunk.text[:240]}..."
        table.add_row(
            f"{chunk.relevance_score:.3f}",
            chunk.subject,
            chunk.sender,
            str(chunk.chunk_index),
            snippet,
        )
    ctx.console.print(table)

    for block in format_context_with_citations(result):
        ctx.console.print(f"[bold]{block.source_id}[/bold] {block.citation} ({round(block.relevance * 100)}%)")
    return 0


def run_remove(args: argparse.Namespace, ctx: CLIContext) -> int:
    ProjectService(ctx.paths).require_initialized()
    removed = ctx.services.indexer().remove_newsletter(args.newsletter_id)
    ctx.console.print(f"[green]Removed[/green] {removed} chunks for {args.newsletter_id}")
    return 0
