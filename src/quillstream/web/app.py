from __future__ import annotations

import json
from typing import Any, Iterator

from fastapi import FastAPI, Header, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ConfigDict, Field

from quillstream import __version__
from quillstream.application.container import ServiceContainer
from quillstream.application.services.project_service import ProjectService
from quillstream.application.services.retrieval_service import (
    format_context_for_prompt,
    format_context_with_citations,
)
from quillstream.core.config import AppPaths
from quillstream.core.errors import NotFoundError, QuillError, ValidationError
from quillstream.core.time import now_utc_iso
from quillstream.domain.models.content import PostIdeasSession
from quillstream.domain.models.retrieval import RetrievalResult


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class TrendJobRequest(_CamelModel):
    context_id: str | None = Field(default=None, alias="contextId")


class IdeaJobRequest(_CamelModel):
    session_id: str | None = Field(default=None, alias="sessionId")
    idea_id: str | None = Field(default=None, alias="ideaId")


class IndexRequest(_CamelModel):
    newsletter_id: str | None = Field(default=None, alias="newsletterId")
    reindex_all: bool = Field(default=False, alias="all")


class SearchRequest(_CamelModel):
    query: str
    limit: int = 10
    min_score: float = Field(default=0.3, alias="minScore")
    recency_days: int | None = Field(default=None, alias="recencyDays")


def _http_error(exc: QuillError) -> HTTPException:
    if isinstance(exc, ValidationError):
        return HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))


def _require_owner(owner_id: str | None) -> str:
    if not owner_id or not owner_id.strip():
        raise HTTPException(status_code=400, detail="X-Owner-Id header is required")
    return owner_id.strip()


def _retrieval_payload(result: RetrievalResult) -> dict[str, Any]:
    return {
        "query": result.query,
        "totalChunks": result.total_chunks,
        "chunks": [
            {
                "id": c.point_id,
                "newsletterId": c.newsletter_id,
                "chunkIndex": c.chunk_index,
                "text": c.text,
                "subject": c.subject,
                "from": c.sender,
                "date": c.date,
                "relevanceScore": c.relevance_score,
            }
            for c in result.chunks
        ],
        "sources": [
            {
                "newsletterId": s.newsletter_id,
                "subject": s.subject,
                "from": s.sender,
                "date": s.date,
                "chunkCount": len(s.chunks),
                "avgScore": s.avg_score,
            }
            for s in result.sources
        ],
        "citations": [
            {"sourceId": b.source_id, "citation": b.citation, "content": b.content, "relevance": b.relevance}
            for b in format_context_with_citations(result)
        ],
        "promptContext": format_context_for_prompt(result),
    }


def _session_payload(session: PostIdeasSession) -> dict[str, Any]:
    competitor = session.competitor_insights
    return {
        "id": session.id,
        "ownerId": session.owner_id,
        "createdAt": session.created_at,
        "ideas": [idea.to_dict() for idea in session.ideas],
        "analyticsInsights": session.analytics_insights.to_dict(),
        "trendsWithSources": [t.to_dict() for t in session.trends_with_sources],
        "competitorInsights": {
            "insights": competitor.insights,
            "overusedTopics": competitor.overused_topics,
            "contentGaps": competitor.content_gaps,
        },
        "costs": session.costs,
        "totalCost": session.total_cost,
        "ragEnabled": session.rag_enabled,
        "retrievedChunks": session.retrieved_chunks,
    }


def create_app(paths: AppPaths, *, services: ServiceContainer | None = None) -> FastAPI:
    app = FastAPI(title="Quillstream", version=__version__)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    ProjectService(paths).init_project()
    container = services or ServiceContainer(paths)

    def _sse_event(event: str, payload: dict[str, Any]) -> str:
        return f"event: {event}\ndata: {json.dumps(payload, ensure_ascii=True)}\n\n"

    @app.on_event("shutdown")
    def _shutdown_job_workers() -> None:
        container.shutdown()

    @app.get("/api/health")
    def api_health() -> dict[str, Any]:
        return {"ok": True, "version": __version__, "time": now_utc_iso()}

    @app.post("/api/jobs/from-trend")
    def api_create_trend_job(
        req: TrendJobRequest,
        x_owner_id: str | None = Header(default=None),
    ) -> dict[str, Any]:
        owner_id = _require_owner(x_owner_id)
        try:
            job_id = container.orchestrator().create_trend_job(owner_id, req.context_id or "")
        except QuillError as exc:
            raise _http_error(exc) from exc
        return {"success": True, "jobId": job_id, "message": "Post generation started"}

    @app.post("/api/jobs/from-idea")
    def api_create_idea_job(
        req: IdeaJobRequest,
        x_owner_id: str | None = Header(default=None),
    ) -> dict[str, Any]:
        owner_id = _require_owner(x_owner_id)
        try:
            job_id = container.orchestrator().create_idea_job(owner_id, req.session_id or "", req.idea_id or "")
        except QuillError as exc:
            raise _http_error(exc) from exc
        return {"success": True, "jobId": job_id, "message": "Post generation started"}

    @app.get("/api/jobs")
    def api_list_jobs(
        limit: int = Query(default=20, ge=1, le=200),
        x_owner_id: str | None = Header(default=None),
    ) -> dict[str, Any]:
        owner_id = _require_owner(x_owner_id)
        jobs = container.orchestrator().list_for_owner(owner_id, limit=limit)
        return {"count": len(jobs), "jobs": [job.to_dict() for job in jobs]}

    @app.get("/api/jobs/{job_id}")
    def api_get_job(job_id: str, x_owner_id: str | None = Header(default=None)) -> dict[str, Any]:
        owner_id = _require_owner(x_owner_id)
        try:
            return container.orchestrator().get_for_owner(owner_id, job_id).to_dict()
        except QuillError as exc:
            raise _http_error(exc) from exc

    @app.get("/api/jobs/{job_id}/events")
    def api_job_events(
        job_id: str,
        poll_interval: float = Query(default=0.5, gt=0, le=10),
        x_owner_id: str | None = Header(default=None),
    ) -> StreamingResponse:
        owner_id = _require_owner(x_owner_id)
        orchestrator = container.orchestrator()
        try:
            orchestrator.get_for_owner(owner_id, job_id)
        except QuillError as exc:
            raise _http_error(exc) from exc

        def iterator() -> Iterator[str]:
            seq = 0
            for job in orchestrator.watch(job_id, poll_interval=poll_interval):
                seq += 1
                payload = job.to_dict()
                payload["event_seq"] = seq
                yield _sse_event("job", payload)
                if job.is_terminal:
                    yield _sse_event(job.status, {"jobId": job.id, "error": job.error})
            yield _sse_event("done", {"ok": True})

        return StreamingResponse(
            iterator(),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
                "X-Accel-Buffering": "no",
            },
        )

    @app.get("/api/rag/status")
    def api_rag_status(x_owner_id: str | None = Header(default=None)) -> dict[str, Any]:
        owner_id = _require_owner(x_owner_id)
        indexer = container.indexer()
        stats = indexer.stats(owner_id)
        return {
            "ready": stats.ready,
            "totalNewsletters": stats.total_newsletters,
            "indexedNewsletters": stats.indexed_newsletters,
            "totalChunks": stats.total_chunks,
            "percentIndexed": stats.percent_indexed,
        }

    @app.get("/api/rag/unindexed")
    def api_rag_unindexed(
        limit: int = Query(default=100, ge=1, le=1000),
        x_owner_id: str | None = Header(default=None),
    ) -> dict[str, Any]:
        owner_id = _require_owner(x_owner_id)
        newsletters = container.indexer().list_unindexed(owner_id, limit=limit)
        return {
            "count": len(newsletters),
            "newsletters": [
                {"id": n.id, "subject": n.subject, "from": n.sender_name or n.sender_email, "receivedAt": n.received_at}
                for n in newsletters
            ],
        }

    @app.post("/api/rag/index")
    def api_rag_index(req: IndexRequest, x_owner_id: str | None = Header(default=None)) -> dict[str, Any]:
        owner_id = _require_owner(x_owner_id)
        indexer = container.indexer()
        try:
            if req.newsletter_id:
                results = [indexer.index_by_id(req.newsletter_id)]
            else:
                results = indexer.index_all_for_owner(owner_id, only_unindexed=not req.reindex_all).results
        except QuillError as exc:
            raise _http_error(exc) from exc
        return {
            "successCount": sum(1 for r in results if r.success),
            "failureCount": sum(1 for r in results if not r.success),
            "totalChunks": sum(r.chunks_created for r in results),
            "totalCost": sum(r.estimated_cost for r in results),
            "results": [
                {
                    "newsletterId": r.newsletter_id,
                    "chunksCreated": r.chunks_created,
                    "estimatedCost": r.estimated_cost,
                    "success": r.success,
                    "error": r.error,
                }
                for r in results
            ],
        }

    @app.delete("/api/rag/newsletters/{newsletter_id}")
    def api_rag_remove(newsletter_id: str, x_owner_id: str | None = Header(default=None)) -> dict[str, Any]:
        _require_owner(x_owner_id)
        removed = container.indexer().remove_newsletter(newsletter_id)
        return {"ok": True, "removedChunks": removed}

    @app.post("/api/rag/search")
    def api_rag_search(req: SearchRequest, x_owner_id: str | None = Header(default=None)) -> dict[str, Any]:
        owner_id = _require_owner(x_owner_id)
        retrieval = container.retrieval()
        try:
            if req.recency_days:
                result = retrieval.retrieve_with_recency_boost(
                    req.query,
                    owner_id,
                    limit=req.limit,
                    recency_days=req.recency_days,
                    min_score=req.min_score,
                )
            else:
                result = retrieval.retrieve(req.query, owner_id, limit=req.limit, min_score=req.min_score)
        except QuillError as exc:
            raise _http_error(exc) from exc
        return _retrieval_payload(result)

    @app.get("/api/rag/trending")
    def api_rag_trending(x_owner_id: str | None = Header(default=None)) -> dict[str, Any]:
        owner_id = _require_owner(x_owner_id)
        topics = container.retrieval().trending_topics(owner_id)
        return {
            "topics": [{"topic": t.topic, "strength": t.strength, "sources": t.sources} for t in topics],
        }

    @app.post("/api/ideas")
    def api_generate_ideas(x_owner_id: str | None = Header(default=None)) -> dict[str, Any]:
        owner_id = _require_owner(x_owner_id)
        try:
            session = container.post_ideas().generate(owner_id)
        except QuillError as exc:
            raise _http_error(exc) from exc
        return _session_payload(session)

    @app.get("/api/ideas/{session_id}")
    def api_get_ideas(session_id: str, x_owner_id: str | None = Header(default=None)) -> dict[str, Any]:
        owner_id = _require_owner(x_owner_id)
        try:
            session = container.post_ideas().get_session(owner_id, session_id)
        except QuillError as exc:
            raise _http_error(exc) from exc
        return _session_payload(session)

    @app.get("/api/costs")
    def api_costs(
        limit: int = Query(default=50, ge=1, le=500),
        x_owner_id: str | None = Header(default=None),
    ) -> dict[str, Any]:
        owner_id = _require_owner(x_owner_id)
        cost_repo = container.cost_repo()
        totals = cost_repo.totals_for_owner(owner_id)
        return {
            "totalCost": totals.total_cost,
            "totalUnits": totals.total_units,
            "totalCalls": totals.total_calls,
            "breakdown": totals.breakdown,
            "entries": [
                {
                    "ownerId": e.owner_id,
                    "operation": e.operation,
                    "inputUnits": e.input_units,
                    "outputUnits": e.output_units,
                    "totalUnits": e.total_units,
                    "cost": e.cost,
                    "model": e.model,
                    "metadata": e.metadata,
                    "timestamp": e.created_at,
                }
                for e in cost_repo.list_for_owner(owner_id, limit=limit)
            ],
        }

    return app
