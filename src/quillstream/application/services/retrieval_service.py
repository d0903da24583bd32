from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timedelta, timezone

from quillstream.core.errors import ValidationError
from quillstream.core.time import parse_iso_datetime
from quillstream.domain.models.newsletter import SOURCE_TYPE_NEWSLETTER
from quillstream.domain.models.retrieval import (
    CitationBlock,
    RetrievalResult,
    RetrievedChunk,
    SourceGroup,
    TrendingTopic,
)
from quillstream.infrastructure.vector.embeddings import LiteLLMEmbedder
from quillstream.infrastructure.vector.qdrant_store import NEWSLETTERS_COLLECTION, QdrantVectorStore

logger = logging.getLogger(__name__)

DEFAULT_TRENDING_QUERIES = (
    "AI breakthroughs and announcements",
    "new AI models and capabilities",
    "AI in business and enterprise",
    "AI tools and productivity",
    "AI ethics and regulation",
)
NO_CONTEXT_MESSAGE = "No relevant newsletter content found."


class RetrievalService:
    def __init__(
        self,
        *,
        vector_store: QdrantVectorStore,
        embedder: LiteLLMEmbedder,
        collection: str = NEWSLETTERS_COLLECTION,
    ) -> None:
        self.vector_store = vector_store
        self.embedder = embedder
        self.collection = collection

    def retrieve(
        self,
        query: str,
        owner_id: str | None = None,
        *,
        limit: int = 10,
        min_score: float = 0.3,
    ) -> RetrievalResult:
        if not query or not query.strip():
            raise ValidationError("Retrieval query must not be empty.")
        if limit <= 0:
            raise ValidationError("Retrieval limit must be positive.")
        if not 0.0 <= min_score <= 1.0:
            raise ValidationError("min_score must be within [0, 1].")

        vectors = self.embedder.embed_texts([query])
        filters = {"sourceType": SOURCE_TYPE_NEWSLETTER}
        if owner_id:
            filters["ownerId"] = owner_id
        self.vector_store.ensure_collection(self.collection)
        hits = self.vector_store.search(
            self.collection,
            query_vector=vectors[0],
            limit=limit * 2,
            filters=filters,
        )
        chunks = [self._to_chunk(hit) for hit in hits if float(hit["score"]) >= min_score][:limit]
        logger.debug("Retrieved %d/%d chunks for %r", len(chunks), len(hits), query)
        return RetrievalResult(query=query, chunks=chunks, sources=group_by_source(chunks))

    def retrieve_for_topics(
        self,
        queries: list[str],
        owner_id: str | None = None,
        *,
        chunks_per_query: int = 5,
        min_score: float = 0.3,
    ) -> RetrievalResult:
        seen: set[tuple[str, str]] = set()
        merged: list[RetrievedChunk] = []
        for query in queries:
            result = self.retrieve(query, owner_id, limit=chunks_per_query, min_score=min_score)
            for chunk in result.chunks:
                key = (chunk.newsletter_id, chunk.text[:50])
                if key in seen:
                    continue
                seen.add(key)
                merged.append(chunk)
        merged.sort(key=lambda c: c.relevance_score, reverse=True)
        return RetrievalResult(query=" | ".join(queries), chunks=merged, sources=group_by_source(merged))

    def retrieve_with_recency_boost(
        self,
        query: str,
        owner_id: str | None = None,
        *,
        limit: int = 10,
        recency_days: int = 7,
        boost: float = 0.1,
        min_score: float = 0.3,
        now: datetime | None = None,
    ) -> RetrievalResult:
        pool = self.retrieve(query, owner_id, limit=limit * 2, min_score=min_score)
        cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=recency_days)
        boosted: list[RetrievedChunk] = []
        for chunk in pool.chunks:
            chunk_date = parse_iso_datetime(chunk.date)
            if chunk_date is not None and chunk_date >= cutoff:
                chunk = replace(chunk, relevance_score=min(1.0, chunk.relevance_score + boost))
            boosted.append(chunk)
        boosted.sort(key=lambda c: c.relevance_score, reverse=True)
        top = boosted[:limit]
        return RetrievalResult(query=query, chunks=top, sources=group_by_source(top))

    def trending_topics(
        self,
        owner_id: str | None = None,
        *,
        queries: tuple[str, ...] | list[str] = DEFAULT_TRENDING_QUERIES,
        per_topic_limit: int = 3,
        min_score: float = 0.4,
    ) -> list[TrendingTopic]:
        topics: list[TrendingTopic] = []
        for query in queries:
            result = self.retrieve(query, owner_id, limit=per_topic_limit, min_score=min_score)
            if not result.chunks:
                continue
            strength = sum(c.relevance_score for c in result.chunks) / len(result.chunks)
            topics.append(
                TrendingTopic(
                    topic=query,
                    strength=strength,
                    sources=[source.newsletter_id for source in result.sources],
                )
            )
        topics.sort(key=lambda t: t.strength, reverse=True)
        return topics

    @staticmethod
    def _to_chunk(hit: dict) -> RetrievedChunk:
        payload = hit.get("payload") or {}
        sender = payload.get("from")
        if isinstance(sender, dict):
            sender = f"{sender.get('name', '')} <{sender.get('email', '')}>"
        return RetrievedChunk(
            point_id=str(hit.get("id") or ""),
            newsletter_id=str(payload.get("parentId") or ""),
            chunk_index=int(payload.get("chunkIndex") or 0),
            text=str(payload.get("text") or ""),
            subject=str(payload.get("subject") or ""),
            sender=str(sender or ""),
            date=str(payload.get("date") or ""),
            relevance_score=float(hit.get("score") or 0.0),
        )


def group_by_source(chunks: list[RetrievedChunk]) -> list[SourceGroup]:
    groups: dict[str, SourceGroup] = {}
    for chunk in chunks:
        group = groups.get(chunk.newsletter_id)
        if group is None:
            group = SourceGroup(
                newsletter_id=chunk.newsletter_id,
                subject=chunk.subject,
                sender=chunk.sender,
                date=chunk.date,
            )
            groups[chunk.newsletter_id] = group
        group.chunks.append(chunk)
    for group in groups.values():
        group.avg_score = sum(c.relevance_score for c in group.chunks) / len(group.chunks)
    return sorted(groups.values(), key=lambda g: g.avg_score, reverse=True)


def format_context_for_prompt(result: RetrievalResult, *, max_chunks: int = 5) -> str:
    top = result.chunks[:max_chunks]
    if not top:
        return NO_CONTEXT_MESSAGE
    blocks = []
    for index, chunk in enumerate(top, start=1):
        parsed = parse_iso_datetime(chunk.date)
        date = parsed.date().isoformat() if parsed else chunk.date
        blocks.append(
            f'[Source {index}] From: {chunk.sender} | Subject: "{chunk.subject}" | Date: {date}\n'
            f"Relevance: {round(chunk.relevance_score * 100)}%\n\n"
            f"{chunk.text}"
        )
    return "\n\n---\n\n".join(blocks)


def format_context_with_citations(result: RetrievalResult, *, max_sources: int = 3) -> list[CitationBlock]:
    return [
        CitationBlock(
            source_id=f"S{index}",
            citation=f'{source.sender.split("<")[0].strip()} - "{source.subject}"',
            content="\n\n".join(c.text for c in source.chunks),
            relevance=source.avg_score,
        )
        for index, source in enumerate(result.sources[:max_sources], start=1)
    ]
