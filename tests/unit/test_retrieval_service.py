from __future__ import annotations

from datetime import datetime, timezone

import pytest

from quillstream.application.services.retrieval_service import (
    NO_CONTEXT_MESSAGE,
    RetrievalService,
    format_context_for_prompt,
    format_context_with_citations,
)
from quillstream.core.errors import ValidationError
from quillstream.domain.models.retrieval import RetrievalResult


class _FakeEmbedder:
    model_name = "fake-embedding"

    def __init__(self) -> None:
        self.queries: list[str] = []

    def embed_texts(self, texts: list[str]) -> list[list[float]]:
        self.queries.extend(texts)
        return [[1.0, 0.0, 0.0] for _ in texts]


class _FakeStore:
    def __init__(self, hits_by_call: list[list[dict]]) -> None:
        self._hits_by_call = list(hits_by_call)
        self.calls: list[dict] = []

    def ensure_collection(self, collection: str) -> None:
        return None

    def search(self, collection: str, *, query_vector, limit: int, filters=None) -> list[dict]:
        self.calls.append({"collection": collection, "limit": limit, "filters": dict(filters or {})})
        hits = self._hits_by_call.pop(0) if self._hits_by_call else []
        return sorted(hits, key=lambda h: h["score"], reverse=True)[:limit]


def _hit(point_id: str, parent: str, score: float, text: str, *, date: str = "2024-05-01T00:00:00+00:00") -> dict:
    return {
        "id": point_id,
        "score": score,
        "payload": {
            "parentId": parent,
            "chunkIndex": int(point_id[-1]) if point_id[-1].isdigit() else 0,
            "text": text,
            "subject": f"Subject {parent}",
            "from": f"Sender {parent} <{parent}@example.com>",
            "date": date,
            "ownerId": "user-1",
            "sourceType": "newsletter",
        },
    }


def test_retrieve_filters_scores_truncates_and_groups() -> None:
    store = _FakeStore(
        [
            [
                _hit("p1", "a", 0.91, "alpha one"),
                _hit("p2", "b", 0.85, "bravo one"),
                _hit("p3", "a", 0.71, "alpha two"),
                _hit("p4", "c", 0.25, "charlie low"),
            ]
        ]
    )
    service = RetrievalService(vector_store=store, embedder=_FakeEmbedder())

    result = service.retrieve("agents", "user-1", limit=2, min_score=0.3)

    assert store.calls[0]["limit"] == 4
    assert store.calls[0]["filters"] == {"sourceType": "newsletter", "ownerId": "user-1"}
    assert [c.point_id for c in result.chunks] == ["p1", "p2"]
    assert result.total_chunks == 2
    assert [s.newsletter_id for s in result.sources] == ["a", "b"]


def test_groups_use_mean_score_and_sort_descending() -> None:
    store = _FakeStore(
        [
            [
                _hit("p1", "a", 0.9, "a1"),
                _hit("p2", "b", 0.8, "b1"),
                _hit("p3", "a", 0.5, "a2"),
            ]
        ]
    )
    result = RetrievalService(vector_store=store, embedder=_FakeEmbedder()).retrieve("q", limit=10)

    groups = {s.newsletter_id: s for s in result.sources}
    assert groups["a"].avg_score == pytest.approx(0.7)
    assert len(groups["a"].chunks) == 2
    assert [s.newsletter_id for s in result.sources] == ["b", "a"]
    assert "ownerId" not in store.calls[0]["filters"]


@pytest.mark.parametrize(
    "query,limit,min_score",
    [("", 10, 0.3), ("   ", 10, 0.3), ("q", 0, 0.3), ("q", 10, 1.5), ("q", 10, -0.1)],
)
def test_retrieve_rejects_invalid_input(query: str, limit: int, min_score: float) -> None:
    service = RetrievalService(vector_store=_FakeStore([]), embedder=_FakeEmbedder())

    with pytest.raises(ValidationError):
        service.retrieve(query, limit=limit, min_score=min_score)


def test_retrieve_for_topics_dedupes_and_resorts() -> None:
    store = _FakeStore(
        [
            [_hit("p1", "a", 0.6, "shared chunk text"), _hit("p2", "b", 0.5, "bravo")],
            [_hit("p1", "a", 0.6, "shared chunk text"), _hit("p3", "c", 0.95, "charlie")],
        ]
    )
    service = RetrievalService(vector_store=store, embedder=_FakeEmbedder())

    result = service.retrieve_for_topics(["agents", "robotics"], "user-1", chunks_per_query=5)

    assert result.query == "agents | robotics"
    assert [c.point_id for c in result.chunks] == ["p3", "p1", "p2"]


def test_recency_boost_promotes_recent_chunks() -> None:
    now = datetime(2024, 5, 10, tzinfo=timezone.utc)
    store = _FakeStore(
        [
            [
                _hit("p1", "old", 0.80, "old news", date="2024-03-01T00:00:00+00:00"),
                _hit("p2", "new", 0.75, "fresh news", date="2024-05-08T00:00:00+00:00"),
                _hit("p3", "max", 0.97, "top news", date="2024-05-09T00:00:00Z"),
            ]
        ]
    )
    service = RetrievalService(vector_store=store, embedder=_FakeEmbedder())

    result = service.retrieve_with_recency_boost("q", "user-1", limit=2, now=now)

    assert store.calls[0]["limit"] == 8
    assert [c.point_id for c in result.chunks] == ["p3", "p2"]
    assert result.chunks[0].relevance_score == 1.0
    assert result.chunks[1].relevance_score == pytest.approx(0.85)


def test_trending_topics_orders_by_strength() -> None:
    store = _FakeStore(
        [
            [_hit("p1", "a", 0.5, "x")],
            [],
            [_hit("p2", "b", 0.9, "y"), _hit("p3", "c", 0.8, "z")],
        ]
    )
    service = RetrievalService(vector_store=store, embedder=_FakeEmbedder())

    topics = service.trending_topics("user-1", queries=["one", "two", "three"])

    assert [t.topic for t in topics] == ["three", "one"]
    assert topics[0].strength == pytest.approx(0.85)
    assert topics[0].sources == ["b", "c"]


def test_format_context_for_prompt_blocks() -> None:
    store = _FakeStore([[_hit("p1", "a", 0.876, "Agents are shipping."), _hit("p2", "b", 0.5, "Second.")]])
    result = RetrievalService(vector_store=store, embedder=_FakeEmbedder()).retrieve("q")

    text = format_context_for_prompt(result, max_chunks=1)

    assert text == (
        '[Source 1] From: Sender a <a@example.com> | Subject: "Subject a" | Date: 2024-05-01\n'
        "Relevance: 88%\n\n"
        "Agents are shipping."
    )
    assert "\n\n---\n\n" in format_context_for_prompt(result)
    assert format_context_for_prompt(RetrievalResult(query="q")) == NO_CONTEXT_MESSAGE


def test_format_context_with_citations() -> None:
    store = _FakeStore([[_hit("p1", "a", 0.9, "one"), _hit("p2", "a", 0.7, "two"), _hit("p3", "b", 0.6, "three")]])
    result = RetrievalService(vector_store=store, embedder=_FakeEmbedder()).retrieve("q")

    blocks = format_context_with_citations(result, max_sources=1)

    assert len(blocks) == 1
    assert blocks[0].source_id == "S1"
    assert blocks[0].citation == 'Sender a - "Subject a"'
    assert blocks[0].content == "one\n\ntwo"
    assert blocks[0].relevance == pytest.approx(0.8)
