from __future__ import annotations

import uuid
from pathlib import Path

import pytest

from quillstream.core.errors import PersistenceError
from quillstream.infrastructure.vector.qdrant_store import QdrantVectorStore, VectorPoint


def _point(vector: list[float], **payload) -> VectorPoint:
    return VectorPoint(point_id=str(uuid.uuid4()), vector=vector, payload=payload)


def _store(tmp_path: Path, dim: int = 3) -> QdrantVectorStore:
    return QdrantVectorStore(vector_size=dim, storage_path=tmp_path / "qdrant")


def test_ensure_upsert_search_and_filter(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.ensure_collection("newsletters")
    store.ensure_collection("newsletters")

    store.upsert(
        "newsletters",
        [
            _point([1.0, 0.0, 0.0], parentId="n1", ownerId="u1", sourceType="newsletter"),
            _point([0.9, 0.1, 0.0], parentId="n2", ownerId="u1", sourceType="newsletter"),
            _point([1.0, 0.0, 0.0], parentId="n3", ownerId="u2", sourceType="newsletter"),
        ],
    )

    hits = store.search("newsletters", query_vector=[1.0, 0.0, 0.0], limit=10, filters={"ownerId": "u1"})

    assert [hit["payload"]["parentId"] for hit in hits] == ["n1", "n2"]
    assert hits[0]["score"] >= hits[1]["score"]
    assert store.count_points("newsletters") == 3


def test_delete_by_filter_removes_matching_points_only(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.ensure_collection("newsletters")
    store.upsert(
        "newsletters",
        [
            _point([1.0, 0.0, 0.0], parentId="n1", ownerId="u1"),
            _point([0.0, 1.0, 0.0], parentId="n1", ownerId="u1"),
            _point([0.0, 0.0, 1.0], parentId="n2", ownerId="u1"),
        ],
    )

    store.delete_by_filter("newsletters", {"parentId": "n1"})

    assert store.count_points("newsletters", {"parentId": "n1"}) == 0
    assert store.count_points("newsletters", {"parentId": "n2"}) == 1
    with pytest.raises(ValueError):
        store.delete_by_filter("newsletters", {})


def test_dimension_mismatch_on_existing_collection(tmp_path: Path) -> None:
    first = _store(tmp_path, dim=3)
    first.ensure_collection("newsletters")

    second = QdrantVectorStore(vector_size=4, storage_path=tmp_path / "unused")
    second._client, second._models = first._client_and_models()

    with pytest.raises(PersistenceError):
        second.ensure_collection("newsletters")


def test_vector_size_must_be_positive(tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        QdrantVectorStore(vector_size=0, storage_path=tmp_path)
