from __future__ import annotations

import contextlib
import logging
import os
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from quillstream.core.config import read_float_env
from quillstream.core.errors import ConfigurationError, PersistenceError

logger = logging.getLogger(__name__)

NEWSLETTERS_COLLECTION = "newsletters"

# Payload fields filtered on by retrieval, indexed once per collection.
PAYLOAD_INDEXES = (
    ("ownerId", "keyword"),
    ("sourceType", "keyword"),
    ("date", "datetime"),
)


@dataclass(slots=True)
class VectorPoint:
    point_id: str
    vector: list[float]
    payload: dict[str, Any]


class QdrantVectorStore:
    def __init__(
        self,
        *,
        vector_size: int,
        storage_path: Path | None = None,
        url: str | None = None,
        api_key: str | None = None,
        timeout_seconds: float | None = None,
    ) -> None:
        if vector_size <= 0:
            raise ValueError("vector_size must be positive")
        self.vector_size = vector_size
        self.storage_path = storage_path
        self.server_url = (url or os.getenv("QUILL_QDRANT_URL") or "").strip() or None
        self.api_key = api_key or os.getenv("QUILL_QDRANT_API_KEY")
        self.timeout_seconds = (
            timeout_seconds
            if timeout_seconds is not None
            else read_float_env("QUILL_QDRANT_TIMEOUT_SECONDS", 10.0)
        )
        if self.server_url is None and self.storage_path is None:
            raise ConfigurationError("Qdrant needs either a server URL or a local storage path.")
        self.backend_name = "qdrant-server" if self.server_url else "qdrant-local"
        self._client = None
        self._models = None
        self._client_lock = threading.Lock()
        self._collection_lock = threading.Lock()
        # Embedded storage mutates in-process state, so its writes are serialized.
        self._write_lock = threading.Lock() if self.server_url is None else contextlib.nullcontext()
        self._ready: set[str] = set()

    def ensure_collection(self, collection: str) -> None:
        """Create the collection with cosine distance and payload indexes if it does not exist."""
        if collection in self._ready:
            return
        client, models = self._client_and_models()
        with self._collection_lock:
            if collection in self._ready:
                return
            self._create_if_missing(client, models, collection)
            self._ready.add(collection)

    def _create_if_missing(self, client, models, collection: str) -> None:
        try:
            exists = bool(client.collection_exists(collection_name=collection))
            if not exists:
                client.create_collection(
                    collection_name=collection,
                    vectors_config=models.VectorParams(size=self.vector_size, distance=models.Distance.COSINE),
                )
                for field_name, schema in PAYLOAD_INDEXES:
                    client.create_payload_index(
                        collection_name=collection,
                        field_name=field_name,
                        field_schema=schema,
                    )
                logger.info("Created Qdrant collection %s (dim=%d)", collection, self.vector_size)
            else:
                self._check_dimension(client, collection)
        except PersistenceError:
            raise
        except Exception as exc:
            raise PersistenceError(f"Unable to prepare Qdrant collection '{collection}': {exc}") from exc

    def upsert(self, collection: str, points: list[VectorPoint]) -> None:
        if not points:
            return
        client, models = self._client_and_models()
        try:
            with self._write_lock:
                client.upsert(
                    collection_name=collection,
                    wait=True,
                    points=[
                        models.PointStruct(id=point.point_id, vector=point.vector, payload=point.payload)
                        for point in points
                    ],
                )
        except Exception as exc:
            raise PersistenceError(f"Qdrant upsert into '{collection}' failed: {exc}") from exc

    def search(
        self,
        collection: str,
        *,
        query_vector: list[float],
        limit: int,
        filters: dict[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        client, models = self._client_and_models()
        query_filter = self._build_filter(models, filters)
        try:
            response = client.query_points(
                collection_name=collection,
                query=query_vector,
                query_filter=query_filter,
                with_payload=True,
                with_vectors=False,
                limit=max(1, limit),
            )
        except Exception as exc:
            raise PersistenceError(f"Qdrant search on '{collection}' failed: {exc}") from exc
        hits = list(getattr(response, "points", []) or [])
        out: list[dict[str, Any]] = []
        for hit in hits:
            out.append(
                {
                    "id": str(getattr(hit, "id", "")),
                    "score": float(getattr(hit, "score", 0.0)),
                    "payload": dict(getattr(hit, "payload", {}) or {}),
                }
            )
        out.sort(key=lambda row: row["score"], reverse=True)
        return out

    def delete_by_filter(self, collection: str, filters: dict[str, Any]) -> None:
        if not filters:
            raise ValueError("delete_by_filter requires at least one filter clause")
        client, models = self._client_and_models()
        try:
            with self._write_lock:
                client.delete(
                    collection_name=collection,
                    points_selector=models.FilterSelector(filter=self._build_filter(models, filters)),
                    wait=True,
                )
        except Exception as exc:
            raise PersistenceError(f"Qdrant delete on '{collection}' failed: {exc}") from exc

    def count_points(self, collection: str, filters: dict[str, Any] | None = None) -> int:
        client, models = self._client_and_models()
        try:
            result = client.count(
                collection_name=collection,
                count_filter=self._build_filter(models, filters),
                exact=True,
            )
        except Exception:
            logger.warning("Qdrant count failed for %s", collection, exc_info=True)
            return 0
        return int(getattr(result, "count", 0))

    @staticmethod
    def _build_filter(models, filters: dict[str, Any] | None):
        if not filters:
            return None
        clauses = [
            models.FieldCondition(key=key, match=models.MatchValue(value=value))
            for key, value in filters.items()
            if value is not None
        ]
        return models.Filter(must=clauses) if clauses else None

    def _check_dimension(self, client, collection: str) -> None:
        info = client.get_collection(collection_name=collection)
        params = getattr(getattr(info, "config", None), "params", None)
        vectors_conf = getattr(params, "vectors", None)
        configured_dim = getattr(vectors_conf, "size", None)
        if configured_dim is None:
            return
        if int(configured_dim) != int(self.vector_size):
            raise PersistenceError(
                f"Qdrant collection '{collection}' has vector size {configured_dim}, "
                f"but the embedder produces {self.vector_size}."
            )

    def _client_and_models(self):
        if self._client is not None and self._models is not None:
            return self._client, self._models

        from qdrant_client import QdrantClient
        from qdrant_client.http import models

        # Embedded storage takes a file lock, so concurrent indexers must share one client.
        with self._client_lock:
            if self._client is None:
                if self.server_url:
                    self._client = QdrantClient(
                        url=self.server_url,
                        api_key=self.api_key,
                        timeout=self.timeout_seconds,
                    )
                else:
                    self._client = self._open_local_client(QdrantClient, self.storage_path)
                self._models = models
        return self._client, self._models

    def _open_local_client(self, qdrant_client_cls: type, base_path: Path):
        target = base_path.expanduser().resolve()
        target.mkdir(parents=True, exist_ok=True)
        try:
            return qdrant_client_cls(path=str(target))
        except Exception as exc:
            if "already accessed by another instance of qdrant client" not in str(exc).lower():
                raise PersistenceError(f"Unable to open local Qdrant storage at {target}: {exc}") from exc
            isolated = (target.parent / "qdrant-isolated" / f"pid-{os.getpid()}").resolve()
            isolated.mkdir(parents=True, exist_ok=True)
            logger.warning(
                "Local Qdrant storage %s is locked by another process; using isolated storage %s.",
                target,
                isolated,
            )
            self.storage_path = isolated
            self.backend_name = "qdrant-local-isolated"
            return qdrant_client_cls(path=str(isolated))
