from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Callable

from quillstream.application.services.cost_service import OPERATION_NEWSLETTER_INDEXING, CostAccountant
from quillstream.core.errors import NotFoundError
from quillstream.core.ids import new_uuid
from quillstream.core.time import now_utc_iso, parse_iso_datetime
from quillstream.domain.models.cost import CostInfo
from quillstream.domain.models.newsletter import (
    SOURCE_TYPE_NEWSLETTER,
    BatchIndexingResult,
    IndexingResult,
    IndexingStats,
    Newsletter,
    NewsletterEmbedding,
)
from quillstream.infrastructure.db.repos.newsletter_repo import NewsletterRepo
from quillstream.infrastructure.vector.chunking import TextChunker, prepare_newsletter_text
from quillstream.infrastructure.vector.embeddings import LiteLLMEmbedder, estimate_tokens
from quillstream.infrastructure.vector.qdrant_store import NEWSLETTERS_COLLECTION, QdrantVectorStore, VectorPoint

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 10


class NewsletterIndexer:
    def __init__(
        self,
        *,
        newsletter_repo: NewsletterRepo,
        vector_store: QdrantVectorStore,
        embedder: LiteLLMEmbedder,
        chunker: TextChunker,
        cost_accountant: CostAccountant | None = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        collection: str = NEWSLETTERS_COLLECTION,
    ) -> None:
        self.newsletter_repo = newsletter_repo
        self.vector_store = vector_store
        self.embedder = embedder
        self.chunker = chunker
        self.cost_accountant = cost_accountant
        self.batch_size = max(1, batch_size)
        self.collection = collection

    def index_newsletter(self, newsletter: Newsletter) -> IndexingResult:
        """Chunk, embed and upsert one newsletter. Failures are returned, not raised."""
        try:
            return self._index(newsletter)
        except Exception as exc:
            logger.exception("Error indexing newsletter %s", newsletter.id)
            return IndexingResult(
                newsletter_id=newsletter.id,
                chunks_created=0,
                estimated_cost=0.0,
                success=False,
                error=str(exc) or exc.__class__.__name__,
            )

    def index_batch(
        self,
        newsletters: list[Newsletter],
        *,
        progress_callback: Callable[[dict[str, object]], None] | None = None,
    ) -> BatchIndexingResult:
        summary = BatchIndexingResult()
        total = len(newsletters)
        if newsletters:
            self.vector_store.ensure_collection(self.collection)
        with ThreadPoolExecutor(max_workers=self.batch_size, thread_name_prefix="newsletter-indexer") as pool:
            for start in range(0, total, self.batch_size):
                batch = newsletters[start : start + self.batch_size]
                for result in pool.map(self.index_newsletter, batch):
                    summary.results.append(result)
                    summary.total_chunks += result.chunks_created
                    summary.total_cost += result.estimated_cost
                    if result.success:
                        summary.success_count += 1
                    else:
                        summary.failure_count += 1
                if progress_callback is not None:
                    done = min(start + len(batch), total)
                    progress_callback(
                        {
                            "stage": "index",
                            "progress": int(done / total * 100) if total else 100,
                            "detail": f"Indexed {done}/{total} newsletters.",
                        }
                    )
        self._log_cost(newsletters, summary)
        return summary

    def index_all_for_owner(
        self,
        owner_id: str,
        *,
        only_unindexed: bool = True,
        progress_callback: Callable[[dict[str, object]], None] | None = None,
    ) -> BatchIndexingResult:
        newsletters = (
            self.newsletter_repo.list_unindexed(owner_id, limit=100_000)
            if only_unindexed
            else self.newsletter_repo.list_for_owner(owner_id)
        )
        logger.info("Indexing %d newsletters for %s", len(newsletters), owner_id)
        return self.index_batch(newsletters, progress_callback=progress_callback)

    def index_by_id(self, newsletter_id: str) -> IndexingResult:
        newsletter = self.newsletter_repo.get_by_id(newsletter_id)
        if newsletter is None:
            raise NotFoundError(f"Newsletter not found: {newsletter_id}")
        result = self.index_newsletter(newsletter)
        self._log_cost([newsletter], BatchIndexingResult(results=[result], total_cost=result.estimated_cost))
        return result

    def remove_newsletter(self, newsletter_id: str) -> int:
        """Delete a newsletter's points and tracking records and reset its indexed flag."""
        self.vector_store.ensure_collection(self.collection)
        self.vector_store.delete_by_filter(self.collection, {"parentId": newsletter_id})
        removed = self.newsletter_repo.clear_index(newsletter_id)
        logger.info("Removed %d chunks for newsletter %s from index", removed, newsletter_id)
        return removed

    def list_unindexed(self, owner_id: str, *, limit: int = 100) -> list[Newsletter]:
        return self.newsletter_repo.list_unindexed(owner_id, limit=limit)

    def list_all(self, owner_id: str) -> list[Newsletter]:
        return self.newsletter_repo.list_for_owner(owner_id)

    def stats(self, owner_id: str) -> IndexingStats:
        total, indexed, chunks = self.newsletter_repo.stats(owner_id)
        return IndexingStats(total_newsletters=total, indexed_newsletters=indexed, total_chunks=chunks)

    def _index(self, newsletter: Newsletter) -> IndexingResult:
        self.vector_store.ensure_collection(self.collection)
        if newsletter.indexed:
            self.remove_newsletter(newsletter.id)

        indexed_at = now_utc_iso()
        sender = _format_sender(newsletter)
        # The subject/sender header alone is not worth embedding.
        if not newsletter.body.strip():
            chunks: list[str] = []
        else:
            composite = prepare_newsletter_text(subject=newsletter.subject, sender=sender, body=newsletter.body)
            chunks = list(self.chunker.chunks(composite))
        if not chunks:
            self.newsletter_repo.mark_indexed(newsletter.id, chunk_count=0, indexed_at=indexed_at, embeddings=[])
            return IndexingResult(newsletter_id=newsletter.id, chunks_created=0, estimated_cost=0.0, success=True)

        vectors = self.embedder.embed_texts(chunks)
        estimated_cost = self.embedder.estimate_cost(chunks)
        date = _payload_date(newsletter.received_at)

        points = [
            VectorPoint(
                point_id=new_uuid(),
                vector=vector,
                payload={
                    "parentId": newsletter.id,
                    "chunkIndex": index,
                    "text": chunk,
                    "subject": newsletter.subject,
                    "from": sender,
                    "date": date,
                    "ownerId": newsletter.owner_id,
                    "sourceType": SOURCE_TYPE_NEWSLETTER,
                },
            )
            for index, (chunk, vector) in enumerate(zip(chunks, vectors, strict=True))
        ]
        self.vector_store.upsert(self.collection, points)
        self.newsletter_repo.mark_indexed(
            newsletter.id,
            chunk_count=len(points),
            indexed_at=indexed_at,
            embeddings=[
                NewsletterEmbedding(
                    id=new_uuid(),
                    newsletter_id=newsletter.id,
                    point_id=point.point_id,
                    chunk_index=int(point.payload["chunkIndex"]),
                    owner_id=newsletter.owner_id,
                    created_at=indexed_at,
                )
                for point in points
            ],
        )
        return IndexingResult(
            newsletter_id=newsletter.id,
            chunks_created=len(points),
            estimated_cost=estimated_cost,
            success=True,
            estimated_tokens=estimate_tokens(chunks),
        )

    def _log_cost(self, newsletters: list[Newsletter], summary: BatchIndexingResult) -> None:
        if self.cost_accountant is None or summary.total_cost <= 0 or not newsletters:
            return
        tokens = sum(result.estimated_tokens for result in summary.results)
        self.cost_accountant.log(
            newsletters[0].owner_id,
            OPERATION_NEWSLETTER_INDEXING,
            CostInfo(
                input_tokens=tokens,
                output_tokens=0,
                total_tokens=tokens,
                input_cost=summary.total_cost,
                output_cost=0.0,
                total_cost=summary.total_cost,
                model=self.embedder.model_name,
            ),
            {"newsletters": len(newsletters), "chunks": summary.total_chunks},
        )


def _format_sender(newsletter: Newsletter) -> str:
    if newsletter.sender_name and newsletter.sender_email:
        return f"{newsletter.sender_name} <{newsletter.sender_email}>"
    return newsletter.sender_name or newsletter.sender_email or "Unknown"


def _payload_date(received_at: str | None) -> str:
    parsed = parse_iso_datetime(received_at)
    if parsed is None:
        return now_utc_iso()
    return parsed.replace(microsecond=0).isoformat()
