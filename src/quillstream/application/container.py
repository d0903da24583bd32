from __future__ import annotations

import threading

from quillstream.application.services.cost_service import CostAccountant
from quillstream.application.services.generation_pipeline import IdeaPostPipeline, TrendPostPipeline
from quillstream.application.services.import_service import ContextImportService
from quillstream.application.services.indexing_service import NewsletterIndexer
from quillstream.application.services.job_service import JobOrchestrator
from quillstream.application.services.post_ideas_service import PostIdeasService
from quillstream.application.services.retrieval_service import RetrievalService
from quillstream.core.config import AppPaths, Settings, load_settings
from quillstream.infrastructure.db.repos.content_repo import ContentRepo
from quillstream.infrastructure.db.repos.cost_repo import CostRepo
from quillstream.infrastructure.db.repos.job_repo import JobRepo
from quillstream.infrastructure.db.repos.newsletter_repo import NewsletterRepo
from quillstream.infrastructure.llm.litellm_client import LiteLLMClient, LiteLLMImageClient, validate_api_key
from quillstream.infrastructure.vector.chunking import TextChunker
from quillstream.infrastructure.vector.embeddings import build_embedder
from quillstream.infrastructure.vector.qdrant_store import QdrantVectorStore


class ServiceContainer:
    """Builds the application services for one project, each at most once."""

    def __init__(self, paths: AppPaths, settings: Settings | None = None) -> None:
        self.paths = paths
        self.settings = settings or load_settings()
        self._lock = threading.Lock()
        self._cache: dict[str, object] = {}

    def _once(self, name: str, factory):
        with self._lock:
            if name not in self._cache:
                self._cache[name] = factory()
            return self._cache[name]

    def job_repo(self) -> JobRepo:
        return JobRepo(self.paths.db_path)

    def content_repo(self) -> ContentRepo:
        return ContentRepo(self.paths.db_path)

    def newsletter_repo(self) -> NewsletterRepo:
        return NewsletterRepo(self.paths.db_path)

    def cost_repo(self) -> CostRepo:
        return CostRepo(self.paths.db_path)

    def importer(self) -> ContextImportService:
        return ContextImportService(newsletter_repo=self.newsletter_repo(), content_repo=self.content_repo())

    def cost_accountant(self) -> CostAccountant:
        return CostAccountant(cost_repo=self.cost_repo())

    def embedder(self):
        s = self.settings
        return self._once(
            "embedder",
            lambda: build_embedder(
                backend=s.embedding_backend,
                model_name=s.embedding_model,
                dimension=s.embedding_dim,
                batch_size=s.embedding_batch_size,
            ),
        )

    def vector_store(self) -> QdrantVectorStore:
        s = self.settings
        return self._once(
            "vector_store",
            lambda: QdrantVectorStore(
                vector_size=s.embedding_dim,
                storage_path=self.paths.qdrant_dir,
                url=s.qdrant_url,
                api_key=s.qdrant_api_key,
                timeout_seconds=s.qdrant_timeout_seconds,
            ),
        )

    def indexer(self) -> NewsletterIndexer:
        return NewsletterIndexer(
            newsletter_repo=self.newsletter_repo(),
            vector_store=self.vector_store(),
            embedder=self.embedder(),
            chunker=TextChunker(),
            cost_accountant=self.cost_accountant(),
            batch_size=self.settings.indexing_batch_size,
        )

    def retrieval(self) -> RetrievalService:
        return RetrievalService(vector_store=self.vector_store(), embedder=self.embedder())

    def llm(self) -> LiteLLMClient:
        return LiteLLMClient(model=self.settings.generation_model, timeout=self.settings.job_timeout_seconds or None)

    def image_client(self) -> LiteLLMImageClient:
        s = self.settings
        return LiteLLMImageClient(
            model=s.image_model,
            size=s.image_size,
            quality=s.image_quality,
            timeout=s.job_timeout_seconds or None,
        )

    def post_ideas(self) -> PostIdeasService:
        return PostIdeasService(
            content_repo=self.content_repo(),
            indexer=self.indexer(),
            retrieval=self.retrieval(),
            llm=self.llm(),
            cost_accountant=self.cost_accountant(),
        )

    def orchestrator(self) -> JobOrchestrator:
        return self._once("orchestrator", self._build_orchestrator)

    def shutdown(self) -> None:
        orchestrator = self._cache.get("orchestrator")
        if isinstance(orchestrator, JobOrchestrator):
            orchestrator.shutdown()

    def _build_orchestrator(self) -> JobOrchestrator:
        s = self.settings
        pipeline_kwargs = dict(
            content_repo=self.content_repo(),
            llm=self.llm(),
            image_client=self.image_client(),
            cost_accountant=self.cost_accountant(),
            min_words=s.min_word_count,
            max_attempts=s.max_generation_attempts,
        )
        return JobOrchestrator(
            job_repo=self.job_repo(),
            trend_pipeline=TrendPostPipeline(**pipeline_kwargs),
            idea_pipeline=IdeaPostPipeline(**pipeline_kwargs),
            timeout_seconds=s.job_timeout_seconds,
            max_workers=s.job_workers,
            preflight=lambda: validate_api_key(s.generation_model),
        )
