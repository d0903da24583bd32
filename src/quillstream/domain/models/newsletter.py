from __future__ import annotations

from dataclasses import dataclass, field

SOURCE_TYPE_NEWSLETTER = "newsletter"


@dataclass(slots=True)
class Newsletter:
    id: str
    owner_id: str
    subject: str
    sender_name: str
    sender_email: str
    received_at: str | None
    body: str
    created_at: str
    indexed: bool = False
    indexed_at: str | None = None
    chunk_count: int | None = None


@dataclass(slots=True)
class NewsletterEmbedding:
    id: str
    newsletter_id: str
    point_id: str
    chunk_index: int
    owner_id: str
    created_at: str


@dataclass(slots=True)
class IndexingResult:
    newsletter_id: str
    chunks_created: int
    estimated_cost: float
    success: bool
    error: str | None = None
    estimated_tokens: int = 0


@dataclass(slots=True)
class BatchIndexingResult:
    results: list[IndexingResult] = field(default_factory=list)
    total_chunks: int = 0
    total_cost: float = 0.0
    success_count: int = 0
    failure_count: int = 0


@dataclass(slots=True)
class IndexingStats:
    total_newsletters: int
    indexed_newsletters: int
    total_chunks: int

    @property
    def percent_indexed(self) -> float:
        if self.total_newsletters <= 0:
            return 0.0
        return round(self.indexed_newsletters / self.total_newsletters * 100, 1)

    @property
    def ready(self) -> bool:
        return self.indexed_newsletters > 0
