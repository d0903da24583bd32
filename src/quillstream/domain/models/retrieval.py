from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(slots=True)
class RetrievedChunk:
    point_id: str
    newsletter_id: str
    chunk_index: int
    text: str
    subject: str
    sender: str
    date: str
    relevance_score: float


@dataclass(slots=True)
class SourceGroup:
    newsletter_id: str
    subject: str
    sender: str
    date: str
    chunks: list[RetrievedChunk] = field(default_factory=list)
    avg_score: float = 0.0


@dataclass(slots=True)
class RetrievalResult:
    query: str
    chunks: list[RetrievedChunk] = field(default_factory=list)
    sources: list[SourceGroup] = field(default_factory=list)

    @property
    def total_chunks(self) -> int:
        return len(self.chunks)


@dataclass(slots=True)
class CitationBlock:
    source_id: str
    citation: str
    content: str
    relevance: float


@dataclass(slots=True)
class TrendingTopic:
    topic: str
    strength: float
    sources: list[str] = field(default_factory=list)
