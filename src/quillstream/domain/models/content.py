from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(slots=True)
class AITrend:
    id: str
    title: str
    description: str
    category: str
    relevance_score: int = 0
    key_points: list[str] = field(default_factory=list)
    sources: list[str] = field(default_factory=list)
    leadership_angle: str | None = None

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "AITrend":
        return cls(
            id=str(payload.get("id") or ""),
            title=str(payload.get("title") or ""),
            description=str(payload.get("description") or ""),
            category=str(payload.get("category") or ""),
            relevance_score=int(payload.get("relevanceScore") or 0),
            key_points=[str(p) for p in payload.get("keyPoints") or []],
            sources=[str(s) for s in payload.get("sources") or []],
            leadership_angle=payload.get("leadershipAngle"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "category": self.category,
            "relevanceScore": self.relevance_score,
            "keyPoints": list(self.key_points),
            "sources": list(self.sources),
            "leadershipAngle": self.leadership_angle,
        }


@dataclass(slots=True)
class AITrendSession:
    id: str
    owner_id: str
    trends: list[AITrend]
    generated_at: str


@dataclass(slots=True)
class CompetitorPost:
    id: str
    competitor_name: str
    content: str
    likes: int = 0
    comments: int = 0
    shares: int = 0
    impressions: int | None = None
    hashtags: list[str] = field(default_factory=list)
    post_type: str = "text"
    posted_at: str | None = None

    @property
    def engagement_rate(self) -> float:
        """Weighted engagement per impression; impressions default to likes x 10."""
        impressions = self.impressions or self.likes * 10
        if impressions <= 0:
            return 0.0
        return (self.likes + self.comments * 2 + self.shares * 3) / impressions


@dataclass(slots=True)
class AnalyticsPost:
    content: str
    impressions: int = 0
    likes: int = 0
    comments: int = 0
    shares: int = 0
    posted_at: str | None = None


@dataclass(slots=True)
class AnalyticsInsights:
    total_posts: int
    top_topics: list[str]
    best_word_count_range: str
    tone_style: str
    structure_patterns: list[str]
    top_hashtags: list[str]
    avg_impressions: int
    avg_engagement_rate: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalPosts": self.total_posts,
            "topTopics": list(self.top_topics),
            "bestWordCountRange": self.best_word_count_range,
            "toneStyle": self.tone_style,
            "structurePatterns": list(self.structure_patterns),
            "topHashtags": list(self.top_hashtags),
            "avgImpressions": self.avg_impressions,
            "avgEngagementRate": self.avg_engagement_rate,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "AnalyticsInsights":
        return cls(
            total_posts=int(payload.get("totalPosts") or 0),
            top_topics=[str(t) for t in payload.get("topTopics") or []],
            best_word_count_range=str(payload.get("bestWordCountRange") or ""),
            tone_style=str(payload.get("toneStyle") or ""),
            structure_patterns=[str(p) for p in payload.get("structurePatterns") or []],
            top_hashtags=[str(h) for h in payload.get("topHashtags") or []],
            avg_impressions=int(payload.get("avgImpressions") or 0),
            avg_engagement_rate=float(payload.get("avgEngagementRate") or 0.0),
        )


@dataclass(slots=True)
class TrendWithSource:
    trend: str
    source_subject: str
    source_from: str
    relevant_snippet: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "trend": self.trend,
            "sourceSubject": self.source_subject,
            "sourceFrom": self.source_from,
            "relevantSnippet": self.relevant_snippet,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "TrendWithSource":
        return cls(
            trend=str(payload.get("trend") or ""),
            source_subject=str(payload.get("sourceSubject") or ""),
            source_from=str(payload.get("sourceFrom") or ""),
            relevant_snippet=str(payload.get("relevantSnippet") or ""),
        )


@dataclass(slots=True)
class PostIdea:
    id: str
    hook: str
    post_style: str
    topic_and_angle: str
    why_this_works: str
    target_audience: str
    estimated_word_count: str
    primary_trend_index: int = 0
    related_trend_indices: list[int] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "hook": self.hook,
            "postStyle": self.post_style,
            "topicAndAngle": self.topic_and_angle,
            "whyThisWorks": self.why_this_works,
            "targetAudience": self.target_audience,
            "estimatedWordCount": self.estimated_word_count,
            "primaryTrendIndex": self.primary_trend_index,
            "relatedTrendIndices": list(self.related_trend_indices),
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "PostIdea":
        return cls(
            id=str(payload.get("id") or ""),
            hook=str(payload.get("hook") or ""),
            post_style=str(payload.get("postStyle") or ""),
            topic_and_angle=str(payload.get("topicAndAngle") or ""),
            why_this_works=str(payload.get("whyThisWorks") or ""),
            target_audience=str(payload.get("targetAudience") or ""),
            estimated_word_count=str(payload.get("estimatedWordCount") or ""),
            primary_trend_index=int(payload.get("primaryTrendIndex") or 0),
            related_trend_indices=[int(i) for i in payload.get("relatedTrendIndices") or []],
        )


@dataclass(slots=True)
class CompetitorInsights:
    insights: list[str] = field(default_factory=list)
    overused_topics: list[str] = field(default_factory=list)
    content_gaps: list[str] = field(default_factory=list)


@dataclass(slots=True)
class PostIdeasSession:
    id: str
    owner_id: str
    ideas: list[PostIdea]
    analytics_insights: AnalyticsInsights
    trends_with_sources: list[TrendWithSource]
    competitor_insights: CompetitorInsights
    costs: dict[str, float]
    total_cost: float
    rag_enabled: bool
    retrieved_chunks: int
    created_at: str

    def find_idea(self, idea_id: str) -> PostIdea | None:
        for idea in self.ideas:
            if idea.id == idea_id:
                return idea
        return None
