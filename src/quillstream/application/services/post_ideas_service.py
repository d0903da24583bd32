from __future__ import annotations

import logging
from typing import Callable

from quillstream.application import prompts
from quillstream.application.services.cost_service import OPERATION_POST_IDEAS, CostAccountant
from quillstream.application.services.generation_pipeline import top_competitor_posts
from quillstream.application.services.indexing_service import NewsletterIndexer
from quillstream.application.services.retrieval_service import RetrievalService
from quillstream.core.errors import NotFoundError, ValidationError
from quillstream.core.ids import new_uuid
from quillstream.core.time import now_utc_iso
from quillstream.domain.models.content import (
    AnalyticsInsights,
    AnalyticsPost,
    CompetitorInsights,
    PostIdea,
    PostIdeasSession,
    TrendWithSource,
)
from quillstream.domain.models.cost import CostInfo
from quillstream.infrastructure.db.repos.content_repo import ContentRepo
from quillstream.infrastructure.llm.litellm_client import Completion, LiteLLMClient

logger = logging.getLogger(__name__)

TREND_QUERY = "AI trends, machine learning, artificial intelligence, LLM, GPT, automation, business innovation"
TREND_CHUNK_LIMIT = 15
TREND_MIN_SCORE = 0.3
IDEA_COUNT = 5


class PostIdeasService:
    """Builds a post-ideas session from analytics, newsletter retrieval and competitor posts."""

    def __init__(
        self,
        *,
        content_repo: ContentRepo,
        indexer: NewsletterIndexer,
        retrieval: RetrievalService,
        llm: LiteLLMClient,
        cost_accountant: CostAccountant,
    ) -> None:
        self.content_repo = content_repo
        self.indexer = indexer
        self.retrieval = retrieval
        self.llm = llm
        self.cost_accountant = cost_accountant

    def generate(
        self,
        owner_id: str,
        *,
        progress_callback: Callable[[dict[str, object]], None] | None = None,
    ) -> PostIdeasSession:
        def emit(stage: str, progress: int, detail: str) -> None:
            logger.info("Post ideas [%s %d%%] %s", stage, progress, detail)
            if progress_callback is not None:
                progress_callback({"stage": stage, "progress": progress, "detail": detail})

        stats = self.indexer.stats(owner_id)
        if not stats.ready:
            raise ValidationError("No newsletters are indexed yet. Run 'quill rag index' first.")

        emit("load", 5, "Loading LinkedIn analytics and competitor posts.")
        analytics_posts = self.content_repo.list_analytics_posts(owner_id)
        if not analytics_posts:
            raise ValidationError("No LinkedIn analytics found. Import your post analytics first.")
        competitor_posts = top_competitor_posts(self.content_repo.list_competitor_posts(), limit=20)
        if not competitor_posts:
            raise ValidationError("No competitor posts found. Add competitor posts first.")

        emit("retrieve", 15, "Retrieving relevant newsletter content.")
        retrieved = self.retrieval.retrieve(
            TREND_QUERY,
            owner_id,
            limit=TREND_CHUNK_LIMIT,
            min_score=TREND_MIN_SCORE,
        )
        if not retrieved.chunks:
            raise ValidationError("No relevant newsletter content found for AI trends.")

        costs: dict[str, float] = {}

        emit("analytics", 30, f"Analyzing {len(analytics_posts)} LinkedIn posts.")
        analytics_completion = self._ask(prompts.analytics_analysis_prompt(analytics_posts), temperature=0.3)
        costs["analyticsAnalysis"] = self._cost(analytics_completion).total_cost
        insights = build_analytics_insights(analytics_posts, analytics_completion.parse_json())

        emit("trends", 50, f"Extracting trends from {retrieved.total_chunks} newsletter excerpts.")
        trends_completion = self._ask(prompts.newsletter_trends_prompt(retrieved.chunks), temperature=0.5)
        costs["newsletterAnalysis"] = self._cost(trends_completion).total_cost
        trends = [
            TrendWithSource.from_dict(item)
            for item in trends_completion.parse_json().get("trends") or []
            if isinstance(item, dict)
        ]

        emit("competitors", 65, f"Analyzing {len(competitor_posts)} competitor posts.")
        competitor_completion = self._ask(prompts.competitor_insights_prompt(competitor_posts), temperature=0.3)
        costs["competitorAnalysis"] = self._cost(competitor_completion).total_cost
        competitor_payload = competitor_completion.parse_json()
        competitor = CompetitorInsights(
            insights=[str(i) for i in competitor_payload.get("insights") or []],
            overused_topics=[str(i) for i in competitor_payload.get("overusedTopics") or []],
            content_gaps=[str(i) for i in competitor_payload.get("contentGaps") or []],
        )

        emit("ideas", 80, f"Generating {IDEA_COUNT} post ideas.")
        ideas_completion = self._ask(
            prompts.post_ideas_prompt(insights, trends, competitor),
            temperature=0.7,
            max_tokens=3000,
        )
        ideas_cost = self._cost(ideas_completion)
        costs["ideaGeneration"] = ideas_cost.total_cost
        ideas = [
            _with_id(PostIdea.from_dict(item), index)
            for index, item in enumerate(ideas_completion.parse_json().get("ideas") or [], start=1)
            if isinstance(item, dict)
        ]
        if not ideas:
            raise ValidationError("The model returned no post ideas.")

        session = PostIdeasSession(
            id=new_uuid(),
            owner_id=owner_id,
            ideas=ideas,
            analytics_insights=insights,
            trends_with_sources=trends,
            competitor_insights=competitor,
            costs=costs,
            total_cost=sum(costs.values()),
            rag_enabled=True,
            retrieved_chunks=retrieved.total_chunks,
            created_at=now_utc_iso(),
        )
        self.content_repo.insert_idea_session(session)
        self.cost_accountant.log(
            owner_id,
            OPERATION_POST_IDEAS,
            ideas_cost,
            {"sessionId": session.id, "ideaCount": len(ideas), "retrievedChunks": retrieved.total_chunks},
        )
        emit("done", 100, f"Saved session {session.id} with {len(ideas)} ideas.")
        return session

    def get_session(self, owner_id: str, session_id: str) -> PostIdeasSession:
        session = self.content_repo.get_idea_session(owner_id, session_id)
        if session is None:
            raise NotFoundError(f"Post ideas session not found: {session_id}")
        return session

    def _ask(self, prompt: str, *, temperature: float, max_tokens: int | None = None) -> Completion:
        return self.llm.complete(
            [{"role": "user", "content": prompt}],
            temperature=temperature,
            max_tokens=max_tokens,
            json_mode=True,
        )

    def _cost(self, completion: Completion) -> CostInfo:
        return self.cost_accountant.calculate(completion.usage, completion.model)


def build_analytics_insights(posts: list[AnalyticsPost], payload: dict) -> AnalyticsInsights:
    total_impressions = sum(p.impressions for p in posts)
    total_engagement = sum(p.likes + p.comments + p.shares for p in posts)
    return AnalyticsInsights(
        total_posts=len(posts),
        top_topics=[str(t) for t in payload.get("topTopics") or []],
        best_word_count_range=str(payload.get("bestWordCountRange") or ""),
        tone_style=str(payload.get("toneStyle") or ""),
        structure_patterns=[str(p) for p in payload.get("structurePatterns") or []],
        top_hashtags=[str(h) for h in payload.get("topHashtags") or []],
        avg_impressions=round(total_impressions / len(posts)) if posts else 0,
        avg_engagement_rate=(round(total_engagement / total_impressions * 100, 2) if total_impressions else 0.0),
    )


def _with_id(idea: PostIdea, index: int) -> PostIdea:
    idea.id = f"idea{index}"
    return idea
