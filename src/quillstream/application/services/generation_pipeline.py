from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Protocol

from quillstream.application import prompts
from quillstream.application.services.cost_service import (
    OPERATION_POST_FROM_IDEA,
    OPERATION_POST_GENERATION,
    CostAccountant,
)
from quillstream.core.errors import GenerationTimeoutError, NotFoundError, ProviderError
from quillstream.domain.models.content import CompetitorPost
from quillstream.domain.models.cost import CostInfo
from quillstream.domain.models.job import (
    STAGE_ANALYZING_COMPETITORS,
    STAGE_FETCHING_DATA,
    STAGE_GENERATING_IMAGE,
    STAGE_GENERATING_POST,
    GenerationJob,
    JobCosts,
    JobResult,
    ProgressPatch,
    SourceCitation,
)
from quillstream.infrastructure.db.repos.content_repo import ContentRepo
from quillstream.infrastructure.db.repos.job_repo import JobRepo
from quillstream.infrastructure.llm.litellm_client import LiteLLMClient, LiteLLMImageClient

logger = logging.getLogger(__name__)

DEFAULT_MIN_WORDS = 130
DEFAULT_MAX_ATTEMPTS = 2
TOP_COMPETITOR_POSTS = 10
SUCCESS_MESSAGE = "LinkedIn post generated successfully!"
IMAGE_FAILED_MESSAGE = "Image generation failed, continuing with text post"

SETTING_POST_PROMPT = "full_post_generation"
SETTING_IMAGE_PROMPT = "image_style_prompt"


def count_words(text: str) -> int:
    return len(text.split())


class JobDeadline:
    """Wall-clock ceiling for one job, measured on the monotonic clock."""

    def __init__(self, timeout_seconds: float | None, *, clock: Callable[[], float] = time.monotonic) -> None:
        self.timeout_seconds = timeout_seconds
        self._clock = clock
        self._expires_at = clock() + timeout_seconds if timeout_seconds else None

    def check(self) -> None:
        if self._expires_at is not None and self._clock() >= self._expires_at:
            raise GenerationTimeoutError(f"Generation exceeded the {self.timeout_seconds:.0f}s time limit.")


class StageReporter:
    """Writes stage progress for one job, enforcing its deadline at every update."""

    def __init__(self, *, job_repo: JobRepo, job_id: str, deadline: JobDeadline) -> None:
        self.job_repo = job_repo
        self.job_id = job_id
        self.deadline = deadline

    def update(
        self,
        stage: str,
        percentage: int,
        message: str,
        *,
        context_title: str | None = None,
    ) -> None:
        self.deadline.check()
        patch = ProgressPatch(stage=stage, percentage=percentage, message=message, context_title=context_title)
        self.job_repo.apply_progress(self.job_id, patch)
        logger.info("Job %s [%s %d%%] %s", self.job_id, stage, percentage, message)

    def checkpoint(self) -> None:
        self.deadline.check()


@dataclass(slots=True)
class PipelineOutcome:
    result: JobResult
    costs: JobCosts
    message: str = SUCCESS_MESSAGE


@dataclass(slots=True)
class DraftPost:
    content: str
    hashtags: list[str]
    word_count: int
    attempts: int
    costs: list[CostInfo] = field(default_factory=list)


class PostPipeline(Protocol):
    def run(self, job: GenerationJob, reporter: StageReporter) -> PipelineOutcome: ...


class QualityGatedWriter:
    """Asks the model for a post until it reaches the minimum word count.

    Each retry repeats the original prompt with a note about the previous
    shortfall. The last attempt is accepted whatever its length, and the cost
    of every attempt is kept.
    """

    def __init__(
        self,
        *,
        llm: LiteLLMClient,
        cost_accountant: CostAccountant,
        min_words: int = DEFAULT_MIN_WORDS,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ) -> None:
        self.llm = llm
        self.cost_accountant = cost_accountant
        self.min_words = min_words
        self.max_attempts = max(1, max_attempts)

    def write(
        self,
        *,
        system: str,
        prompt: str,
        temperature: float,
        max_tokens: int = 2000,
        checkpoint: Callable[[], None] | None = None,
    ) -> DraftPost:
        draft: DraftPost | None = None
        costs: list[CostInfo] = []
        user_prompt = prompt
        for attempt in range(1, self.max_attempts + 1):
            if checkpoint is not None:
                checkpoint()
            completion = self.llm.complete(
                [{"role": "system", "content": system}, {"role": "user", "content": user_prompt}],
                temperature=temperature,
                max_tokens=max_tokens,
                json_mode=True,
            )
            costs.append(self.cost_accountant.calculate(completion.usage, completion.model))
            payload = completion.parse_json()
            content = str(payload.get("content") or "").strip()
            hashtags = [str(tag).strip() for tag in payload.get("hashtags") or [] if str(tag).strip()]
            draft = DraftPost(
                content=content,
                hashtags=hashtags,
                word_count=count_words(content),
                attempts=attempt,
                costs=costs,
            )
            if draft.word_count >= self.min_words:
                break
            logger.warning(
                "Attempt %d/%d produced %d words (minimum %d)",
                attempt,
                self.max_attempts,
                draft.word_count,
                self.min_words,
            )
            user_prompt = prompt + prompts.shortfall_amendment(draft.word_count, self.min_words)

        if draft is None or not draft.content:
            raise ProviderError("Model returned no post content.")
        return draft


class _PipelineBase:
    def __init__(
        self,
        *,
        content_repo: ContentRepo,
        llm: LiteLLMClient,
        image_client: LiteLLMImageClient,
        cost_accountant: CostAccountant,
        min_words: int = DEFAULT_MIN_WORDS,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ) -> None:
        self.content_repo = content_repo
        self.llm = llm
        self.image_client = image_client
        self.cost_accountant = cost_accountant
        self.writer = QualityGatedWriter(
            llm=llm,
            cost_accountant=cost_accountant,
            min_words=min_words,
            max_attempts=max_attempts,
        )

    def _generate_image(
        self,
        prompt: str,
        reporter: StageReporter,
        *,
        start: int,
        start_message: str,
        done_message: str,
    ) -> tuple[str | None, float]:
        """Run the image stage. Provider failures leave the post without an image."""
        reporter.update(STAGE_GENERATING_IMAGE, start, start_message)
        try:
            image = self.image_client.generate(prompt)
        except ProviderError as exc:
            logger.warning("Image generation failed for job %s: %s", reporter.job_id, exc)
            reporter.update(STAGE_GENERATING_IMAGE, 95, IMAGE_FAILED_MESSAGE)
            return None, 0.0
        reporter.update(STAGE_GENERATING_IMAGE, 95, done_message)
        return image.url, self.cost_accountant.image_cost(image.model, image.quality)

    def _log_costs(
        self,
        job: GenerationJob,
        operation: str,
        infos: list[CostInfo],
        *,
        word_count: int,
        image_url: str | None,
        metadata: dict[str, object],
    ) -> None:
        combined = self.cost_accountant.combine(infos)
        if combined is not None:
            self.cost_accountant.log(job.owner_id, operation, combined, {**metadata, "wordCount": word_count})
        if image_url:
            self.cost_accountant.log_image(
                job.owner_id,
                model=self.image_client.model,
                quality=self.image_client.quality,
                metadata={**metadata, "imageSize": self.image_client.size},
            )


class TrendPostPipeline(_PipelineBase):
    def run(self, job: GenerationJob, reporter: StageReporter) -> PipelineOutcome:
        reporter.update(STAGE_FETCHING_DATA, 5, "Loading AI trend details...")
        trend = self.content_repo.find_trend(job.owner_id, job.context_id)
        if trend is None:
            raise NotFoundError(f"AI trend not found: {job.context_id}")
        reporter.update(STAGE_FETCHING_DATA, 10, f"Found trend: {trend.title}", context_title=trend.title)

        competitor_posts = top_competitor_posts(self.content_repo.list_competitor_posts())
        reporter.update(STAGE_FETCHING_DATA, 20, f"Loaded {len(competitor_posts)} top competitor posts")

        generation_costs: list[CostInfo] = []
        summary: dict = {}
        if competitor_posts:
            reporter.update(STAGE_ANALYZING_COMPETITORS, 25, "Analyzing competitor engagement patterns...")
            completion = self.llm.complete(
                [
                    {"role": "system", "content": prompts.COMPETITOR_SUMMARY_SYSTEM},
                    {"role": "user", "content": prompts.competitor_summary_prompt(competitor_posts)},
                ],
                temperature=0.3,
                json_mode=True,
            )
            generation_costs.append(self.cost_accountant.calculate(completion.usage, completion.model))
            summary = completion.parse_json()
            reporter.update(STAGE_ANALYZING_COMPETITORS, 40, "Competitor analysis complete")
        else:
            reporter.update(STAGE_ANALYZING_COMPETITORS, 40, "No competitor posts found, skipping analysis")

        reporter.update(STAGE_GENERATING_POST, 45, "Generating LinkedIn post...")
        draft = self.writer.write(
            system=prompts.TREND_POST_SYSTEM,
            prompt=prompts.trend_post_prompt(trend, summary),
            temperature=0.7,
            checkpoint=reporter.checkpoint,
        )
        generation_costs.extend(draft.costs)
        reporter.update(STAGE_GENERATING_POST, 70, f"Post written ({draft.word_count} words)")

        image_prompt = prompts.trend_image_prompt(trend)
        image_url, asset_cost = self._generate_image(
            image_prompt,
            reporter,
            start=75,
            start_message="Creating image...",
            done_message="Image created",
        )

        self._log_costs(
            job,
            OPERATION_POST_GENERATION,
            generation_costs,
            word_count=draft.word_count,
            image_url=image_url,
            metadata={"jobId": job.id, "trendId": trend.id, "attempts": draft.attempts},
        )
        return PipelineOutcome(
            result=JobResult(
                text=draft.content,
                word_count=draft.word_count,
                hashtags=draft.hashtags,
                asset_url=image_url,
                asset_prompt=image_prompt if image_url else None,
            ),
            costs=JobCosts(generation=sum(c.total_cost for c in generation_costs), asset=asset_cost),
        )


class IdeaPostPipeline(_PipelineBase):
    def run(self, job: GenerationJob, reporter: StageReporter) -> PipelineOutcome:
        reporter.update(STAGE_FETCHING_DATA, 10, "Loading post idea and full context...")
        session = self.content_repo.get_idea_session(job.owner_id, job.context_id)
        if session is None:
            raise NotFoundError(f"Post ideas session not found: {job.context_id}")
        idea = session.find_idea(job.idea_id or "")
        if idea is None:
            raise NotFoundError(f"Idea {job.idea_id} not found in session {session.id}")
        reporter.update(STAGE_FETCHING_DATA, 20, f"Idea loaded: {idea.hook[:60]}", context_title=idea.hook)

        reporter.update(STAGE_GENERATING_POST, 25, "Writing full post with sources...")
        draft = self.writer.write(
            system=prompts.IDEA_POST_SYSTEM,
            prompt=prompts.idea_post_prompt(
                idea,
                session.analytics_insights,
                session.trends_with_sources,
                session.competitor_insights,
                instructions=self.content_repo.get_setting(SETTING_POST_PROMPT),
            ),
            temperature=0.5,
            checkpoint=reporter.checkpoint,
        )
        reporter.update(STAGE_GENERATING_POST, 60, f"Post written ({draft.word_count} words)")

        image_prompt = self.content_repo.get_setting(SETTING_IMAGE_PROMPT) or prompts.idea_image_prompt(idea)
        image_url, asset_cost = self._generate_image(
            image_prompt,
            reporter,
            start=65,
            start_message="Creating meme image...",
            done_message="Meme image created",
        )

        citations = None
        if session.rag_enabled:
            citations = []
            for index in [idea.primary_trend_index, *idea.related_trend_indices]:
                if 0 <= index < len(session.trends_with_sources):
                    trend = session.trends_with_sources[index]
                    citations.append(
                        SourceCitation(trend=trend.trend, source=f'{trend.source_from} - "{trend.source_subject}"')
                    )

        self._log_costs(
            job,
            OPERATION_POST_FROM_IDEA,
            draft.costs,
            word_count=draft.word_count,
            image_url=image_url,
            metadata={"jobId": job.id, "sessionId": session.id, "ideaId": idea.id, "attempts": draft.attempts},
        )
        return PipelineOutcome(
            result=JobResult(
                text=draft.content,
                word_count=draft.word_count,
                hashtags=draft.hashtags,
                asset_url=image_url,
                asset_prompt=image_prompt if image_url else None,
                citations=citations,
            ),
            costs=JobCosts(generation=sum(c.total_cost for c in draft.costs), asset=asset_cost),
        )


def top_competitor_posts(posts: list[CompetitorPost], *, limit: int = TOP_COMPETITOR_POSTS) -> list[CompetitorPost]:
    return sorted(posts, key=lambda p: p.engagement_rate, reverse=True)[:limit]
