from __future__ import annotations

from quillstream.application import prompts
from quillstream.domain.models.content import AITrend, CompetitorPost, PostIdea


def _idea(topic: str) -> PostIdea:
    return PostIdea(
        id="idea1",
        hook="Your AI pilot is not a product",
        post_style="contrarian",
        topic_and_angle=topic,
        why_this_works="",
        target_audience="CTOs",
        estimated_word_count="150",
    )


def test_idea_image_prompt_prefers_about_clause() -> None:
    assert '"shipping agents"' in prompts.idea_image_prompt(_idea("A post about shipping agents, for CTOs."))
    assert '"Your AI pilot is not a product"' in prompts.idea_image_prompt(_idea("Contrarian take on pilots"))


def test_trend_prompts_include_trend_details() -> None:
    trend = AITrend(
        id="trend_42",
        title="Agents in production",
        description="Pilots become workloads.",
        category="enterprise",
        key_points=["Evals matter"],
    )

    post_prompt = prompts.trend_post_prompt(trend, {})
    assert "Agents in production" in post_prompt
    assert "Evals matter" in post_prompt
    assert "Agents in production" in prompts.trend_image_prompt(trend)


def test_competitor_summary_prompt_lists_posts() -> None:
    posts = [CompetitorPost(id="c1", competitor_name="Rival", content="Hot take on agents", likes=5)]

    assert "Rival" in prompts.competitor_summary_prompt(posts)


def test_shortfall_amendment_names_both_counts() -> None:
    text = prompts.shortfall_amendment(80, 130)

    assert "80 words" in text
    assert "at least 130 words" in text
