from __future__ import annotations

import re

from quillstream.domain.models.content import (
    AITrend,
    AnalyticsInsights,
    AnalyticsPost,
    CompetitorInsights,
    CompetitorPost,
    PostIdea,
    TrendWithSource,
)
from quillstream.domain.models.retrieval import RetrievedChunk

STRATEGIST_PREAMBLE = """ROLE
You are a LinkedIn content strategist and AI trends analyst working for a single author
who wants to be seen as a credible AI thought leader.

You learn the author's style from their LinkedIn analytics, pull current context from
AI newsletters, and study competitor posts to find angles nobody else is covering.
You only work with the data provided in this conversation."""

TREND_POST_SYSTEM = (
    "You are an expert LinkedIn content creator specializing in thought leadership posts "
    "for CEOs and business leaders. You write detailed, substantive posts that are ALWAYS "
    "180-220 words long."
)
IDEA_POST_SYSTEM = (
    "You are an expert LinkedIn content creator specializing in thought leadership posts. "
    "You write detailed, substantive posts that leverage specific sources and insights. "
    "Your posts are ALWAYS 140-220 words long."
)
COMPETITOR_SUMMARY_SYSTEM = "You are a LinkedIn engagement analyst."
IDEA_POST_INSTRUCTIONS = (
    "Requirements: open with the idea's hook, one main idea, reference the sources naturally, "
    "first person, 140-220 words, 3-5 hashtags at the end."
)

JSON_POST_SHAPE = """Return a JSON object with this exact structure:
{
  "content": "The full LinkedIn post text with line breaks",
  "hashtags": ["hashtag1", "hashtag2", "hashtag3"]
}

Return ONLY the JSON object, no markdown formatting or code blocks."""

_CATEGORY_STYLES = {
    "models": "neural network, AI architecture visualization",
    "techniques": "abstract workflow, process diagram",
    "applications": "real-world use case, business integration",
    "tools": "modern tech interface, clean dashboard",
    "research": "scientific discovery, innovation concept",
    "industry": "market landscape, business transformation",
}

_ABOUT_CLAUSE = re.compile(r"about (.+?)[.,]", re.IGNORECASE)


def _clip(text: str, limit: int) -> str:
    return text if len(text) <= limit else f"{text[:limit]}..."


def _joined(items: list[str], sep: str = ", ", default: str = "N/A") -> str:
    return sep.join(items) if items else default


def shortfall_amendment(word_count: int, min_words: int) -> str:
    return (
        f"\n\nIMPORTANT: Your previous attempt was only {word_count} words. "
        f"You MUST write at least {min_words} words. Add more depth, examples, insights, "
        "and strategic implications. Be thorough and substantive."
    )


def competitor_summary_prompt(posts: list[CompetitorPost]) -> str:
    rendered = "\n".join(
        f"Post {idx}:\n"
        f"- Content: {_clip(post.content, 300)}\n"
        f"- Engagement: {post.likes} likes, {post.comments} comments, {post.shares} shares\n"
        f"- Hashtags: {', '.join(post.hashtags)}\n"
        f"- Type: {post.post_type}\n"
        for idx, post in enumerate(posts, start=1)
    )
    return f"""Analyze these top-performing LinkedIn posts from competitors and extract key insights:

{rendered}
Provide a concise analysis (max 200 words) covering:
1. Common themes and topics that resonate
2. Engagement patterns (what drives likes and comments)
3. Tone and style preferences
4. Hashtag strategies

Return a JSON object with this structure:
{{
  "commonThemes": ["theme1", "theme2"],
  "engagementPatterns": ["pattern1", "pattern2"],
  "toneAndStyle": "description of tone",
  "hashtagStrategy": ["#hashtag1", "#hashtag2"]
}}"""


def trend_post_prompt(trend: AITrend, competitor_summary: dict) -> str:
    tone = competitor_summary.get("toneAndStyle") or "Professional and engaging"
    patterns = _joined(list(competitor_summary.get("engagementPatterns") or []))
    hashtags = _joined(list(competitor_summary.get("hashtagStrategy") or []), default="#AI #Leadership #Innovation")
    return f"""Create a professional LinkedIn post for a CEO/leadership audience that combines AI trend insights with proven competitor engagement strategies.

AI TREND CONTEXT:
- Title: {trend.title}
- Description: {trend.description}
- Category: {trend.category}
- Leadership Angle: {trend.leadership_angle or 'Strategic implications for business leaders'}
- Key Points: {_joined(trend.key_points, sep='; ')}

COMPETITOR INSIGHTS:
- Common Themes: {_joined(list(competitor_summary.get('commonThemes') or []))}
- Engagement Patterns: {patterns}
- Tone: {tone}
- Hashtag Strategy: {hashtags}

REQUIREMENTS:
1. Word count: the post MUST be 180-220 words.
   - Hook: 25-35 words
   - Context and explanation of the trend with specific examples: 70-90 words
   - Leadership insight and business impact: 50-70 words
   - Call to action or thought-provoking question: 25-35 words
2. Tone: professional yet engaging, matching: {tone}. No buzzwords or hype.
3. Structure: line breaks for readability; borrow from these patterns: {patterns}
4. Hashtags: 3-5 relevant hashtags at the end, similar to: {hashtags}

{JSON_POST_SHAPE}"""


def trend_image_prompt(trend: AITrend) -> str:
    style_hint = _CATEGORY_STYLES.get(trend.category, "tech innovation concept")
    short_phrase = " ".join(trend.title.split(" ")[:6])
    return f"""Create a professional, minimalist LinkedIn meme-style image about: "{trend.title}".

Visual Style:
- Clean, modern, professional business/tech aesthetic
- Gradient background (subtle purple/blue tones preferred)
- {style_hint}
- No human faces or specific people
- Abstract, conceptual representation
- High contrast, easy to read

Text Overlay:
- Include the text: "{short_phrase}"
- Bold, sans-serif font
- White or light text on darker background

Mood: Thought-provoking, professional, forward-thinking
Format: Landscape orientation suitable for LinkedIn"""


def analytics_analysis_prompt(posts: list[AnalyticsPost]) -> str:
    rendered = "\n---\n".join(
        f"Post {idx}:\n"
        f"Content: {post.content}\n"
        f"Impressions: {post.impressions}\n"
        f"Likes: {post.likes}\n"
        f"Comments: {post.comments}\n"
        f"Shares: {post.shares}\n"
        f"Posted: {post.posted_at or 'unknown'}\n"
        f"Word Count: {len(post.content.split())}"
        for idx, post in enumerate(posts, start=1)
    )
    return f"""{STRATEGIST_PREAMBLE}

ANALYZE LINKEDIN ANALYTICS
From the following {len(posts)} LinkedIn posts, extract the author's successful writing patterns:
1. Top topics: themes or angles with the highest impressions and engagement
2. Best word count range
3. Tone style of the best posts
4. Structure patterns (hook style, lists, frameworks, contrarian takes)
5. Top hashtags used in the best posts

LINKEDIN POSTS DATA:
{rendered}

Return a JSON object with this structure:
{{
  "topTopics": ["topic1", "topic2", "topic3"],
  "bestWordCountRange": "e.g., 130-160 words",
  "toneStyle": "description of tone",
  "structurePatterns": ["pattern1", "pattern2"],
  "topHashtags": ["#hashtag1", "#hashtag2"]
}}"""


def newsletter_trends_prompt(chunks: list[RetrievedChunk]) -> str:
    rendered = "\n---\n".join(
        f"Excerpt {idx} (relevance {round(chunk.relevance_score * 100)}%):\n"
        f"From: {chunk.sender}\n"
        f"Subject: {chunk.subject}\n"
        f"Date: {chunk.date}\n"
        f"Text: {chunk.text}"
        for idx, chunk in enumerate(chunks, start=1)
    )
    return f"""{STRATEGIST_PREAMBLE}

EXTRACT AI TRENDS FROM NEWSLETTER EXCERPTS
The excerpts below were retrieved by semantic search over the author's AI newsletters.
Identify the 5 most relevant current AI trends for posts about leadership, innovation and strategy.
Every trend must be grounded in one excerpt; cite that excerpt's sender and subject exactly.

NEWSLETTER EXCERPTS:
{rendered}

Return a JSON object with this structure:
{{
  "trends": [
    {{
      "trend": "Trend description with practical implications",
      "sourceSubject": "Subject of the newsletter it came from",
      "sourceFrom": "Sender of that newsletter",
      "relevantSnippet": "Short quote from the excerpt"
    }}
  ]
}}"""


def competitor_insights_prompt(posts: list[CompetitorPost]) -> str:
    rendered = "\n---\n".join(
        f"Competitor Post {idx}:\n"
        f"From: {post.competitor_name}\n"
        f"Content: {_clip(post.content, 500)}\n"
        f"Type: {post.post_type}\n"
        f"Engagement: {post.likes} likes, {post.comments} comments, {post.shares} shares\n"
        f"Hashtags: {', '.join(post.hashtags)}"
        for idx, post in enumerate(posts, start=1)
    )
    return f"""{STRATEGIST_PREAMBLE}

ANALYZE COMPETITOR LINKEDIN POSTS
From the following {len(posts)} competitor posts, extract:
1. Key insights: content strategies that work in the AI LinkedIn space
2. Overused topics: saturated angles to avoid
3. Content gaps: under-explored topics or shallow treatments

COMPETITOR POSTS DATA:
{rendered}

Return a JSON object with this structure:
{{
  "insights": ["insight1", "insight2"],
  "overusedTopics": ["topic1", "topic2"],
  "contentGaps": ["gap1", "gap2"]
}}"""


def post_ideas_prompt(
    insights: AnalyticsInsights,
    trends: list[TrendWithSource],
    competitor: CompetitorInsights,
) -> str:
    trend_lines = "\n".join(
        f'{idx}. {trend.trend} (source: {trend.source_from} - "{trend.source_subject}")'
        for idx, trend in enumerate(trends)
    )
    return f"""{STRATEGIST_PREAMBLE}

GENERATE 5 STRATEGIC LINKEDIN POST IDEAS

1. LINKEDIN ANALYTICS INSIGHTS:
- Top Topics: {_joined(insights.top_topics)}
- Best Word Count: {insights.best_word_count_range}
- Tone Style: {insights.tone_style}
- Structure Patterns: {_joined(insights.structure_patterns, sep='; ')}
- Top Hashtags: {_joined(insights.top_hashtags)}

2. AI TRENDS (indexed from 0):
{trend_lines}

3. COMPETITOR INSIGHTS:
Key Insights: {_joined(competitor.insights, sep='; ')}
Overused Topics: {_joined(competitor.overused_topics, sep='; ')}
Content Gaps: {_joined(competitor.content_gaps, sep='; ')}

Each idea needs a 12-18 word hook, a post style, a 1-2 sentence topic and angle, why it works
for this author (cite the analytics), a specific target audience, an estimated word count,
the index of the trend it is built on and the indices of any related trends.

Return a JSON object with this structure:
{{
  "ideas": [
    {{
      "hook": "12-18 word headline",
      "postStyle": "Style name",
      "topicAndAngle": "1-2 sentence explanation",
      "whyThisWorks": "Reference to analytics",
      "targetAudience": "Specific audience",
      "estimatedWordCount": "e.g., 140-160 words",
      "primaryTrendIndex": 0,
      "relatedTrendIndices": [1]
    }}
  ]
}}"""


def idea_post_prompt(
    idea: PostIdea,
    insights: AnalyticsInsights,
    trends: list[TrendWithSource],
    competitor: CompetitorInsights,
    *,
    instructions: str | None = None,
) -> str:
    indices = [idea.primary_trend_index, *idea.related_trend_indices]
    selected = [trends[i] for i in indices if 0 <= i < len(trends)]
    trend_lines = "\n".join(
        f'- {trend.trend}\n  Source: {trend.source_from} - "{trend.source_subject}"\n'
        f"  Snippet: {trend.relevant_snippet}"
        for trend in selected
    ) or "- Current AI trends"
    return f"""{STRATEGIST_PREAMBLE}

WRITE FULL LINKEDIN POST

SELECTED IDEA:
- Hook: {idea.hook}
- Style: {idea.post_style}
- Topic & Angle: {idea.topic_and_angle}
- Target Audience: {idea.target_audience}
- Word Count: {idea.estimated_word_count}

AUTHOR'S WRITING STYLE:
- Tone: {insights.tone_style}
- Structure Patterns: {_joined(insights.structure_patterns, sep='; ')}
- Top Hashtags: {_joined(insights.top_hashtags)}

SOURCED TREND CONTEXT:
{trend_lines}

DIFFERENTIATION:
- Avoid: {_joined(competitor.overused_topics, sep='; ')}
- Lean into: {_joined(competitor.content_gaps, sep='; ')}

{instructions or IDEA_POST_INSTRUCTIONS}

{JSON_POST_SHAPE}"""


def idea_image_prompt(idea: PostIdea) -> str:
    match = _ABOUT_CLAUSE.search(idea.topic_and_angle)
    concept = match.group(1) if match else idea.hook
    return f"""Create a professional LinkedIn-style meme image about: "{concept}".

Visual Style:
- Clean, modern, minimalist design
- Gradient background (subtle purple/blue tones preferred)
- No human faces or specific people
- Abstract, conceptual representation

Text Overlay:
- Include text based on the hook: "{idea.hook}"
- Keep it short (max 8-10 words), bold sans-serif, light text on a darker background

Post Style Context: {idea.post_style}
Target Audience: {idea.target_audience}
Format: Landscape orientation suitable for LinkedIn"""
