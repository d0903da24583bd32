from __future__ import annotations

import json
from pathlib import Path

from quillstream.core.time import now_utc_iso
from quillstream.domain.models.content import (
    AITrend,
    AITrendSession,
    AnalyticsInsights,
    AnalyticsPost,
    CompetitorInsights,
    CompetitorPost,
    PostIdea,
    PostIdeasSession,
    TrendWithSource,
)
from quillstream.infrastructure.db.sqlite import get_connection


class ContentRepo:
    """Read/write access to the generation context: trends, competitor and analytics posts, idea sessions."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path

    def insert_trend_session(self, session: AITrendSession) -> None:
        with get_connection(self.db_path) as conn:
            conn.execute(
                "INSERT INTO ai_trend_sessions (id, owner_id, trends_json, generated_at) VALUES (?, ?, ?, ?)",
                (
                    session.id,
                    session.owner_id,
                    json.dumps([t.to_dict() for t in session.trends], ensure_ascii=True),
                    session.generated_at,
                ),
            )
            conn.commit()

    def recent_trend_sessions(self, owner_id: str, *, limit: int = 10) -> list[AITrendSession]:
        with get_connection(self.db_path) as conn:
            rows = conn.execute(
                """
                SELECT *
                FROM ai_trend_sessions
                WHERE owner_id = ?
                ORDER BY generated_at DESC, id DESC
                LIMIT ?
                """,
                (owner_id, max(1, int(limit))),
            ).fetchall()
        return [
            AITrendSession(
                id=row["id"],
                owner_id=row["owner_id"],
                trends=[AITrend.from_dict(t) for t in json.loads(row["trends_json"] or "[]")],
                generated_at=row["generated_at"],
            )
            for row in rows
        ]

    def find_trend(self, owner_id: str, trend_id: str, *, session_limit: int = 10) -> AITrend | None:
        for session in self.recent_trend_sessions(owner_id, limit=session_limit):
            for trend in session.trends:
                if trend.id == trend_id:
                    return trend
        return None

    def insert_competitor_post(self, post: CompetitorPost) -> None:
        with get_connection(self.db_path) as conn:
            conn.execute(
                """
                INSERT INTO competitor_posts (
                    id,
                    competitor_name,
                    content,
                    likes,
                    comments,
                    shares,
                    impressions,
                    hashtags_json,
                    post_type,
                    posted_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    post.id,
                    post.competitor_name,
                    post.content,
                    post.likes,
                    post.comments,
                    post.shares,
                    post.impressions,
                    json.dumps(post.hashtags, ensure_ascii=True),
                    post.post_type,
                    post.posted_at,
                ),
            )
            conn.commit()

    def list_competitor_posts(self) -> list[CompetitorPost]:
        with get_connection(self.db_path) as conn:
            rows = conn.execute("SELECT * FROM competitor_posts ORDER BY posted_at DESC, id ASC").fetchall()
        return [
            CompetitorPost(
                id=row["id"],
                competitor_name=row["competitor_name"],
                content=row["content"],
                likes=int(row["likes"] or 0),
                comments=int(row["comments"] or 0),
                shares=int(row["shares"] or 0),
                impressions=row["impressions"],
                hashtags=json.loads(row["hashtags_json"] or "[]"),
                post_type=row["post_type"] or "text",
                posted_at=row["posted_at"],
            )
            for row in rows
        ]

    def insert_analytics_post(self, owner_id: str, post_id: str, post: AnalyticsPost) -> None:
        with get_connection(self.db_path) as conn:
            conn.execute(
                """
                INSERT INTO linkedin_analytics_posts (
                    id, owner_id, content, impressions, likes, comments, shares, posted_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    post_id,
                    owner_id,
                    post.content,
                    post.impressions,
                    post.likes,
                    post.comments,
                    post.shares,
                    post.posted_at,
                ),
            )
            conn.commit()

    def list_analytics_posts(self, owner_id: str) -> list[AnalyticsPost]:
        with get_connection(self.db_path) as conn:
            rows = conn.execute(
                "SELECT * FROM linkedin_analytics_posts WHERE owner_id = ? ORDER BY posted_at DESC",
                (owner_id,),
            ).fetchall()
        return [
            AnalyticsPost(
                content=row["content"],
                impressions=int(row["impressions"] or 0),
                likes=int(row["likes"] or 0),
                comments=int(row["comments"] or 0),
                shares=int(row["shares"] or 0),
                posted_at=row["posted_at"],
            )
            for row in rows
        ]

    def insert_idea_session(self, session: PostIdeasSession) -> None:
        competitor = session.competitor_insights
        with get_connection(self.db_path) as conn:
            conn.execute(
                """
                INSERT INTO post_idea_sessions (
                    id,
                    owner_id,
                    ideas_json,
                    analytics_json,
                    trends_json,
                    competitor_json,
                    costs_json,
                    total_cost,
                    rag_enabled,
                    retrieved_chunks,
                    created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    session.id,
                    session.owner_id,
                    json.dumps([i.to_dict() for i in session.ideas], ensure_ascii=True),
                    json.dumps(session.analytics_insights.to_dict(), ensure_ascii=True),
                    json.dumps([t.to_dict() for t in session.trends_with_sources], ensure_ascii=True),
                    json.dumps(
                        {
                            "insights": competitor.insights,
                            "overusedTopics": competitor.overused_topics,
                            "contentGaps": competitor.content_gaps,
                        },
                        ensure_ascii=True,
                    ),
                    json.dumps(session.costs, ensure_ascii=True, sort_keys=True),
                    session.total_cost,
                    1 if session.rag_enabled else 0,
                    session.retrieved_chunks,
                    session.created_at,
                ),
            )
            conn.commit()

    def get_idea_session(self, owner_id: str, session_id: str) -> PostIdeasSession | None:
        with get_connection(self.db_path) as conn:
            row = conn.execute(
                "SELECT * FROM post_idea_sessions WHERE id = ? AND owner_id = ?",
                (session_id, owner_id),
            ).fetchone()
        if row is None:
            return None
        competitor = json.loads(row["competitor_json"] or "{}")
        return PostIdeasSession(
            id=row["id"],
            owner_id=row["owner_id"],
            ideas=[PostIdea.from_dict(i) for i in json.loads(row["ideas_json"] or "[]")],
            analytics_insights=AnalyticsInsights.from_dict(json.loads(row["analytics_json"] or "{}")),
            trends_with_sources=[TrendWithSource.from_dict(t) for t in json.loads(row["trends_json"] or "[]")],
            competitor_insights=CompetitorInsights(
                insights=list(competitor.get("insights") or []),
                overused_topics=list(competitor.get("overusedTopics") or []),
                content_gaps=list(competitor.get("contentGaps") or []),
            ),
            costs={str(k): float(v) for k, v in json.loads(row["costs_json"] or "{}").items()},
            total_cost=float(row["total_cost"] or 0.0),
            rag_enabled=bool(row["rag_enabled"]),
            retrieved_chunks=int(row["retrieved_chunks"] or 0),
            created_at=row["created_at"],
        )

    def get_setting(self, key: str) -> str | None:
        with get_connection(self.db_path) as conn:
            row = conn.execute("SELECT value FROM app_settings WHERE key = ?", (key,)).fetchone()
        return row["value"] if row else None

    def set_setting(self, key: str, value: str) -> None:
        with get_connection(self.db_path) as conn:
            conn.execute(
                """
                INSERT INTO app_settings (key, value, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
                """,
                (key, value, now_utc_iso()),
            )
            conn.commit()
