from __future__ import annotations

import logging
from dataclasses import dataclass

from quillstream.core.errors import ValidationError
from quillstream.core.ids import new_uuid
from quillstream.core.time import now_utc_iso
from quillstream.domain.models.content import AITrend, AITrendSession, AnalyticsPost, CompetitorPost
from quillstream.domain.models.newsletter import Newsletter
from quillstream.infrastructure.db.repos.content_repo import ContentRepo
from quillstream.infrastructure.db.repos.newsletter_repo import NewsletterRepo

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ImportSummary:
    kind: str
    imported: int
    ids: list[str]


class ContextImportService:
    """Loads the records generation draws on: newsletters, trends, competitor and analytics posts."""

    def __init__(self, *, newsletter_repo: NewsletterRepo, content_repo: ContentRepo) -> None:
        self.newsletter_repo = newsletter_repo
        self.content_repo = content_repo

    def import_newsletters(self, owner_id: str, rows: list[dict[str, object]]) -> ImportSummary:
        ids: list[str] = []
        for index, row in enumerate(rows):
            body = _text(row, "body") or _text(row, "content")
            if not body:
                raise ValidationError(f"Newsletter #{index + 1} has no body.")
            sender = row.get("from")
            sender = sender if isinstance(sender, dict) else {}
            newsletter = Newsletter(
                id=_text(row, "id") or new_uuid(),
                owner_id=owner_id,
                subject=_text(row, "subject") or "(no subject)",
                sender_name=_text(sender, "name") or _text(row, "senderName"),
                sender_email=_text(sender, "email") or _text(row, "senderEmail"),
                received_at=_text(row, "receivedAt") or _text(row, "date") or None,
                body=body,
                created_at=now_utc_iso(),
            )
            self.newsletter_repo.insert(newsletter)
            ids.append(newsletter.id)
        logger.info("Imported %d newsletters for %s", len(ids), owner_id)
        return ImportSummary(kind="newsletters", imported=len(ids), ids=ids)

    def import_trend_session(self, owner_id: str, rows: list[dict[str, object]]) -> ImportSummary:
        trends = []
        for index, row in enumerate(rows, start=1):
            trend = AITrend.from_dict(row)
            if not trend.title:
                raise ValidationError(f"Trend #{index} has no title.")
            trend.id = trend.id or f"trend_{index}"
            trends.append(trend)
        session = AITrendSession(id=new_uuid(), owner_id=owner_id, trends=trends, generated_at=now_utc_iso())
        self.content_repo.insert_trend_session(session)
        return ImportSummary(kind="trends", imported=len(trends), ids=[t.id for t in trends])

    def import_competitor_posts(self, rows: list[dict[str, object]]) -> ImportSummary:
        ids: list[str] = []
        for row in rows:
            impressions = row.get("impressions")
            post = CompetitorPost(
                id=_text(row, "id") or new_uuid(),
                competitor_name=_text(row, "competitorName") or "Unknown",
                content=_text(row, "content"),
                likes=_int(row, "likes"),
                comments=_int(row, "comments"),
                shares=_int(row, "shares"),
                impressions=int(impressions) if impressions is not None else None,
                hashtags=[str(tag) for tag in row.get("hashtags") or []],
                post_type=_text(row, "postType") or "text",
                posted_at=_text(row, "postedAt") or None,
            )
            self.content_repo.insert_competitor_post(post)
            ids.append(post.id)
        return ImportSummary(kind="competitors", imported=len(ids), ids=ids)

    def import_analytics_posts(self, owner_id: str, rows: list[dict[str, object]]) -> ImportSummary:
        ids: list[str] = []
        for row in rows:
            post_id = _text(row, "id") or new_uuid()
            self.content_repo.insert_analytics_post(
                owner_id,
                post_id,
                AnalyticsPost(
                    content=_text(row, "content"),
                    impressions=_int(row, "impressions"),
                    likes=_int(row, "likes"),
                    comments=_int(row, "comments"),
                    shares=_int(row, "shares"),
                    posted_at=_text(row, "postedAt") or None,
                ),
            )
            ids.append(post_id)
        return ImportSummary(kind="analytics", imported=len(ids), ids=ids)


def _text(row: dict, key: str) -> str:
    value = row.get(key)
    return str(value).strip() if value is not None else ""


def _int(row: dict, key: str) -> int:
    try:
        return int(row.get(key) or 0)
    except (TypeError, ValueError):
        return 0
