from __future__ import annotations

import json
from pathlib import Path

import pytest

from quillstream.application.services.import_service import ContextImportService
from quillstream.core.errors import ValidationError
from quillstream.infrastructure.db.repos.content_repo import ContentRepo
from quillstream.infrastructure.db.repos.newsletter_repo import NewsletterRepo
from quillstream.infrastructure.importers.json_records import RecordJsonError, load_records_from_json


def _service(db_path: Path) -> ContextImportService:
    return ContextImportService(newsletter_repo=NewsletterRepo(db_path), content_repo=ContentRepo(db_path))


def test_load_records_accepts_list_or_wrapped_object(tmp_path: Path) -> None:
    bare = tmp_path / "bare.json"
    bare.write_text(json.dumps([{"id": "a"}]), encoding="utf-8")
    wrapped = tmp_path / "wrapped.json"
    wrapped.write_text(json.dumps({"posts": [{"id": "b"}]}), encoding="utf-8")

    assert load_records_from_json(bare, key="posts") == [{"id": "a"}]
    assert load_records_from_json(wrapped, key="posts") == [{"id": "b"}]


@pytest.mark.parametrize(
    "content",
    ["{not json", json.dumps({"other": []}), json.dumps([1, 2])],
)
def test_load_records_rejects_bad_files(tmp_path: Path, content: str) -> None:
    path = tmp_path / "bad.json"
    path.write_text(content, encoding="utf-8")

    with pytest.raises(RecordJsonError):
        load_records_from_json(path, key="posts")


def test_missing_file_is_a_validation_error(tmp_path: Path) -> None:
    with pytest.raises(ValidationError):
        load_records_from_json(tmp_path / "nope.json", key="posts")


def test_import_newsletters(db_path: Path) -> None:
    summary = _service(db_path).import_newsletters(
        "user-1",
        [
            {
                "id": "n1",
                "subject": "Issue 12",
                "from": {"name": "The Batch", "email": "batch@example.com"},
                "receivedAt": "2024-05-01T08:00:00Z",
                "body": "Agents are shipping.",
            },
            {"subject": "Issue 13", "senderEmail": "weekly@example.com", "content": "Evals everywhere."},
        ],
    )

    assert summary.imported == 2
    assert summary.ids[0] == "n1"
    stored = NewsletterRepo(db_path).get_by_id("n1")
    assert stored.sender_name == "The Batch"
    assert stored.indexed is False
    second = NewsletterRepo(db_path).get_by_id(summary.ids[1])
    assert second.sender_email == "weekly@example.com"
    assert second.body == "Evals everywhere."


def test_import_newsletter_without_body_fails(db_path: Path) -> None:
    with pytest.raises(ValidationError, match="#1"):
        _service(db_path).import_newsletters("user-1", [{"subject": "Empty"}])


def test_import_trend_session_assigns_ids(db_path: Path) -> None:
    summary = _service(db_path).import_trend_session(
        "user-1",
        [
            {"id": "trend_42", "title": "Agents in production", "category": "enterprise"},
            {"title": "Small models", "keyPoints": ["Cheaper", "Faster"]},
        ],
    )

    assert summary.ids == ["trend_42", "trend_2"]
    trend = ContentRepo(db_path).find_trend("user-1", "trend_2")
    assert trend.key_points == ["Cheaper", "Faster"]
    assert ContentRepo(db_path).find_trend("user-2", "trend_42") is None


def test_import_trend_without_title_fails(db_path: Path) -> None:
    with pytest.raises(ValidationError):
        _service(db_path).import_trend_session("user-1", [{"description": "no title"}])


def test_import_competitor_and_analytics_posts(db_path: Path) -> None:
    service = _service(db_path)

    service.import_competitor_posts(
        [{"competitorName": "Rival", "content": "Hot take", "likes": "12", "impressions": 400, "hashtags": ["#AI"]}]
    )
    service.import_analytics_posts("user-1", [{"content": "Mine", "impressions": 900, "likes": "oops"}])

    competitor = ContentRepo(db_path).list_competitor_posts()[0]
    assert competitor.likes == 12
    assert competitor.impressions == 400
    assert competitor.hashtags == ["#AI"]
    analytics = ContentRepo(db_path).list_analytics_posts("user-1")[0]
    assert analytics.impressions == 900
    assert analytics.likes == 0
