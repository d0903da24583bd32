from __future__ import annotations

import json
from pathlib import Path

import pytest

from quillstream.cli.main import main
from quillstream.infrastructure.db.repos.content_repo import ContentRepo
from quillstream.infrastructure.db.repos.job_repo import JobRepo


def _run(root: Path, *argv: str) -> int:
    return main(["--project-root", str(root), "--owner", "user-1", *argv])


def test_init_is_idempotent(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert _run(tmp_path, "init") == 0
    assert (tmp_path / ".quill" / "quill.db").exists()
    assert "Database ready" in capsys.readouterr().out

    assert _run(tmp_path, "init") == 0
    assert "already existed" in capsys.readouterr().out


def test_commands_require_init(tmp_path: Path) -> None:
    records = tmp_path / "trends.json"
    records.write_text(json.dumps([{"title": "Agents"}]), encoding="utf-8")

    assert _run(tmp_path, "import", "trends", "--file", str(records)) == 1
    assert _run(tmp_path, "jobs", "list") == 1


def test_import_trends_then_list(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    _run(tmp_path, "init")
    records = tmp_path / "trends.json"
    records.write_text(
        json.dumps({"trends": [{"id": "trend_42", "title": "Agents in production", "category": "enterprise"}]}),
        encoding="utf-8",
    )

    assert _run(tmp_path, "import", "trends", "--file", str(records)) == 0
    assert "trend_42" in capsys.readouterr().out
    assert ContentRepo(tmp_path / ".quill" / "quill.db").find_trend("user-1", "trend_42") is not None

    assert _run(tmp_path, "jobs", "list") == 0
    assert "Generation Jobs (0)" in capsys.readouterr().out


def test_bad_import_file_returns_error(tmp_path: Path) -> None:
    _run(tmp_path, "init")
    bad = tmp_path / "bad.json"
    bad.write_text("{oops", encoding="utf-8")

    assert _run(tmp_path, "import", "analytics", "--file", str(bad)) == 1


def test_missing_api_key_blocks_job_creation(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    _run(tmp_path, "init")

    assert _run(tmp_path, "jobs", "from-trend", "--trend-id", "trend_42", "--no-watch") == 1
    assert JobRepo(tmp_path / ".quill" / "quill.db").list_for_owner("user-1") == []


def test_show_unknown_job_returns_error(tmp_path: Path) -> None:
    _run(tmp_path, "init")

    assert _run(tmp_path, "jobs", "show", "--job-id", "missing") == 1


def test_costs_summary_for_empty_ledger(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    _run(tmp_path, "init")

    assert _run(tmp_path, "costs", "summary") == 0
    assert "Calls: 0" in capsys.readouterr().out


def test_rag_status_on_empty_project(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    _run(tmp_path, "init")

    assert _run(tmp_path, "rag", "status") == 0
    assert "Ready: no" in capsys.readouterr().out
