from __future__ import annotations

import sqlite3
import threading
import time
from pathlib import Path

from quillstream.infrastructure.db.sqlite import get_connection, initialize_schema


def test_connection_enables_wal_and_busy_timeout(tmp_path: Path) -> None:
    db_path = tmp_path / "quill.db"
    initialize_schema(db_path)

    with get_connection(db_path) as conn:
        journal_mode = conn.execute("PRAGMA journal_mode;").fetchone()[0]
        busy_timeout = conn.execute("PRAGMA busy_timeout;").fetchone()[0]
        foreign_keys = conn.execute("PRAGMA foreign_keys;").fetchone()[0]

    assert str(journal_mode).lower() == "wal"
    assert int(busy_timeout) >= 30_000
    assert int(foreign_keys) == 1


def test_initialize_schema_is_idempotent_and_creates_parent(tmp_path: Path) -> None:
    db_path = tmp_path / "nested" / ".quill" / "quill.db"
    initialize_schema(db_path)
    initialize_schema(db_path)

    with get_connection(db_path) as conn:
        tables = {row["name"] for row in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")}

    assert {
        "generation_jobs",
        "newsletters",
        "newsletter_embeddings",
        "cost_ledger",
        "usage_totals",
        "ai_trend_sessions",
        "competitor_posts",
        "linkedin_analytics_posts",
        "post_idea_sessions",
        "app_settings",
    } <= tables


def test_migration_adds_job_kind_and_idea_columns(tmp_path: Path) -> None:
    db_path = tmp_path / "quill.db"
    conn = sqlite3.connect(db_path)
    conn.execute(
        """
        CREATE TABLE generation_jobs (
            id TEXT PRIMARY KEY,
            owner_id TEXT NOT NULL,
            status TEXT NOT NULL,
            context_id TEXT NOT NULL,
            context_title TEXT NOT NULL DEFAULT '',
            progress_json TEXT NOT NULL,
            result_json TEXT,
            costs_json TEXT NOT NULL,
            total_cost REAL NOT NULL DEFAULT 0,
            error_message TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """
    )
    conn.commit()
    conn.close()

    initialize_schema(db_path)

    with get_connection(db_path) as conn:
        columns = {row["name"] for row in conn.execute("PRAGMA table_info(generation_jobs)")}
    assert {"kind", "idea_id"} <= columns


def test_write_waits_for_lock_instead_of_failing_immediately(tmp_path: Path) -> None:
    db_path = tmp_path / "quill.db"
    initialize_schema(db_path)

    writer_1 = get_connection(db_path)
    writer_1.execute("BEGIN IMMEDIATE;")
    writer_1.execute(
        "INSERT INTO app_settings (key, value, updated_at) VALUES (?, ?, ?)",
        ("first", "1", "2024-01-01T00:00:00Z"),
    )

    out: dict[str, object] = {}

    def _writer_2() -> None:
        started = time.perf_counter()
        try:
            with get_connection(db_path) as conn_2:
                conn_2.execute(
                    "INSERT INTO app_settings (key, value, updated_at) VALUES (?, ?, ?)",
                    ("second", "2", "2024-01-01T00:00:00Z"),
                )
                conn_2.commit()
            out["ok"] = True
        except sqlite3.Error as exc:
            out["ok"] = False
            out["error"] = str(exc)
        finally:
            out["elapsed"] = time.perf_counter() - started

    t = threading.Thread(target=_writer_2)
    t.start()
    time.sleep(0.25)
    writer_1.commit()
    writer_1.close()
    t.join(timeout=5)

    assert out.get("ok") is True, str(out.get("error"))
    assert float(out.get("elapsed", 0.0)) >= 0.2

    with get_connection(db_path) as conn:
        count = conn.execute("SELECT COUNT(*) FROM app_settings").fetchone()[0]
    assert int(count) == 2
