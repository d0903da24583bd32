from __future__ import annotations

import json
import sqlite3
import time
from pathlib import Path
from typing import Iterator

from quillstream.core.time import now_utc_iso
from quillstream.domain.models.job import (
    JOB_COMPLETED,
    JOB_FAILED,
    JOB_PROCESSING,
    STAGE_COMPLETED,
    STATUS_RANK,
    TERMINAL_STATUSES,
    GenerationJob,
    JobCosts,
    JobProgress,
    JobResult,
    ProgressPatch,
)
from quillstream.infrastructure.db.sqlite import get_connection


class JobRepo:
    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path

    def insert(self, job: GenerationJob) -> None:
        with get_connection(self.db_path) as conn:
            conn.execute(
                """
                INSERT INTO generation_jobs (
                    id,
                    owner_id,
                    kind,
                    status,
                    context_id,
                    context_title,
                    idea_id,
                    progress_json,
                    result_json,
                    costs_json,
                    total_cost,
                    error_message,
                    created_at,
                    updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    job.id,
                    job.owner_id,
                    job.kind,
                    job.status,
                    job.context_id,
                    job.context_title,
                    job.idea_id,
                    _dump(job.progress.to_dict()),
                    _dump(job.result.to_dict()) if job.result else None,
                    _dump(job.costs.to_dict()),
                    job.total_cost,
                    job.error,
                    job.created_at,
                    job.updated_at,
                ),
            )
            conn.commit()

    def get(self, job_id: str) -> GenerationJob | None:
        with get_connection(self.db_path) as conn:
            row = conn.execute("SELECT * FROM generation_jobs WHERE id = ?", (job_id,)).fetchone()
        return self._to_job(row) if row else None

    def list_for_owner(self, owner_id: str, *, limit: int = 50) -> list[GenerationJob]:
        safe_limit = max(1, min(int(limit), 1000))
        with get_connection(self.db_path) as conn:
            rows = conn.execute(
                """
                SELECT *
                FROM generation_jobs
                WHERE owner_id = ?
                ORDER BY created_at DESC, id DESC
                LIMIT ?
                """,
                (owner_id, safe_limit),
            ).fetchall()
        return [self._to_job(row) for row in rows]

    def apply_progress(self, job_id: str, patch: ProgressPatch, *, status: str | None = None) -> bool:
        """Merge a stage patch into the stored job.

        Returns False when the job is missing or already terminal. Percentage
        never moves backwards and status never moves down its rank.
        """
        patch.validate()
        with get_connection(self.db_path) as conn:
            row = self._locked_row(conn, job_id)
            if row is None or row["status"] in TERMINAL_STATUSES:
                conn.rollback()
                return False
            progress = JobProgress.from_dict(_load(row["progress_json"]))
            if patch.stage is not None:
                progress.stage = patch.stage
            if patch.percentage is not None:
                progress.percentage = max(progress.percentage, patch.percentage)
            if patch.message is not None:
                progress.message = patch.message
            next_status = row["status"]
            if status is not None and STATUS_RANK[status] >= STATUS_RANK[row["status"]]:
                next_status = status
            conn.execute(
                """
                UPDATE generation_jobs
                SET status = ?,
                    progress_json = ?,
                    context_title = COALESCE(?, context_title),
                    updated_at = ?
                WHERE id = ?
                """,
                (
                    next_status,
                    _dump(progress.to_dict()),
                    patch.context_title,
                    now_utc_iso(),
                    job_id,
                ),
            )
            conn.commit()
        return True

    def mark_processing(self, job_id: str, *, message: str) -> bool:
        return self.apply_progress(job_id, ProgressPatch(message=message), status=JOB_PROCESSING)

    def mark_completed(
        self,
        job_id: str,
        *,
        result: JobResult,
        costs: JobCosts,
        message: str,
    ) -> bool:
        progress = JobProgress(stage=STAGE_COMPLETED, percentage=100, message=message)
        return self._finalize(
            job_id,
            status=JOB_COMPLETED,
            progress=progress,
            result=result,
            costs=costs,
            error=None,
        )

    def mark_failed(self, job_id: str, *, error: str, message: str = "Generation failed") -> bool:
        progress = JobProgress(stage=STAGE_COMPLETED, percentage=100, message=message)
        return self._finalize(
            job_id,
            status=JOB_FAILED,
            progress=progress,
            result=None,
            costs=None,
            error=error or "Unknown error occurred",
        )

    def watch(
        self,
        job_id: str,
        *,
        poll_interval: float = 0.5,
        timeout_seconds: float | None = None,
    ) -> Iterator[GenerationJob]:
        """Yield the job each time its stored state changes, ending after a terminal state."""
        started = time.monotonic()
        last_snapshot: str | None = None
        while True:
            job = self.get(job_id)
            if job is None:
                return
            snapshot = json.dumps(job.to_dict(), sort_keys=True)
            if snapshot != last_snapshot:
                last_snapshot = snapshot
                yield job
            if job.is_terminal:
                return
            if timeout_seconds is not None and time.monotonic() - started >= timeout_seconds:
                return
            time.sleep(poll_interval)

    def _finalize(
        self,
        job_id: str,
        *,
        status: str,
        progress: JobProgress,
        result: JobResult | None,
        costs: JobCosts | None,
        error: str | None,
    ) -> bool:
        with get_connection(self.db_path) as conn:
            row = self._locked_row(conn, job_id)
            if row is None or row["status"] in TERMINAL_STATUSES:
                conn.rollback()
                return False
            stored_costs = costs or JobCosts.from_dict(_load(row["costs_json"]))
            conn.execute(
                """
                UPDATE generation_jobs
                SET status = ?,
                    progress_json = ?,
                    result_json = ?,
                    costs_json = ?,
                    total_cost = ?,
                    error_message = ?,
                    updated_at = ?
                WHERE id = ?
                """,
                (
                    status,
                    _dump(progress.to_dict()),
                    _dump(result.to_dict()) if result else None,
                    _dump(stored_costs.to_dict()),
                    stored_costs.total,
                    error,
                    now_utc_iso(),
                    job_id,
                ),
            )
            conn.commit()
        return True

    @staticmethod
    def _locked_row(conn: sqlite3.Connection, job_id: str) -> sqlite3.Row | None:
        conn.execute("BEGIN IMMEDIATE")
        return conn.execute("SELECT * FROM generation_jobs WHERE id = ?", (job_id,)).fetchone()

    @staticmethod
    def _to_job(row) -> GenerationJob:
        return GenerationJob(
            id=row["id"],
            owner_id=row["owner_id"],
            kind=row["kind"],
            status=row["status"],
            context_id=row["context_id"],
            context_title=row["context_title"] or "",
            idea_id=row["idea_id"],
            progress=JobProgress.from_dict(_load(row["progress_json"])),
            result=JobResult.from_dict(_load(row["result_json"])),
            costs=JobCosts.from_dict(_load(row["costs_json"])),
            total_cost=float(row["total_cost"] or 0.0),
            error=row["error_message"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


def _dump(payload: object) -> str:
    return json.dumps(payload, ensure_ascii=True, sort_keys=True)


def _load(raw: str | None) -> dict | None:
    if not raw:
        return None
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, dict) else None
