from __future__ import annotations

import threading
import time
from concurrent.futures import Executor, Future
from pathlib import Path

import pytest

from quillstream.application.services.generation_pipeline import PipelineOutcome
from quillstream.application.services.job_service import JobOrchestrator
from quillstream.core.errors import ConfigurationError, NotFoundError, ValidationError
from quillstream.domain.models.job import JOB_COMPLETED, JOB_FAILED, JOB_PENDING, JobCosts, JobResult
from quillstream.infrastructure.db.repos.job_repo import JobRepo


class _DeferredExecutor(Executor):
    """Holds submitted work until the test runs it."""

    def __init__(self) -> None:
        self.pending: list[tuple] = []
        self.shutdown_called = False

    def submit(self, fn, /, *args, **kwargs) -> Future:
        self.pending.append((fn, args, kwargs))
        return Future()

    def run_all(self) -> None:
        while self.pending:
            fn, args, kwargs = self.pending.pop(0)
            fn(*args, **kwargs)

    def shutdown(self, wait: bool = True, *, cancel_futures: bool = False) -> None:
        self.shutdown_called = True


class _StaticPipeline:
    def __init__(self, *, error: Exception | None = None) -> None:
        self.error = error
        self.jobs = []

    def run(self, job, reporter) -> PipelineOutcome:
        self.jobs.append(job)
        reporter.update("generating_post", 50, "Writing")
        if self.error is not None:
            raise self.error
        return PipelineOutcome(
            result=JobResult(text="A finished post", word_count=3),
            costs=JobCosts(generation=0.01),
        )


def _orchestrator(db_path: Path, **kwargs):
    executor = _DeferredExecutor()
    trend = kwargs.pop("trend_pipeline", None) or _StaticPipeline()
    idea = kwargs.pop("idea_pipeline", None) or _StaticPipeline()
    orchestrator = JobOrchestrator(
        job_repo=JobRepo(db_path),
        trend_pipeline=trend,
        idea_pipeline=idea,
        executor=executor,
        **kwargs,
    )
    return orchestrator, executor


def test_created_job_starts_pending(db_path: Path) -> None:
    orchestrator, executor = _orchestrator(db_path)

    job_id = orchestrator.create_trend_job("user-1", "  trend_42 ")

    job = orchestrator.get(job_id)
    assert job.status == JOB_PENDING
    assert job.context_id == "trend_42"
    assert job.progress.to_dict() == {"stage": "fetching_data", "percentage": 0, "message": "Initializing..."}
    assert job.costs.to_dict() == {"generation": 0.0, "asset": 0.0}
    assert job.result is None
    assert len(executor.pending) == 1


def test_idea_job_records_idea_id(db_path: Path) -> None:
    orchestrator, _ = _orchestrator(db_path)

    job = orchestrator.get(orchestrator.create_idea_job("user-1", "session-1", "idea3"))

    assert job.kind == "idea"
    assert job.idea_id == "idea3"
    assert job.progress.message == "Loading selected idea..."


@pytest.mark.parametrize(
    "create",
    [
        lambda o: o.create_trend_job("user-1", ""),
        lambda o: o.create_trend_job("user-1", "   "),
        lambda o: o.create_trend_job("", "trend_1"),
        lambda o: o.create_idea_job("user-1", "session-1", ""),
        lambda o: o.create_idea_job("user-1", "", "idea1"),
    ],
)
def test_invalid_requests_create_no_job(db_path: Path, create) -> None:
    orchestrator, executor = _orchestrator(db_path)

    with pytest.raises(ValidationError):
        create(orchestrator)

    assert orchestrator.list_for_owner("user-1") == []
    assert executor.pending == []


def test_preflight_failure_creates_no_job(db_path: Path) -> None:
    def _missing_key() -> None:
        raise ConfigurationError("API key not found for provider 'openai'.")

    orchestrator, executor = _orchestrator(db_path, preflight=_missing_key)

    with pytest.raises(ConfigurationError):
        orchestrator.create_trend_job("user-1", "trend_1")

    assert orchestrator.list_for_owner("user-1") == []
    assert executor.pending == []


def test_background_run_completes_job(db_path: Path) -> None:
    orchestrator, executor = _orchestrator(db_path)
    job_id = orchestrator.create_trend_job("user-1", "trend_1")

    executor.run_all()

    job = orchestrator.get(job_id)
    assert job.status == JOB_COMPLETED
    assert job.result.text == "A finished post"
    assert job.total_cost == pytest.approx(0.01)


def test_pipeline_exception_marks_job_failed(db_path: Path) -> None:
    orchestrator, executor = _orchestrator(db_path, idea_pipeline=_StaticPipeline(error=RuntimeError("model exploded")))
    job_id = orchestrator.create_idea_job("user-1", "session-1", "idea1")

    executor.run_all()

    job = orchestrator.get(job_id)
    assert job.status == JOB_FAILED
    assert job.error == "model exploded"
    assert job.progress.percentage == 100


def test_exception_without_message_uses_class_name(db_path: Path) -> None:
    orchestrator, executor = _orchestrator(db_path, trend_pipeline=_StaticPipeline(error=KeyError()))
    job_id = orchestrator.create_trend_job("user-1", "trend_1")

    executor.run_all()

    assert orchestrator.get(job_id).error == "KeyError"


def test_lookups_are_owner_scoped(db_path: Path) -> None:
    orchestrator, _ = _orchestrator(db_path)
    job_id = orchestrator.create_trend_job("user-1", "trend_1")

    assert orchestrator.get_for_owner("user-1", job_id).id == job_id
    with pytest.raises(NotFoundError):
        orchestrator.get_for_owner("user-2", job_id)
    with pytest.raises(NotFoundError):
        orchestrator.get("missing")
    with pytest.raises(NotFoundError):
        orchestrator.watch("missing")


def test_shutdown_leaves_injected_executor_alone(db_path: Path) -> None:
    orchestrator, executor = _orchestrator(db_path)

    orchestrator.shutdown()

    assert executor.shutdown_called is False


def test_owned_pool_runs_jobs_in_background(db_path: Path) -> None:
    orchestrator = JobOrchestrator(
        job_repo=JobRepo(db_path),
        trend_pipeline=_StaticPipeline(),
        idea_pipeline=_StaticPipeline(),
        max_workers=1,
    )
    job_id = orchestrator.create_trend_job("user-1", "trend_1")
    orchestrator.shutdown(wait=True)

    assert orchestrator.get(job_id).status == JOB_COMPLETED


class _BlockingPipeline:
    """Reports one stage, then hangs like a stalled provider call."""

    def __init__(self) -> None:
        self.release = threading.Event()

    def run(self, job, reporter) -> PipelineOutcome:
        reporter.update("generating_post", 50, "Writing")
        self.release.wait(5)
        return PipelineOutcome(result=JobResult(text="Too late", word_count=2), costs=JobCosts())


def test_stalled_pipeline_is_failed_at_the_deadline(db_path: Path) -> None:
    pipeline = _BlockingPipeline()
    orchestrator = JobOrchestrator(
        job_repo=JobRepo(db_path),
        trend_pipeline=pipeline,
        idea_pipeline=_StaticPipeline(),
        timeout_seconds=0.2,
        max_workers=1,
    )
    job_id = orchestrator.create_trend_job("user-1", "trend_1")
    try:
        for _ in range(100):
            if orchestrator.get(job_id).status == JOB_FAILED:
                break
            time.sleep(0.05)
        job = orchestrator.get(job_id)
        assert job.status == JOB_FAILED
        assert "time limit" in (job.error or "")
    finally:
        pipeline.release.set()
        orchestrator.shutdown(wait=True)

    job = orchestrator.get(job_id)
    assert job.status == JOB_FAILED
    assert job.result is None
