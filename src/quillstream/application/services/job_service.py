from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from typing import Callable, Iterator

from quillstream.application.services.generation_pipeline import JobDeadline, PostPipeline, StageReporter
from quillstream.core.errors import GenerationTimeoutError, NotFoundError, ValidationError
from quillstream.core.ids import new_uuid
from quillstream.core.time import now_utc_iso
from quillstream.domain.models.job import (
    JOB_KIND_IDEA,
    JOB_KIND_TREND,
    JOB_PENDING,
    STAGE_FETCHING_DATA,
    GenerationJob,
    JobCosts,
    JobProgress,
)
from quillstream.infrastructure.db.repos.job_repo import JobRepo

logger = logging.getLogger(__name__)

DEFAULT_JOB_TIMEOUT_SECONDS = 540.0


class JobOrchestrator:
    """Creates generation jobs and runs their pipelines on a worker pool.

    Creation is synchronous and returns the job id; the pipeline runs in the
    background and every failure it raises ends up on the job record.
    """

    def __init__(
        self,
        *,
        job_repo: JobRepo,
        trend_pipeline: PostPipeline,
        idea_pipeline: PostPipeline,
        timeout_seconds: float | None = DEFAULT_JOB_TIMEOUT_SECONDS,
        max_workers: int = 4,
        executor: Executor | None = None,
        preflight: Callable[[], None] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.job_repo = job_repo
        self.pipelines: dict[str, PostPipeline] = {
            JOB_KIND_TREND: trend_pipeline,
            JOB_KIND_IDEA: idea_pipeline,
        }
        self.timeout_seconds = timeout_seconds
        self._preflight = preflight
        self._clock = clock
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="generation-job")

    def create_trend_job(self, owner_id: str, context_id: str) -> str:
        if not context_id or not str(context_id).strip():
            raise ValidationError("Trend ID is required")
        return self._create(owner_id, JOB_KIND_TREND, context_id.strip(), None, "Initializing...")

    def create_idea_job(self, owner_id: str, session_id: str, idea_id: str) -> str:
        if not session_id or not idea_id or not session_id.strip() or not idea_id.strip():
            raise ValidationError("Session ID and Idea ID are required")
        return self._create(owner_id, JOB_KIND_IDEA, session_id.strip(), idea_id.strip(), "Loading selected idea...")

    def get(self, job_id: str) -> GenerationJob:
        job = self.job_repo.get(job_id)
        if job is None:
            raise NotFoundError(f"Job not found: {job_id}")
        return job

    def get_for_owner(self, owner_id: str, job_id: str) -> GenerationJob:
        job = self.get(job_id)
        if job.owner_id != owner_id:
            raise NotFoundError(f"Job not found: {job_id}")
        return job

    def list_for_owner(self, owner_id: str, *, limit: int = 50) -> list[GenerationJob]:
        return self.job_repo.list_for_owner(owner_id, limit=limit)

    def watch(
        self,
        job_id: str,
        *,
        poll_interval: float = 0.5,
        timeout_seconds: float | None = None,
    ) -> Iterator[GenerationJob]:
        self.get(job_id)
        return self.job_repo.watch(job_id, poll_interval=poll_interval, timeout_seconds=timeout_seconds)

    def shutdown(self, *, wait: bool = True) -> None:
        if self._owns_executor:
            self._executor.shutdown(wait=wait)

    def _create(
        self,
        owner_id: str,
        kind: str,
        context_id: str,
        idea_id: str | None,
        message: str,
    ) -> str:
        if not owner_id or not owner_id.strip():
            raise ValidationError("Owner ID is required")
        if self._preflight is not None:
            self._preflight()

        now = now_utc_iso()
        job = GenerationJob(
            id=new_uuid(),
            owner_id=owner_id,
            kind=kind,
            status=JOB_PENDING,
            context_id=context_id,
            context_title="",
            idea_id=idea_id,
            progress=JobProgress(stage=STAGE_FETCHING_DATA, percentage=0, message=message),
            costs=JobCosts(),
            total_cost=0.0,
            created_at=now,
            updated_at=now,
        )
        self.job_repo.insert(job)
        logger.info("Created %s job %s for %s", kind, job.id, owner_id)
        future: Future = self._executor.submit(self._run, job)
        future.add_done_callback(_log_worker_crash)
        return job.id

    def _run(self, job: GenerationJob) -> None:
        reporter = StageReporter(
            job_repo=self.job_repo,
            job_id=job.id,
            deadline=JobDeadline(self.timeout_seconds, clock=self._clock),
        )
        watchdog = self._start_watchdog(job.id)
        try:
            self.job_repo.mark_processing(job.id, message="Starting generation...")
            outcome = self.pipelines[job.kind].run(job, reporter)
            reporter.checkpoint()
            self.job_repo.mark_completed(job.id, result=outcome.result, costs=outcome.costs, message=outcome.message)
            logger.info("Job %s completed (%d words)", job.id, outcome.result.word_count)
        except Exception as exc:
            logger.exception("Generation job %s failed", job.id)
            self.job_repo.mark_failed(job.id, error=str(exc) or exc.__class__.__name__)
        finally:
            if watchdog is not None:
                watchdog.cancel()

    def _start_watchdog(self, job_id: str) -> threading.Timer | None:
        # A provider call blocked past the deadline never reaches the next checkpoint.
        if not self.timeout_seconds:
            return None
        timer = threading.Timer(self.timeout_seconds, self._expire, args=(job_id,))
        timer.daemon = True
        timer.start()
        return timer

    def _expire(self, job_id: str) -> None:
        error = GenerationTimeoutError(f"Generation exceeded the {self.timeout_seconds:.0f}s time limit.")
        if self.job_repo.mark_failed(job_id, error=str(error)):
            logger.warning("Job %s timed out after %ss", job_id, self.timeout_seconds)


def _log_worker_crash(future: Future) -> None:
    if future.cancelled():
        return
    exc = future.exception()
    if exc is not None:
        logger.error("Generation worker crashed: %s", exc, exc_info=exc)
