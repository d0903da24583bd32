from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from quillstream.core.errors import ValidationError

JOB_PENDING = "pending"
JOB_PROCESSING = "processing"
JOB_COMPLETED = "completed"
JOB_FAILED = "failed"

TERMINAL_STATUSES = frozenset({JOB_COMPLETED, JOB_FAILED})

# Rank used to keep status transitions monotonic.
STATUS_RANK = {
    JOB_PENDING: 0,
    JOB_PROCESSING: 1,
    JOB_COMPLETED: 2,
    JOB_FAILED: 2,
}

STAGE_FETCHING_DATA = "fetching_data"
STAGE_ANALYZING_COMPETITORS = "analyzing_competitors"
STAGE_GENERATING_POST = "generating_post"
STAGE_GENERATING_IMAGE = "generating_image"
STAGE_COMPLETED = "completed"

STAGES = (
    STAGE_FETCHING_DATA,
    STAGE_ANALYZING_COMPETITORS,
    STAGE_GENERATING_POST,
    STAGE_GENERATING_IMAGE,
    STAGE_COMPLETED,
)

JOB_KIND_TREND = "trend"
JOB_KIND_IDEA = "idea"


@dataclass(slots=True)
class JobProgress:
    stage: str
    percentage: int
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {"stage": self.stage, "percentage": self.percentage, "message": self.message}

    @classmethod
    def from_dict(cls, payload: dict[str, Any] | None) -> "JobProgress":
        payload = payload or {}
        return cls(
            stage=str(payload.get("stage") or STAGE_FETCHING_DATA),
            percentage=int(payload.get("percentage") or 0),
            message=str(payload.get("message") or ""),
        )


@dataclass(slots=True)
class SourceCitation:
    trend: str
    source: str

    def to_dict(self) -> dict[str, Any]:
        return {"trend": self.trend, "source": self.source}


@dataclass(slots=True)
class JobResult:
    text: str
    word_count: int
    hashtags: list[str] = field(default_factory=list)
    asset_url: str | None = None
    asset_prompt: str | None = None
    citations: list[SourceCitation] | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "text": self.text,
            "wordCount": self.word_count,
            "hashtags": list(self.hashtags),
        }
        if self.asset_url is not None:
            payload["assetUrl"] = self.asset_url
        if self.asset_prompt is not None:
            payload["assetPrompt"] = self.asset_prompt
        if self.citations is not None:
            payload["citations"] = [c.to_dict() for c in self.citations]
        return payload

    @classmethod
    def from_dict(cls, payload: dict[str, Any] | None) -> "JobResult | None":
        if not payload:
            return None
        citations = payload.get("citations")
        return cls(
            text=str(payload.get("text") or ""),
            word_count=int(payload.get("wordCount") or 0),
            hashtags=[str(tag) for tag in payload.get("hashtags") or []],
            asset_url=payload.get("assetUrl"),
            asset_prompt=payload.get("assetPrompt"),
            citations=(
                [SourceCitation(trend=str(c.get("trend") or ""), source=str(c.get("source") or "")) for c in citations]
                if isinstance(citations, list)
                else None
            ),
        )


@dataclass(slots=True)
class JobCosts:
    generation: float = 0.0
    asset: float = 0.0

    @property
    def total(self) -> float:
        return self.generation + self.asset

    def to_dict(self) -> dict[str, float]:
        return {"generation": self.generation, "asset": self.asset}

    @classmethod
    def from_dict(cls, payload: dict[str, Any] | None) -> "JobCosts":
        payload = payload or {}
        return cls(
            generation=float(payload.get("generation") or 0.0),
            asset=float(payload.get("asset") or 0.0),
        )


@dataclass(slots=True)
class GenerationJob:
    id: str
    owner_id: str
    kind: str
    status: str
    context_id: str
    context_title: str
    progress: JobProgress
    costs: JobCosts
    total_cost: float
    created_at: str
    updated_at: str
    idea_id: str | None = None
    result: JobResult | None = None
    error: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "ownerId": self.owner_id,
            "kind": self.kind,
            "status": self.status,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "contextId": self.context_id,
            "contextTitle": self.context_title,
            "ideaId": self.idea_id,
            "progress": self.progress.to_dict(),
            "result": self.result.to_dict() if self.result else None,
            "totalCost": self.total_cost,
            "costs": self.costs.to_dict(),
            "error": self.error,
        }


@dataclass(slots=True)
class ProgressPatch:
    """Partial job update written by a pipeline stage.

    Only the fields a stage may touch are present; status and result are
    set through the orchestrator's complete/fail operations.
    """

    stage: str | None = None
    percentage: int | None = None
    message: str | None = None
    context_title: str | None = None

    def validate(self) -> None:
        if self.stage is not None and self.stage not in STAGES:
            raise ValidationError(f"Unknown job stage: {self.stage}")
        if self.percentage is not None:
            if isinstance(self.percentage, bool) or not isinstance(self.percentage, int):
                raise ValidationError("Progress percentage must be an integer.")
            if not 0 <= self.percentage <= 100:
                raise ValidationError(f"Progress percentage out of range: {self.percentage}")
