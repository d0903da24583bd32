from __future__ import annotations

import logging
from typing import Any

import litellm

from quillstream.core.ids import new_uuid
from quillstream.core.time import now_utc_iso
from quillstream.domain.models.cost import CostInfo, CostLedgerEntry, TokenUsage
from quillstream.infrastructure.db.repos.cost_repo import CostRepo

logger = logging.getLogger(__name__)

# USD per token (input, output).
TOKEN_PRICING: dict[str, tuple[float, float]] = {
    "gpt-4-turbo-preview": (10.0 / 1_000_000, 30.0 / 1_000_000),
    "gpt-4-turbo": (10.0 / 1_000_000, 30.0 / 1_000_000),
    "gpt-4o-mini": (0.15 / 1_000_000, 0.60 / 1_000_000),
    "gpt-4o": (2.50 / 1_000_000, 10.0 / 1_000_000),
    "gpt-4": (30.0 / 1_000_000, 60.0 / 1_000_000),
}
FALLBACK_PRICING_MODEL = "gpt-4-turbo-preview"

# USD per image by quality.
IMAGE_PRICING: dict[str, dict[str, float]] = {
    "dall-e-3": {"standard": 0.040, "hd": 0.080},
    "dall-e-2": {"standard": 0.020},
}

OPERATION_POST_GENERATION = "linkedin-post-generation"
OPERATION_POST_FROM_IDEA = "linkedin-post-from-idea-rag"
OPERATION_IMAGE_GENERATION = "linkedin-image-generation"
OPERATION_POST_IDEAS = "linkedin-post-ideas-rag"
OPERATION_NEWSLETTER_INDEXING = "newsletter-indexing"

OPERATION_CATEGORIES = {
    OPERATION_POST_GENERATION: "contentGeneration",
    OPERATION_POST_FROM_IDEA: "contentGeneration",
    OPERATION_IMAGE_GENERATION: "imageGeneration",
    OPERATION_POST_IDEAS: "ideaGeneration",
    OPERATION_NEWSLETTER_INDEXING: "embeddings",
}


def _bare_model(model: str) -> str:
    return model.split("/")[-1].strip().lower()


def _lookup_pricing(model: str) -> tuple[float, float] | None:
    bare = _bare_model(model)
    if bare in TOKEN_PRICING:
        return TOKEN_PRICING[bare]
    # Dated snapshots such as gpt-4-turbo-2024-04-09; longest prefix wins.
    for name in sorted(TOKEN_PRICING, key=len, reverse=True):
        if bare.startswith(f"{name}-"):
            return TOKEN_PRICING[name]
    return None


class CostAccountant:
    def __init__(self, *, cost_repo: CostRepo | None = None) -> None:
        self.cost_repo = cost_repo

    def calculate(self, usage: TokenUsage, model: str) -> CostInfo:
        pricing = _lookup_pricing(model)
        if pricing is not None:
            input_cost = usage.input_tokens * pricing[0]
            output_cost = usage.output_tokens * pricing[1]
        else:
            input_cost, output_cost = self._provider_pricing(usage, model)
        return CostInfo(
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
            total_tokens=usage.total_tokens,
            input_cost=input_cost,
            output_cost=output_cost,
            total_cost=input_cost + output_cost,
            model=model,
        )

    def combine(self, infos: list[CostInfo]) -> CostInfo | None:
        """Sum several calls to the same operation into one ledger-sized CostInfo."""
        if not infos:
            return None
        return CostInfo(
            input_tokens=sum(i.input_tokens for i in infos),
            output_tokens=sum(i.output_tokens for i in infos),
            total_tokens=sum(i.total_tokens for i in infos),
            input_cost=sum(i.input_cost for i in infos),
            output_cost=sum(i.output_cost for i in infos),
            total_cost=sum(i.total_cost for i in infos),
            model=infos[-1].model,
        )

    @staticmethod
    def image_cost(model: str, quality: str = "standard") -> float:
        tiers = IMAGE_PRICING.get(_bare_model(model)) or IMAGE_PRICING["dall-e-3"]
        return tiers.get(quality, tiers["standard"])

    def log(
        self,
        owner_id: str,
        operation: str,
        cost_info: CostInfo,
        metadata: dict[str, Any] | None = None,
    ) -> CostLedgerEntry | None:
        """Write a ledger entry. Failures are logged and never propagate."""
        entry = CostLedgerEntry(
            id=new_uuid(),
            owner_id=owner_id,
            operation=operation,
            category=OPERATION_CATEGORIES.get(operation, "other"),
            input_units=cost_info.input_tokens,
            output_units=cost_info.output_tokens,
            total_units=cost_info.total_tokens,
            cost=cost_info.total_cost,
            model=cost_info.model,
            metadata=dict(metadata or {}),
            created_at=now_utc_iso(),
        )
        if self.cost_repo is None:
            return entry
        try:
            self.cost_repo.record(entry)
        except Exception:
            logger.exception("Error logging API cost for %s (%s)", owner_id, operation)
            return None
        logger.info("Logged API cost: $%.4f for %s (owner: %s)", entry.cost, operation, owner_id)
        return entry

    def log_image(
        self,
        owner_id: str,
        *,
        model: str,
        quality: str,
        metadata: dict[str, Any] | None = None,
    ) -> CostLedgerEntry | None:
        cost = self.image_cost(model, quality)
        info = CostInfo(
            input_tokens=0,
            output_tokens=1,
            total_tokens=1,
            input_cost=0.0,
            output_cost=cost,
            total_cost=cost,
            model=model,
        )
        return self.log(owner_id, OPERATION_IMAGE_GENERATION, info, metadata)

    @staticmethod
    def _provider_pricing(usage: TokenUsage, model: str) -> tuple[float, float]:
        try:
            input_cost, output_cost = litellm.cost_per_token(
                model=model,
                prompt_tokens=usage.input_tokens,
                completion_tokens=usage.output_tokens,
            )
            return float(input_cost), float(output_cost)
        except Exception:
            logger.warning("No pricing known for %s; using %s rates", model, FALLBACK_PRICING_MODEL)
        fallback = TOKEN_PRICING[FALLBACK_PRICING_MODEL]
        return usage.input_tokens * fallback[0], usage.output_tokens * fallback[1]


def format_cost(cost: float) -> str:
    if cost < 0.01:
        return f"${cost:.4f}"
    return f"${cost:.2f}"
