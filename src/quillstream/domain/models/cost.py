from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(slots=True)
class TokenUsage:
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass(slots=True)
class CostInfo:
    input_tokens: int
    output_tokens: int
    total_tokens: int
    input_cost: float
    output_cost: float
    total_cost: float
    model: str


@dataclass(slots=True)
class CostLedgerEntry:
    id: str
    owner_id: str
    operation: str
    category: str
    input_units: int
    output_units: int
    total_units: int
    cost: float
    model: str
    metadata: dict[str, Any]
    created_at: str


@dataclass(slots=True)
class UsageTotals:
    owner_id: str
    total_cost: float = 0.0
    total_units: int = 0
    total_calls: int = 0
    breakdown: dict[str, float] = field(default_factory=dict)
    updated_at: str | None = None
