from __future__ import annotations

import json
from pathlib import Path

from quillstream.domain.models.cost import CostLedgerEntry, UsageTotals
from quillstream.infrastructure.db.sqlite import get_connection


class CostRepo:
    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path

    def record(self, entry: CostLedgerEntry) -> None:
        """Append a ledger entry and fold it into the owner's running totals."""
        with get_connection(self.db_path) as conn:
            conn.execute(
                """
                INSERT INTO cost_ledger (
                    id,
                    owner_id,
                    operation,
                    category,
                    input_units,
                    output_units,
                    total_units,
                    cost,
                    model,
                    metadata_json,
                    created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    entry.id,
                    entry.owner_id,
                    entry.operation,
                    entry.category,
                    entry.input_units,
                    entry.output_units,
                    entry.total_units,
                    entry.cost,
                    entry.model,
                    json.dumps(entry.metadata, ensure_ascii=True, sort_keys=True, default=str),
                    entry.created_at,
                ),
            )
            row = conn.execute(
                "SELECT breakdown_json FROM usage_totals WHERE owner_id = ?",
                (entry.owner_id,),
            ).fetchone()
            breakdown = _load_breakdown(row["breakdown_json"] if row else None)
            breakdown[entry.category] = breakdown.get(entry.category, 0.0) + entry.cost
            conn.execute(
                """
                INSERT INTO usage_totals (
                    owner_id,
                    total_cost,
                    total_units,
                    total_calls,
                    breakdown_json,
                    updated_at
                ) VALUES (?, ?, ?, 1, ?, ?)
                ON CONFLICT(owner_id) DO UPDATE SET
                    total_cost = total_cost + excluded.total_cost,
                    total_units = total_units + excluded.total_units,
                    total_calls = total_calls + 1,
                    breakdown_json = excluded.breakdown_json,
                    updated_at = excluded.updated_at
                """,
                (
                    entry.owner_id,
                    entry.cost,
                    entry.total_units,
                    json.dumps(breakdown, ensure_ascii=True, sort_keys=True),
                    entry.created_at,
                ),
            )
            conn.commit()

    def list_for_owner(self, owner_id: str, *, limit: int = 100) -> list[CostLedgerEntry]:
        with get_connection(self.db_path) as conn:
            rows = conn.execute(
                """
                SELECT *
                FROM cost_ledger
                WHERE owner_id = ?
                ORDER BY created_at DESC, id DESC
                LIMIT ?
                """,
                (owner_id, max(1, int(limit))),
            ).fetchall()
        return [self._to_entry(row) for row in rows]

    def totals_for_owner(self, owner_id: str) -> UsageTotals:
        with get_connection(self.db_path) as conn:
            row = conn.execute("SELECT * FROM usage_totals WHERE owner_id = ?", (owner_id,)).fetchone()
        if row is None:
            return UsageTotals(owner_id=owner_id)
        return UsageTotals(
            owner_id=owner_id,
            total_cost=float(row["total_cost"] or 0.0),
            total_units=int(row["total_units"] or 0),
            total_calls=int(row["total_calls"] or 0),
            breakdown=_load_breakdown(row["breakdown_json"]),
            updated_at=row["updated_at"],
        )

    @staticmethod
    def _to_entry(row) -> CostLedgerEntry:
        metadata = json.loads(row["metadata_json"]) if row["metadata_json"] else {}
        return CostLedgerEntry(
            id=row["id"],
            owner_id=row["owner_id"],
            operation=row["operation"],
            category=row["category"],
            input_units=int(row["input_units"] or 0),
            output_units=int(row["output_units"] or 0),
            total_units=int(row["total_units"] or 0),
            cost=float(row["cost"] or 0.0),
            model=row["model"],
            metadata=metadata if isinstance(metadata, dict) else {},
            created_at=row["created_at"],
        )


def _load_breakdown(raw: str | None) -> dict[str, float]:
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return {}
    if not isinstance(parsed, dict):
        return {}
    return {str(k): float(v) for k, v in parsed.items()}
