from __future__ import annotations

import json
from pathlib import Path

from quillstream.core.errors import ValidationError


class RecordJsonError(ValidationError):
    pass


def load_records_from_json(path: Path, *, key: str) -> list[dict[str, object]]:
    """Read a list of objects, either bare or under ``key`` in a top-level object."""
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise RecordJsonError(f"File not found: {path}") from exc
    except json.JSONDecodeError as exc:
        raise RecordJsonError(f"Invalid JSON in {path}: {exc}") from exc

    if isinstance(payload, list):
        return [_ensure_dict(item) for item in payload]

    if isinstance(payload, dict):
        records = payload.get(key)
        if isinstance(records, list):
            return [_ensure_dict(item) for item in records]

    raise RecordJsonError(f"JSON must be a list of objects or an object containing '{key}'.")


def _ensure_dict(item: object) -> dict[str, object]:
    if not isinstance(item, dict):
        raise RecordJsonError("Each entry must be a JSON object.")
    return {str(k): v for k, v in item.items()}
