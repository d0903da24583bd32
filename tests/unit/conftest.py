from __future__ import annotations

import os
from pathlib import Path

import pytest

from quillstream.core.config import AppPaths
from quillstream.infrastructure.db.sqlite import initialize_schema


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in list(os.environ):
        if name.startswith("QUILL_"):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture()
def db_path(tmp_path: Path) -> Path:
    path = tmp_path / ".quill" / "quill.db"
    initialize_schema(path)
    return path


@pytest.fixture()
def app_paths(tmp_path: Path) -> AppPaths:
    root = tmp_path / "proj"
    root.mkdir(parents=True, exist_ok=True)
    quill_dir = root / ".quill"
    return AppPaths(
        project_root=root,
        quill_dir=quill_dir,
        db_path=quill_dir / "quill.db",
        vector_dir=quill_dir / "vector",
        qdrant_dir=quill_dir / "vector" / "qdrant",
    )
