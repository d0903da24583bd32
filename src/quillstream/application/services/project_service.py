from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from quillstream.core.config import AppPaths
from quillstream.core.errors import ProjectNotInitializedError
from quillstream.infrastructure.db.sqlite import initialize_schema


@dataclass(slots=True)
class InitResult:
    paths_created: list[Path]
    db_path: Path


class ProjectService:
    def __init__(self, paths: AppPaths) -> None:
        self.paths = paths

    def init_project(self) -> InitResult:
        paths_created: list[Path] = []

        for path in (self.paths.quill_dir, self.paths.vector_dir, self.paths.qdrant_dir):
            if not path.exists():
                paths_created.append(path)
            path.mkdir(parents=True, exist_ok=True)

        initialize_schema(self.paths.db_path)
        return InitResult(paths_created=paths_created, db_path=self.paths.db_path)

    def is_initialized(self) -> bool:
        return self.paths.db_path.exists()

    def require_initialized(self) -> None:
        if not self.is_initialized():
            raise ProjectNotInitializedError(
                f"Project is not initialized. Run 'quill init' first in {self.paths.project_root}"
            )
        # Applies migrations added since the project was created.
        initialize_schema(self.paths.db_path)
