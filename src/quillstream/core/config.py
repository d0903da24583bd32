from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class AppPaths:
    project_root: Path
    quill_dir: Path
    db_path: Path
    vector_dir: Path
    qdrant_dir: Path


DEFAULT_QUILL_DIRNAME = ".quill"


def load_paths(project_root: Path | None = None) -> AppPaths:
    root = (project_root or Path.cwd()).expanduser().resolve()

    quill_home_raw = os.getenv("QUILL_HOME")
    if quill_home_raw:
        quill_dir = Path(quill_home_raw).expanduser().resolve()
    else:
        quill_dir = root / DEFAULT_QUILL_DIRNAME

    return AppPaths(
        project_root=root,
        quill_dir=quill_dir,
        db_path=quill_dir / "quill.db",
        vector_dir=quill_dir / "vector",
        qdrant_dir=quill_dir / "vector" / "qdrant",
    )


@dataclass(frozen=True)
class Settings:
    generation_model: str = "openai/gpt-4-turbo"
    image_model: str = "dall-e-3"
    image_size: str = "1024x1024"
    image_quality: str = "standard"
    embedding_model: str = "openai/text-embedding-3-small"
    embedding_backend: str = "litellm"
    embedding_dim: int = 1536
    embedding_batch_size: int = 100
    qdrant_url: str | None = None
    qdrant_api_key: str | None = None
    qdrant_timeout_seconds: float = 10.0
    job_timeout_seconds: float = 540.0
    job_workers: int = 4
    min_word_count: int = 130
    max_generation_attempts: int = 2
    indexing_batch_size: int = 10


def load_settings() -> Settings:
    defaults = Settings()
    return Settings(
        generation_model=_read_str_env("QUILL_GENERATION_MODEL", defaults.generation_model),
        image_model=_read_str_env("QUILL_IMAGE_MODEL", defaults.image_model),
        image_size=_read_str_env("QUILL_IMAGE_SIZE", defaults.image_size),
        image_quality=_read_str_env("QUILL_IMAGE_QUALITY", defaults.image_quality),
        embedding_model=_read_str_env("QUILL_EMBEDDING_MODEL", defaults.embedding_model),
        embedding_backend=_read_str_env("QUILL_EMBEDDING_BACKEND", defaults.embedding_backend).lower(),
        embedding_dim=read_int_env("QUILL_EMBEDDING_DIM", defaults.embedding_dim),
        embedding_batch_size=read_int_env("QUILL_EMBEDDING_BATCH_SIZE", defaults.embedding_batch_size),
        qdrant_url=os.getenv("QUILL_QDRANT_URL") or None,
        qdrant_api_key=os.getenv("QUILL_QDRANT_API_KEY") or None,
        qdrant_timeout_seconds=read_float_env("QUILL_QDRANT_TIMEOUT_SECONDS", defaults.qdrant_timeout_seconds),
        job_timeout_seconds=read_float_env("QUILL_JOB_TIMEOUT_SECONDS", defaults.job_timeout_seconds),
        job_workers=read_int_env("QUILL_JOB_WORKERS", defaults.job_workers),
        min_word_count=read_int_env("QUILL_MIN_WORD_COUNT", defaults.min_word_count),
        max_generation_attempts=read_int_env("QUILL_MAX_GENERATION_ATTEMPTS", defaults.max_generation_attempts),
        indexing_batch_size=read_int_env("QUILL_INDEXING_BATCH_SIZE", defaults.indexing_batch_size),
    )


def _read_str_env(name: str, default: str) -> str:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip()


def read_float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def read_int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def read_bool_env(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    normalized = raw.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default
