from __future__ import annotations

import logging
import math
import os
from dataclasses import dataclass
from typing import Any

import litellm

from quillstream.core.errors import ConfigurationError, ProviderError

logger = logging.getLogger(__name__)

litellm.suppress_debug_info = True

CHARS_PER_TOKEN_ESTIMATE = 4
COST_PER_MILLION_TOKENS = {
    "text-embedding-3-small": 0.02,
    "text-embedding-3-large": 0.13,
    "text-embedding-ada-002": 0.10,
}
DEFAULT_COST_PER_MILLION_TOKENS = 0.02


@dataclass(slots=True)
class EmbeddingConfig:
    model_name: str = "openai/text-embedding-3-small"
    dimension: int = 1536
    batch_size: int = 100
    device: str = "auto"


def estimate_tokens(texts: list[str]) -> int:
    total_chars = sum(len(text) for text in texts)
    return math.ceil(total_chars / CHARS_PER_TOKEN_ESTIMATE)


class LiteLLMEmbedder:
    """Hosted embedding model reached through litellm.

    Requests are sent in batches of ``batch_size`` inputs. Failures surface as
    ProviderError; retrying is left to the caller.
    """

    def __init__(self, config: EmbeddingConfig | None = None) -> None:
        self.config = config or EmbeddingConfig()

    @property
    def model_name(self) -> str:
        return self.config.model_name

    def embedding_dim(self) -> int:
        return self.config.dimension

    def embed_texts(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        batch_size = max(1, self.config.batch_size)
        out: list[list[float]] = []
        for start in range(0, len(texts), batch_size):
            batch = texts[start : start + batch_size]
            out.extend(self._embed_batch(batch))
        return out

    def estimate_cost(self, texts: list[str]) -> float:
        bare_model = self.config.model_name.split("/")[-1]
        rate = COST_PER_MILLION_TOKENS.get(bare_model, DEFAULT_COST_PER_MILLION_TOKENS)
        return estimate_tokens(texts) / 1_000_000 * rate

    def _embed_batch(self, batch: list[str]) -> list[list[float]]:
        try:
            response = litellm.embedding(
                model=self.config.model_name,
                input=batch,
                dimensions=self.config.dimension,
                num_retries=0,
            )
        except Exception as exc:
            raise ProviderError(f"Embedding request failed ({self.config.model_name}): {exc}") from exc

        rows = list(_response_rows(response))
        if len(rows) != len(batch):
            raise ProviderError(
                f"Embedding provider returned {len(rows)} vectors for {len(batch)} inputs."
            )
        rows.sort(key=lambda row: int(_field(row, "index", 0)))
        vectors: list[list[float]] = []
        for row in rows:
            vector = _field(row, "embedding", None)
            if not isinstance(vector, (list, tuple)) or len(vector) != self.config.dimension:
                size = len(vector) if isinstance(vector, (list, tuple)) else "none"
                raise ProviderError(
                    f"Embedding provider returned a malformed vector (size {size}, "
                    f"expected {self.config.dimension})."
                )
            vectors.append([float(x) for x in vector])
        return vectors


class SentenceTransformerEmbedder:
    """Local embedding backend; produces vectors without provider cost."""

    def __init__(self, config: EmbeddingConfig | None = None) -> None:
        self.config = config or EmbeddingConfig(model_name="sentence-transformers/all-MiniLM-L6-v2", dimension=384)
        self._model = None
        self._embedding_dim: int | None = None

    @property
    def model_name(self) -> str:
        return self.config.model_name

    def embedding_dim(self) -> int:
        if self._embedding_dim is None:
            self._load_model()
            if self._embedding_dim is None:
                raise ProviderError("Unable to determine embedding dimension.")
        return self._embedding_dim

    def embed_texts(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        self._load_model()
        try:
            vectors = self._model.encode(
                texts,
                batch_size=max(1, self.config.batch_size),
                normalize_embeddings=True,
                convert_to_numpy=True,
                show_progress_bar=False,
            )
        except Exception as exc:
            raise ProviderError(f"Local embedding failed ({self.config.model_name}): {exc}") from exc
        out = vectors.tolist() if hasattr(vectors, "tolist") else [list(v) for v in vectors]
        if out and self._embedding_dim is None:
            self._embedding_dim = len(out[0])
        return [[float(x) for x in row] for row in out]

    def estimate_cost(self, texts: list[str]) -> float:
        return 0.0

    def _load_model(self) -> None:
        if self._model is not None:
            return
        try:
            import torch
            from sentence_transformers import SentenceTransformer
        except ImportError as exc:  # pragma: no cover - dependency guard
            raise ConfigurationError(
                "Local embedding dependencies are missing. Install with `pip install -e '.[local]'`."
            ) from exc

        # Keep CPU thread counts bounded when running on large machines.
        if "OMP_NUM_THREADS" not in os.environ:
            os.environ["OMP_NUM_THREADS"] = "8"

        device = self._resolve_device(torch)
        logger.info("Loading local embedding model %s on %s", self.config.model_name, device)
        self._model = SentenceTransformer(self.config.model_name, device=device)
        dim = self._model.get_sentence_embedding_dimension()
        self._embedding_dim = int(dim) if dim else None

    def _resolve_device(self, torch_module) -> str:
        configured = (self.config.device or "auto").strip().lower()
        if configured and configured != "auto":
            return configured
        if bool(getattr(torch_module.backends, "mps", None)) and torch_module.backends.mps.is_available():
            return "mps"
        if torch_module.cuda.is_available():
            return "cuda"
        return "cpu"


def build_embedder(*, backend: str, model_name: str, dimension: int, batch_size: int):
    if backend in {"sentence-transformers", "local"}:
        return SentenceTransformerEmbedder(
            EmbeddingConfig(model_name=model_name, dimension=dimension, batch_size=batch_size)
        )
    if backend != "litellm":
        raise ConfigurationError(f"Unknown embedding backend: {backend}")
    return LiteLLMEmbedder(EmbeddingConfig(model_name=model_name, dimension=dimension, batch_size=batch_size))


def _response_rows(response: Any) -> list[Any]:
    data = getattr(response, "data", None)
    if data is None and isinstance(response, dict):
        data = response.get("data")
    if not isinstance(data, (list, tuple)):
        raise ProviderError("Embedding provider returned no data.")
    return list(data)


def _field(row: Any, name: str, default: Any) -> Any:
    if isinstance(row, dict):
        return row.get(name, default)
    return getattr(row, name, default)
