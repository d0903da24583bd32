from __future__ import annotations

from types import SimpleNamespace

import litellm
import pytest

from quillstream.core.errors import ConfigurationError, ProviderError
from quillstream.infrastructure.vector.embeddings import (
    EmbeddingConfig,
    LiteLLMEmbedder,
    SentenceTransformerEmbedder,
    build_embedder,
    estimate_tokens,
)


def _fake_embedding(dim: int, calls: list[dict]):
    def _embedding(**kwargs):
        calls.append(kwargs)
        rows = [{"index": i, "embedding": [float(i)] * dim} for i in range(len(kwargs["input"]))]
        # Providers may return rows out of order.
        return SimpleNamespace(data=list(reversed(rows)))

    return _embedding


def test_embed_texts_batches_and_preserves_order(monkeypatch) -> None:
    calls: list[dict] = []
    monkeypatch.setattr(litellm, "embedding", _fake_embedding(4, calls))
    embedder = LiteLLMEmbedder(EmbeddingConfig(model_name="openai/text-embedding-3-small", dimension=4, batch_size=2))

    vectors = embedder.embed_texts(["a", "b", "c", "d", "e"])

    assert [len(call["input"]) for call in calls] == [2, 2, 1]
    assert all(call["dimensions"] == 4 for call in calls)
    assert all(call["num_retries"] == 0 for call in calls)
    assert [v[0] for v in vectors] == [0.0, 1.0, 0.0, 1.0, 0.0]
    assert all(len(v) == 4 for v in vectors)


def test_embed_texts_empty_input_makes_no_call(monkeypatch) -> None:
    calls: list[dict] = []
    monkeypatch.setattr(litellm, "embedding", _fake_embedding(4, calls))

    assert LiteLLMEmbedder(EmbeddingConfig(dimension=4)).embed_texts([]) == []
    assert calls == []


def test_provider_failure_surfaces_as_provider_error(monkeypatch) -> None:
    def _boom(**kwargs):
        raise RuntimeError("rate limited")

    monkeypatch.setattr(litellm, "embedding", _boom)

    with pytest.raises(ProviderError):
        LiteLLMEmbedder(EmbeddingConfig(dimension=4)).embed_texts(["hello"])


def test_wrong_dimension_is_rejected(monkeypatch) -> None:
    monkeypatch.setattr(litellm, "embedding", _fake_embedding(3, []))

    with pytest.raises(ProviderError):
        LiteLLMEmbedder(EmbeddingConfig(dimension=4)).embed_texts(["hello"])


def test_estimate_cost_uses_four_chars_per_token() -> None:
    embedder = LiteLLMEmbedder(EmbeddingConfig(model_name="openai/text-embedding-3-small"))
    texts = ["x" * 4_000_000]

    assert estimate_tokens(texts) == 1_000_000
    assert embedder.estimate_cost(texts) == pytest.approx(0.02)


def test_build_embedder_selects_backend() -> None:
    hosted = build_embedder(backend="litellm", model_name="openai/text-embedding-3-small", dimension=1536, batch_size=100)
    local = build_embedder(backend="sentence-transformers", model_name="BAAI/bge-small-en-v1.5", dimension=384, batch_size=8)

    assert isinstance(hosted, LiteLLMEmbedder)
    assert isinstance(local, SentenceTransformerEmbedder)
    assert local.estimate_cost(["anything"]) == 0.0
    with pytest.raises(ConfigurationError):
        build_embedder(backend="nope", model_name="m", dimension=3, batch_size=1)
